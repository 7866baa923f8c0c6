# Overview: Service-layer operations for variant stock; encapsulates business logic and database work.

"""
Stock Ledger Invariants (authoritative)

- `product_variants.stock` is the available quantity. It is only changed by
  the functions in this module, always through a single SQL UPDATE that
  performs check and write in one statement:

      UPDATE product_variants SET stock = stock - :q
       WHERE id = :id AND stock >= :q

  Two concurrent reservations can therefore never both deduct from an
  already-insufficient count; the loser matches zero rows.
- Stock never goes negative unless the variant allows backorder.
- Variants with track_stock = False are always available and never change.
- reserve_all() is all-or-nothing across an order: the first insufficient
  line raises InsufficientStock and the caller's transaction is rolled back,
  undoing earlier lines.
- Every change appends a StockMovement row in the same DB transaction.
- Insufficient stock is a business rejection and is never retried.
  Transient storage errors are retried by run_with_retry(), which re-runs
  the whole operation against fresh reads.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import update

from ..errors import InsufficientStock, InvalidTransition, NotFound, ValidationError
from ..extensions import db
from ..models import ProductVariant, StockMovement
from .concurrency import run_with_retry

logger = logging.getLogger(__name__)

AVAILABLE = "available"
INSUFFICIENT = "insufficient"
BACKORDER_ALLOWED = "backorder_allowed"

# Order states whose reservation is still held (restorable exactly once)
RESERVATION_HELD_STATUSES = {"pending_whatsapp", "confirmed", "preparing"}


@dataclass(frozen=True)
class StockCheck:
    status: str
    variant_id: int
    requested: int
    current_stock: int

    @property
    def ok(self) -> bool:
        return self.status != INSUFFICIENT

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "variant_id": self.variant_id,
            "requested": self.requested,
            "current_stock": self.current_stock,
        }


def _get_variant(variant_id: int) -> ProductVariant:
    variant = db.session.query(ProductVariant).filter_by(id=variant_id).first()
    if variant is None:
        raise NotFound(f"Variant {variant_id} not found", details={"variant_id": variant_id})
    return variant


def _current_stock(variant_id: int) -> int:
    """Read the committed/in-transaction value, bypassing the identity map."""
    return int(
        db.session.query(ProductVariant.stock).filter(ProductVariant.id == variant_id).scalar() or 0
    )


def merge_lines(lines: list[dict]) -> list[dict]:
    """
    Sum quantities per variant and order by variant id.

    Stable variant ordering keeps row-lock acquisition order identical
    across concurrent reservations. Each merged line keeps the position of
    the variant's first occurrence as "line": the caller-supplied "line"
    when present, else its index in `lines`.
    """
    totals: dict[int, int] = {}
    first_index: dict[int, int] = {}
    for index, line in enumerate(lines):
        vid = line["variant_id"]
        totals[vid] = totals.get(vid, 0) + int(line["quantity"])
        first_index.setdefault(vid, line.get("line", index))
    return [
        {"variant_id": vid, "quantity": qty, "line": first_index[vid]}
        for vid, qty in sorted(totals.items())
    ]


def check_availability(variant_id: int, quantity: int) -> StockCheck:
    """Classify whether `quantity` units can be reserved right now."""
    variant = _get_variant(variant_id)
    current = _current_stock(variant_id)

    if not variant.track_stock or current >= quantity:
        status = AVAILABLE
    elif variant.allow_backorder:
        status = BACKORDER_ALLOWED
    else:
        status = INSUFFICIENT

    return StockCheck(status=status, variant_id=variant_id, requested=quantity, current_stock=current)


def _apply_delta(
    variant: ProductVariant,
    delta: int,
    *,
    movement_type: str,
    reason: str,
    order_id: int | None = None,
    actor_id: str | None = None,
    notes: str | None = None,
    line_index: int | None = None,
) -> StockMovement | None:
    """
    Atomically add `delta` to a variant's stock and append a movement row.

    Negative deltas are conditional on enough stock unless backorder is
    allowed. Does not commit.
    """
    if not variant.track_stock:
        return None

    stmt = update(ProductVariant).where(ProductVariant.id == variant.id)
    if delta < 0 and not variant.allow_backorder:
        stmt = stmt.where(ProductVariant.stock >= -delta)
    stmt = stmt.values(stock=ProductVariant.stock + delta).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    if result.rowcount != 1:
        current = _current_stock(variant.id)
        details = {
            "variant_id": variant.id,
            "sku": variant.sku,
            "requested": -delta,
            "current_stock": current,
        }
        if line_index is not None:
            details["line"] = line_index
        raise InsufficientStock(
            f"Insufficient stock for {variant.sku}. Available: {current}, requested: {-delta}",
            details=details,
        )

    # Keep the identity-mapped instance honest for later reads in this session
    db.session.expire(variant, ["stock"])

    new_stock = _current_stock(variant.id)
    movement = StockMovement(
        variant_id=variant.id,
        type=movement_type,
        quantity=delta,
        previous_stock=new_stock - delta,
        new_stock=new_stock,
        order_id=order_id,
        actor_id=actor_id,
        reason=reason,
        notes=notes,
    )
    db.session.add(movement)
    return movement


def reserve_all(
    lines: list[dict],
    *,
    order_id: int | None = None,
    actor_id: str | None = None,
    movement_type: str = "sale",
    reason: str | None = None,
    commit: bool = False,
) -> list[StockMovement]:
    """
    Decrement stock for every line of an order, all-or-nothing.

    Args:
        lines: [{"variant_id": int, "quantity": int}, ...]
        commit: True to run as its own transaction with retries; False
            (default) to participate in the caller's transaction, which the
            caller must roll back when InsufficientStock propagates.

    Raises:
        NotFound: a variant id does not exist
        InsufficientStock: first line that cannot be satisfied; details
            carry the variant, requested quantity and current stock
    """
    def _op() -> list[StockMovement]:
        movements = []
        for line in merge_lines(lines):
            variant = _get_variant(line["variant_id"])
            movement = _apply_delta(
                variant,
                -line["quantity"],
                movement_type=movement_type,
                reason=reason or (f"Order {order_id} reservation" if order_id else "Reservation"),
                order_id=order_id,
                actor_id=actor_id,
                line_index=line["line"],
            )
            if movement is not None:
                movements.append(movement)
        db.session.flush()
        if commit:
            db.session.commit()
        return movements

    if commit:
        return run_with_retry(_op)
    return _op()


def restore_all(
    lines: list[dict],
    *,
    order_id: int | None = None,
    actor_id: str | None = None,
    movement_type: str = "cancellation",
    reason: str | None = None,
) -> list[StockMovement]:
    """
    Credit back a prior reservation. Does not commit.

    Callers must gate this on the order still holding its reservation
    (see restore_for_order) so a reservation is never credited twice.
    """
    movements = []
    for line in merge_lines(lines):
        variant = _get_variant(line["variant_id"])
        movement = _apply_delta(
            variant,
            line["quantity"],
            movement_type=movement_type,
            reason=reason or (f"Order {order_id} restore" if order_id else "Restore"),
            order_id=order_id,
            actor_id=actor_id,
        )
        if movement is not None:
            movements.append(movement)
    db.session.flush()
    return movements


def restore_for_order(order, *, actor_id: str | None = None, movement_type: str = "cancellation") -> list[StockMovement]:
    """
    Restore an order's reservation, only while the order still holds it.

    The status read here is the one the caller's optimistic version check
    protects, so a concurrent second cancellation fails its flush instead
    of double-crediting.
    """
    if order.status not in RESERVATION_HELD_STATUSES:
        raise InvalidTransition(
            f"Order {order.order_number} no longer holds a stock reservation",
            details={"current_status": order.status, "reason": "not_allowed"},
        )
    return restore_all(
        order.reservation_lines(),
        order_id=order.id,
        actor_id=actor_id,
        movement_type=movement_type,
        reason=f"Order {order.order_number} {movement_type}",
    )


def adjust(
    variant_id: int,
    delta: int,
    *,
    reason: str,
    actor_id: str | None = None,
    movement_type: str = "adjustment",
    notes: str | None = None,
) -> StockMovement:
    """
    Manual stock correction or restock by staff.

    Never drives stock negative unless the variant allows backorder.
    """
    if movement_type not in {"adjustment", "restock"}:
        raise ValidationError("type must be adjustment or restock", field="type")
    if movement_type == "restock" and delta <= 0:
        raise ValidationError("restock quantity must be > 0", field="quantity")

    def _op() -> StockMovement:
        variant = _get_variant(variant_id)
        if not variant.track_stock:
            raise ValidationError(f"Variant {variant.sku} does not track stock", field="variant_id")
        movement = _apply_delta(
            variant,
            delta,
            movement_type=movement_type,
            reason=reason,
            actor_id=actor_id,
            notes=notes,
        )
        db.session.commit()
        logger.info("Stock %s on %s: %+d -> %d", movement_type, variant.sku, delta, movement.new_stock)
        return movement

    return run_with_retry(_op)


def low_stock_variants(limit: int = 50) -> list[ProductVariant]:
    return (
        db.session.query(ProductVariant)
        .filter(
            ProductVariant.active.is_(True),
            ProductVariant.track_stock.is_(True),
            ProductVariant.stock > 0,
            ProductVariant.stock <= ProductVariant.low_stock_threshold,
        )
        .order_by(ProductVariant.stock.asc(), ProductVariant.id.asc())
        .limit(limit)
        .all()
    )


def out_of_stock_variants(limit: int = 50) -> list[ProductVariant]:
    return (
        db.session.query(ProductVariant)
        .filter(
            ProductVariant.active.is_(True),
            ProductVariant.track_stock.is_(True),
            ProductVariant.allow_backorder.is_(False),
            ProductVariant.stock <= 0,
        )
        .order_by(ProductVariant.id.asc())
        .limit(limit)
        .all()
    )


def movements_for_variant(variant_id: int, limit: int = 100) -> list[StockMovement]:
    _get_variant(variant_id)
    return (
        db.session.query(StockMovement)
        .filter_by(variant_id=variant_id)
        .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
        .limit(limit)
        .all()
    )


def movements_for_order(order_id: int) -> list[StockMovement]:
    return (
        db.session.query(StockMovement)
        .filter_by(order_id=order_id)
        .order_by(StockMovement.id.asc())
        .all()
    )


def record_initial_stock(variant: ProductVariant, *, actor_id: str | None = None) -> StockMovement | None:
    """Ledger row for the opening balance of a newly created variant. Does not commit."""
    if not variant.track_stock or not variant.stock:
        return None
    movement = StockMovement(
        variant_id=variant.id,
        type="restock",
        quantity=variant.stock,
        previous_stock=0,
        new_stock=variant.stock,
        actor_id=actor_id,
        reason="Initial stock",
    )
    db.session.add(movement)
    return movement
