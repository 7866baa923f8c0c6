# Overview: Service-layer operations for orders; encapsulates business logic and database work.

"""
Order Aggregate Service

================================================================================
PURPOSE: Turn a validated checkout into a persisted, priced, stock-backed order
================================================================================

CHECKOUT FLOW (one DB transaction, retried on transient storage errors):
    1. Allocate the order number (QUE-YYYYMMDD-NNN)
    2. Load every variant and price each line with discount_service.price_line()
       (all pricing errors surface before any stock is touched)
    3. Persist Order + OrderLine snapshots
    4. stock_service.reserve_all() decrements every line or none
    5. Record the "order.created" audit entry
    6. Commit

TOTALS ARE SERVER-COMPUTED:
    The client cart is only a list of {variant, quantity}. Any unit price the
    client sends is compared (validate-cart) but never trusted.

VISIBILITY:
    Staff read every order. Customers read orders whose created_by matches
    their actor id; anyone else's order looks like it does not exist.
================================================================================
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timedelta

from flask import current_app
from sqlalchemy import or_

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Order, OrderLine, ProductVariant
from ..permissions import Actor, can, require_capability
from . import audit_service, discount_service, stock_service
from .concurrency import run_with_retry
from .document_service import next_document_number

logger = logging.getLogger(__name__)

ORDER_DOCUMENT_TYPE = "ORDER"


# =============================================================================
# PRICING
# =============================================================================

def _load_variant(variant_id: int, field: str) -> ProductVariant:
    variant = db.session.query(ProductVariant).filter_by(id=variant_id).first()
    if variant is None:
        raise NotFound(f"Variant {variant_id} not found", details={"variant_id": variant_id, "field": field})
    if not variant.active:
        raise ValidationError(f"Variant {variant.sku} is not available", field=field)
    return variant


def price_items(items: list[dict]) -> list[tuple[ProductVariant, int, discount_service.PriceQuote]]:
    """
    Price validated `{variant_id, quantity}` items against current catalog data.

    Returns (variant, quantity, quote) triples in request order.
    """
    priced = []
    for index, item in enumerate(items):
        variant = _load_variant(item["variant_id"], f"items.{index}.variant")
        flags = variant.parent.pricing_flags() if variant.parent else None
        quote = discount_service.price_line(variant, item["quantity"], flags)
        priced.append((variant, item["quantity"], quote))
    return priced


def _build_lines(order: Order, priced) -> None:
    for position, (variant, quantity, quote) in enumerate(priced, start=1):
        order.lines.append(
            OrderLine(
                variant_id=variant.id,
                position=position,
                sku=variant.sku,
                variant_name=variant.name,
                attributes=dict(variant.attributes or {}),
                quantity=quantity,
                unit_price=quote.base_price,
                discount=quote.discount,
                line_total=quote.line_total(quantity),
                applied_tier=quote.applied_tier,
                applied_fixed_discount=quote.applied_fixed_discount,
                promotional=quote.promotional,
            )
        )


def replace_lines(order: Order, priced) -> None:
    """Swap an order's lines for freshly priced ones. Flushes the removal first."""
    order.lines.clear()
    # Old rows must be gone before new ones reuse their positions
    db.session.flush()
    _build_lines(order, priced)
    order.recompute_totals()


def price_cart(items: list[dict]) -> dict:
    """
    Re-price a client cart and report where the client's numbers are stale.

    Each item may carry `unit_price`, the effective price the storefront
    displayed; a mismatch is reported in `discrepancies` rather than raised.
    """
    lines = []
    discrepancies = []
    subtotal = 0
    total_discount = 0

    for index, item in enumerate(items):
        variant = _load_variant(item["variant_id"], f"items.{index}.variant")
        flags = variant.parent.pricing_flags() if variant.parent else None
        quote = discount_service.price_line(variant, item["quantity"], flags)
        availability = stock_service.check_availability(variant.id, item["quantity"])

        line_total = quote.line_total(item["quantity"])
        subtotal += line_total
        total_discount += quote.discount * item["quantity"]

        lines.append({
            "variant_id": variant.id,
            "sku": variant.sku,
            "quantity": item["quantity"],
            **quote.to_dict(),
            "line_total": line_total,
            "stock_status": availability.status,
            "current_stock": availability.current_stock,
        })

        if item.get("unit_price") is not None and item["unit_price"] != quote.unit_price:
            discrepancies.append({
                "line": index,
                "variant_id": variant.id,
                "field": "unitPrice",
                "client_value": item["unit_price"],
                "server_value": quote.unit_price,
            })
        if not availability.ok:
            discrepancies.append({
                "line": index,
                "variant_id": variant.id,
                "field": "quantity",
                "client_value": item["quantity"],
                "server_value": availability.current_stock,
            })

    return {
        "valid": not discrepancies,
        "items": lines,
        "subtotal": subtotal,
        "total_discount": total_discount,
        "discrepancies": discrepancies,
    }


# =============================================================================
# CREATION
# =============================================================================

def create_order(data: dict, *, actor: Actor) -> Order:
    """
    Create an order from a payload already cleaned by validate_create_order().

    Raises:
        Forbidden: actor may not create orders
        NotFound / ValidationError: unknown or inactive variant
        InvalidDiscountConfiguration: a variant's discount data is malformed
        InsufficientStock: a line cannot be reserved; nothing was persisted
        StorageUnavailable: transient storage errors exhausted the retries
    """
    require_capability(actor, "ORDER_CREATE")
    prefix = current_app.config.get("ORDER_NUMBER_PREFIX", "QUE")
    customer = data["customer"]

    def _op() -> Order:
        # Number allocation may commit its own sequence row, so it goes first
        order_number = next_document_number(document_type=ORDER_DOCUMENT_TYPE, prefix=prefix)
        priced = price_items(data["items"])

        order = Order(
            order_number=order_number,
            customer_name=customer["name"],
            customer_email=customer["email"],
            customer_phone=customer["phone"],
            shipping_address=customer["address"] if data["delivery_method"] == "delivery" else None,
            delivery_method=data["delivery_method"],
            payment_method=data["payment_method"],
            delivery_notes=data.get("delivery_notes"),
            customer_notes=data.get("customer_notes"),
            shipping_cost=0,
            created_by=actor.id,
        )
        db.session.add(order)
        _build_lines(order, priced)
        order.recompute_totals()
        db.session.flush()

        stock_service.reserve_all(
            data["items"],
            order_id=order.id,
            actor_id=actor.id,
            movement_type="sale",
            reason=f"Order {order_number}",
        )

        audit_service.record(
            actor=actor,
            action="order.created",
            entity_type="order",
            entity_id=order.id,
            before=None,
            after=order.to_dict(),
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("Order %s created: %d lines, total %d", order.order_number, len(order.lines), order.total)
    return order


# =============================================================================
# READS
# =============================================================================

def load_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def ensure_can_view(order: Order, actor: Actor) -> None:
    if can(actor.role, "ORDER_VIEW_ALL"):
        return
    require_capability(actor, "ORDER_VIEW_OWN")
    if actor.id is None or order.created_by != actor.id:
        raise NotFound(f"Order {order.id} not found", details={"order_id": order.id})


def get_order(order_id: int, *, actor: Actor) -> Order:
    order = load_order(order_id)
    ensure_can_view(order, actor)
    return order


def get_order_by_number(order_number: str, *, actor: Actor) -> Order:
    order = db.session.query(Order).filter_by(order_number=order_number).first()
    if order is None:
        raise NotFound(f"Order {order_number} not found", details={"order_number": order_number})
    ensure_can_view(order, actor)
    return order


def list_orders(filters: dict, *, actor: Actor, own_only: bool = False) -> dict:
    """
    Paginated order listing, newest first.

    `filters` comes from validate_order_query(). Customers (and any caller
    with own_only=True) only ever see their own orders; `customerId` is
    honored for staff only.
    """
    query = db.session.query(Order)

    if own_only or not can(actor.role, "ORDER_VIEW_ALL"):
        require_capability(actor, "ORDER_VIEW_OWN")
        query = query.filter(Order.created_by == actor.id)
    elif filters.get("customer_id"):
        query = query.filter(Order.created_by == filters["customer_id"])

    if filters.get("status"):
        query = query.filter(Order.status == filters["status"])
    if filters.get("delivery_method"):
        query = query.filter(Order.delivery_method == filters["delivery_method"])
    if filters.get("payment_method"):
        query = query.filter(Order.payment_method == filters["payment_method"])
    if filters.get("start_date"):
        query = query.filter(Order.created_at >= datetime.combine(filters["start_date"], time.min))
    if filters.get("end_date"):
        # endDate is inclusive of the whole day
        query = query.filter(
            Order.created_at < datetime.combine(filters["end_date"] + timedelta(days=1), time.min)
        )
    if filters.get("search"):
        # Wildcards in the term match literally
        term = filters["search"].replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        like = f"%{term}%"
        query = query.filter(
            or_(
                Order.order_number.ilike(like, escape="\\"),
                Order.customer_name.ilike(like, escape="\\"),
                Order.customer_email.ilike(like, escape="\\"),
            )
        )

    page = filters.get("page") or 1
    per_page = filters.get("limit") or 20

    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    orders = (
        query.order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )

    return {
        "items": [o.to_dict(include_lines=False) for o in orders],
        "count": len(orders),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }
