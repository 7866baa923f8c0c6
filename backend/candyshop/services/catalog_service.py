# Overview: Service-layer operations for catalog products and variants; encapsulates business logic and database work.

from __future__ import annotations

import logging

from ..errors import Conflict, NotFound
from ..extensions import db
from ..models import Order, OrderLine, ProductParent, ProductVariant, TERMINAL_STATUSES
from ..permissions import Actor, require_capability
from . import audit_service, discount_service, stock_service
from .concurrency import check_expected_version, run_with_retry

logger = logging.getLogger(__name__)

# Fields a variant update may touch; stock moves only through stock_service
VARIANT_MUTABLE_FIELDS = {
    "sku", "name", "attributes", "price", "track_stock", "allow_backorder",
    "low_stock_threshold", "fixed_discount", "tiered_discount", "active",
}
PARENT_MUTABLE_FIELDS = {"name", "description", "discounts_enabled", "promotional"}


def apply_patch(entity, patch: dict, allowed: set[str]) -> None:
    for k, v in patch.items():
        if k not in allowed:
            continue
        setattr(entity, k, v)


def _require_unique_sku(sku: str, exclude_id: int | None = None) -> None:
    query = db.session.query(ProductVariant.id).filter(ProductVariant.sku == sku)
    if exclude_id is not None:
        query = query.filter(ProductVariant.id != exclude_id)
    if query.first():
        raise Conflict(f"SKU {sku} already exists", details={"field": "sku", "sku": sku})


def get_parent(parent_id: int) -> ProductParent:
    parent = db.session.get(ProductParent, parent_id)
    if parent is None:
        raise NotFound(f"Product {parent_id} not found", details={"parent_id": parent_id})
    return parent


def get_variant(variant_id: int) -> ProductVariant:
    variant = db.session.get(ProductVariant, variant_id)
    if variant is None:
        raise NotFound(f"Variant {variant_id} not found", details={"variant_id": variant_id})
    return variant


def list_variants(*, parent_id: int | None = None, include_inactive: bool = False) -> list[ProductVariant]:
    query = db.session.query(ProductVariant)
    if parent_id is not None:
        query = query.filter(ProductVariant.parent_id == parent_id)
    if not include_inactive:
        query = query.filter(ProductVariant.active.is_(True))
    return query.order_by(ProductVariant.parent_id.asc(), ProductVariant.id.asc()).all()


def create_parent(patch: dict, *, actor: Actor) -> ProductParent:
    require_capability(actor, "CATALOG_MANAGE")

    def _op() -> ProductParent:
        parent = ProductParent()
        apply_patch(parent, patch, PARENT_MUTABLE_FIELDS)
        db.session.add(parent)
        db.session.flush()
        audit_service.record(
            actor=actor, action="product.created", entity_type="product",
            entity_id=parent.id, after=parent.to_dict(),
        )
        db.session.commit()
        return parent

    return run_with_retry(_op)


def update_parent(parent_id: int, patch: dict, *, actor: Actor) -> ProductParent:
    require_capability(actor, "CATALOG_MANAGE")

    def _op() -> ProductParent:
        parent = get_parent(parent_id)
        before = parent.to_dict()
        apply_patch(parent, patch, PARENT_MUTABLE_FIELDS)
        db.session.flush()
        audit_service.record(
            actor=actor, action="product.updated", entity_type="product",
            entity_id=parent.id, before=before, after=parent.to_dict(),
        )
        db.session.commit()
        return parent

    return run_with_retry(_op)


def create_variant(patch: dict, *, actor: Actor) -> ProductVariant:
    """
    Create a variant from a validate_variant_payload() patch.

    Discount configuration is checked against the final price before
    anything is written; an opening stock balance gets a ledger row.
    """
    require_capability(actor, "CATALOG_MANAGE")

    def _op() -> ProductVariant:
        get_parent(patch["parent_id"])
        _require_unique_sku(patch["sku"])

        variant = ProductVariant(
            parent_id=patch["parent_id"],
            sku=patch["sku"],
            name=patch.get("name") or patch["sku"],
            attributes=patch.get("attributes") or {},
            price=patch["price"],
            stock=patch.get("stock", 0),
        )
        apply_patch(variant, {k: v for k, v in patch.items() if k not in {"sku", "name", "price"}},
                    VARIANT_MUTABLE_FIELDS)
        discount_service.validate_discount_configuration(variant)

        db.session.add(variant)
        db.session.flush()
        stock_service.record_initial_stock(variant, actor_id=actor.id)
        audit_service.record(
            actor=actor, action="variant.created", entity_type="variant",
            entity_id=variant.id, after=variant.to_dict(),
        )
        db.session.commit()
        return variant

    variant = run_with_retry(_op)
    logger.info("Variant %s created (stock %d)", variant.sku, variant.stock)
    return variant


def update_variant(
    variant_id: int,
    patch: dict,
    *,
    actor: Actor,
    expected_version: int | None = None,
) -> ProductVariant:
    """Patch a variant. Price changes re-validate the tier price curve."""
    require_capability(actor, "CATALOG_MANAGE")

    def _op() -> ProductVariant:
        variant = get_variant(variant_id)
        check_expected_version(variant, expected_version, label="variant")
        if "sku" in patch and patch["sku"] != variant.sku:
            _require_unique_sku(patch["sku"], exclude_id=variant.id)

        before = variant.to_dict()
        apply_patch(variant, patch, VARIANT_MUTABLE_FIELDS)
        discount_service.validate_discount_configuration(variant)
        db.session.flush()

        audit_service.record(
            actor=actor, action="variant.updated", entity_type="variant",
            entity_id=variant.id, before=before, after=variant.to_dict(),
        )
        db.session.commit()
        return variant

    return run_with_retry(_op)


def open_orders_for_variant(variant_id: int) -> list[str]:
    rows = (
        db.session.query(Order.order_number)
        .join(OrderLine, OrderLine.order_id == Order.id)
        .filter(OrderLine.variant_id == variant_id, Order.status.notin_(TERMINAL_STATUSES))
        .distinct()
        .all()
    )
    return sorted(r[0] for r in rows)


def deactivate_variant(variant_id: int, *, actor: Actor) -> ProductVariant:
    """
    Soft-delete a variant (active = False).

    Refused while any non-terminal order still references it; rows are
    never removed so historical lines and movements keep their variant.
    """
    require_capability(actor, "CATALOG_MANAGE")

    def _op() -> ProductVariant:
        variant = get_variant(variant_id)
        open_orders = open_orders_for_variant(variant.id)
        if open_orders:
            raise Conflict(
                f"Variant {variant.sku} is referenced by open orders",
                details={"variant_id": variant.id, "orders": open_orders},
            )
        if not variant.active:
            return variant

        before = variant.to_dict()
        variant.active = False
        db.session.flush()
        audit_service.record(
            actor=actor, action="variant.deactivated", entity_type="variant",
            entity_id=variant.id, before=before, after=variant.to_dict(),
        )
        db.session.commit()
        return variant

    return run_with_retry(_op)
