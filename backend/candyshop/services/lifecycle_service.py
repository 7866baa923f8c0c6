# Overview: Service-layer operations for the order lifecycle; encapsulates business logic and database work.

"""
Order Lifecycle Service

================================================================================
PURPOSE: Enforce the order status state machine and its side effects
================================================================================

STATE MACHINE:
    pending_whatsapp -> confirmed -> preparing -> shipped -> completed
           |               |            |
           +---------------+------------+--> cancelled

    pending_whatsapp: created, stock reserved, waiting for the WhatsApp handoff
    confirmed:        staff agreed price + shipping with the customer
    preparing:        being packed
    shipped:          left the warehouse; cancellation is a return, not ours
    completed:        TERMINAL
    cancelled:        TERMINAL, stock restored exactly once

RULES (NON-NEGOTIABLE):
1. Forward moves are one step at a time (confirmed -> shipped is rejected)
2. Nothing leaves a terminal state
3. Cancellation restores stock in the same transaction as the status write;
   the optimistic version check on the order makes a concurrent second
   cancellation fail instead of crediting stock twice
4. Every mutation writes one audit entry with before/after snapshots
5. Guards raise, never no-op: InvalidTransition carries a reason
   (already_in_state, not_allowed, terminal); role problems are Forbidden

ROLES:
    Staff (admin, operator) drive every transition. A customer may only
    cancel their own order while it is still pending_whatsapp. Someone
    else's order is NotFound to a customer, exactly as on reads.
================================================================================
"""

from __future__ import annotations

import logging

from ..errors import Forbidden, InvalidTransition, ValidationError
from ..extensions import db
from ..models import Order, OrderStatus, TERMINAL_STATUSES
from ..permissions import Actor, can, require_capability
from . import audit_service, order_service, stock_service
from .concurrency import check_expected_version, run_with_retry
from candyshop.time_utils import utcnow

logger = logging.getLogger(__name__)


PENDING = OrderStatus.PENDING_WHATSAPP.value
CONFIRMED = OrderStatus.CONFIRMED.value
PREPARING = OrderStatus.PREPARING.value
SHIPPED = OrderStatus.SHIPPED.value
COMPLETED = OrderStatus.COMPLETED.value
CANCELLED = OrderStatus.CANCELLED.value

# Happy path, in order
HAPPY_PATH = (PENDING, CONFIRMED, PREPARING, SHIPPED, COMPLETED)

# The only legal (from, to) pairs
TRANSITIONS = {
    PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {PREPARING, CANCELLED},
    PREPARING: {SHIPPED, CANCELLED},
    SHIPPED: {COMPLETED},
    COMPLETED: set(),
    CANCELLED: set(),
}

# Column stamped when an order enters each status
STATUS_TIMESTAMPS = {
    CONFIRMED: "confirmed_at",
    PREPARING: "preparing_at",
    SHIPPED: "shipped_at",
    COMPLETED: "completed_at",
    CANCELLED: "cancelled_at",
}

EDITABLE_STATUSES = {PENDING, CONFIRMED, PREPARING}


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, set())


def next_status(current: str) -> str | None:
    """Next happy-path status, or None at the end of the path / for cancelled."""
    if current not in HAPPY_PATH:
        return None
    index = HAPPY_PATH.index(current)
    return HAPPY_PATH[index + 1] if index + 1 < len(HAPPY_PATH) else None


def _reject(order: Order, target: str, reason: str, message: str) -> InvalidTransition:
    return InvalidTransition(
        message,
        details={
            "order_id": order.id,
            "current_status": order.status,
            "target_status": target,
            "reason": reason,
        },
    )


def guard_transition(order: Order, target: str) -> None:
    """
    Raise InvalidTransition unless `order` may move to `target` right now.

    Distinguishes "already there" from "terminal" from "not a legal edge" so
    staff UIs can tell a double-click from a real mistake.
    """
    if order.status == target:
        raise _reject(order, target, "already_in_state", f"Order {order.order_number} is already {target}")
    if order.status in TERMINAL_STATUSES:
        raise _reject(
            order, target, "terminal",
            f"Order {order.order_number} is {order.status} and cannot change status",
        )
    if not can_transition(order.status, target):
        raise _reject(
            order, target, "not_allowed",
            f"Cannot move order {order.order_number} from {order.status} to {target}",
        )


def _guard_mutable(order: Order, action: str) -> None:
    if order.status in TERMINAL_STATUSES:
        raise _reject(
            order, order.status, "terminal",
            f"Order {order.order_number} is {order.status}; {action} is no longer possible",
        )


def _enter_status(order: Order, target: str) -> None:
    order.status = target
    stamp = STATUS_TIMESTAMPS.get(target)
    if stamp:
        setattr(order, stamp, utcnow())


def _mutate(order_id: int, *, actor: Actor, action: str, expected_version: int | None, apply) -> Order:
    """
    Shared mutation envelope: load, visibility and version checks, apply,
    audit, commit.

    An order the actor may not view raises NotFound before anything about
    its state is revealed.

    `apply(order)` performs guards and changes on the freshly loaded order.
    Runs under run_with_retry, so a transient failure re-loads and
    re-validates from scratch.
    """
    def _op() -> Order:
        order = order_service.load_order(order_id)
        order_service.ensure_can_view(order, actor)
        check_expected_version(order, expected_version)
        before = order.to_dict()

        apply(order)
        db.session.flush()

        audit_service.record(
            actor=actor,
            action=action,
            entity_type="order",
            entity_id=order.id,
            before=before,
            after=order.to_dict(),
        )
        db.session.commit()
        return order

    order = run_with_retry(_op)
    logger.info("%s on %s by %s/%s", action, order.order_number, actor.role, actor.id)
    return order


# =============================================================================
# TRANSITIONS
# =============================================================================

def confirm(
    order_id: int,
    *,
    actor: Actor,
    shipping_cost: int | None = None,
    notes: str | None = None,
    expected_version: int | None = None,
) -> Order:
    """
    pending_whatsapp -> confirmed. Staff only.

    Sets the agreed shipping cost (unchanged when None), recomputes the
    total and stamps confirmed_at.
    """
    require_capability(actor, "ORDER_CONFIRM")

    def apply(order: Order) -> None:
        guard_transition(order, CONFIRMED)
        if shipping_cost is not None:
            order.shipping_cost = shipping_cost
        if notes is not None:
            order.admin_notes = notes
        order.recompute_totals()
        _enter_status(order, CONFIRMED)

    return _mutate(order_id, actor=actor, action="order.confirmed", expected_version=expected_version, apply=apply)


def advance(
    order_id: int,
    target_status: str,
    *,
    actor: Actor,
    notes: str | None = None,
    expected_version: int | None = None,
) -> Order:
    """
    Move one step along confirmed -> preparing -> shipped -> completed. Staff only.

    Skipping a step, going backwards, and leaving pending_whatsapp without
    confirm() are all InvalidTransition.
    """
    require_capability(actor, "ORDER_ADVANCE")

    def apply(order: Order) -> None:
        guard_transition(order, target_status)
        if order.status == PENDING or next_status(order.status) != target_status:
            raise _reject(
                order, target_status, "not_allowed",
                f"Cannot move order {order.order_number} from {order.status} to {target_status}",
            )
        if notes is not None:
            order.admin_notes = notes
        _enter_status(order, target_status)

    return _mutate(
        order_id, actor=actor, action=f"order.{target_status}", expected_version=expected_version, apply=apply,
    )


def apply_status_update(order_id: int, data: dict, *, actor: Actor) -> Order:
    """Dispatch a validated status update to confirm() or advance()."""
    if data["status"] == CONFIRMED:
        return confirm(
            order_id,
            actor=actor,
            shipping_cost=data.get("shipping_cost"),
            notes=data.get("admin_notes"),
            expected_version=data.get("expected_version"),
        )
    return advance(
        order_id,
        data["status"],
        actor=actor,
        notes=data.get("admin_notes"),
        expected_version=data.get("expected_version"),
    )


def _authorize_cancel(order: Order, actor: Actor) -> None:
    if can(actor.role, "ORDER_CANCEL"):
        return
    require_capability(actor, "ORDER_CANCEL_OWN")
    if order.status != PENDING:
        raise Forbidden(
            f"Order {order.order_number} is {order.status}; contact the store to cancel it",
            details={"order_id": order.id, "current_status": order.status, "required_capability": "ORDER_CANCEL"},
        )


def cancel(
    order_id: int,
    reason: str,
    *,
    actor: Actor,
    expected_version: int | None = None,
) -> Order:
    """
    Cancel an order and restore its stock reservation exactly once.

    Staff may cancel from pending_whatsapp, confirmed or preparing; the
    originating customer only from pending_whatsapp.
    """
    if not (can(actor.role, "ORDER_CANCEL") or can(actor.role, "ORDER_CANCEL_OWN")):
        require_capability(actor, "ORDER_CANCEL")
    if not reason or len(reason.strip()) < 10:
        raise ValidationError("cancellationReason must be at least 10 characters", field="cancellationReason")

    def apply(order: Order) -> None:
        # Legality first so a repeated cancel reads as already_in_state
        guard_transition(order, CANCELLED)
        _authorize_cancel(order, actor)
        stock_service.restore_for_order(order, actor_id=actor.id, movement_type="cancellation")
        order.cancellation_reason = reason.strip()
        order.cancelled_by = actor.id
        _enter_status(order, CANCELLED)

    return _mutate(order_id, actor=actor, action="order.cancelled", expected_version=expected_version, apply=apply)


# =============================================================================
# NON-STATUS MUTATIONS
# =============================================================================

def mark_notification_sent(order_id: int, *, actor: Actor, message_id: str | None = None) -> Order:
    """
    Record that the WhatsApp handoff was acknowledged. Status is untouched.

    Repeating the call with no new message id leaves the order unchanged.
    """
    require_capability(actor, "ORDER_MARK_NOTIFIED")

    order = order_service.load_order(order_id)
    if order.whatsapp_sent and message_id in (None, order.whatsapp_message_id):
        return order

    def apply(order: Order) -> None:
        order.whatsapp_sent = True
        order.whatsapp_sent_at = utcnow()
        if message_id is not None:
            order.whatsapp_message_id = message_id

    return _mutate(order_id, actor=actor, action="order.notification_sent", expected_version=None, apply=apply)


def update_shipping_cost(
    order_id: int,
    shipping_cost: int,
    *,
    actor: Actor,
    expected_version: int | None = None,
) -> Order:
    require_capability(actor, "ORDER_UPDATE_SHIPPING")

    def apply(order: Order) -> None:
        _guard_mutable(order, "changing shipping cost")
        order.shipping_cost = shipping_cost
        order.recompute_totals()

    return _mutate(
        order_id, actor=actor, action="order.shipping_updated", expected_version=expected_version, apply=apply,
    )


def attach_payment_proof(
    order_id: int,
    url: str,
    *,
    actor: Actor,
    expected_version: int | None = None,
) -> Order:
    """Staff, or the customer who placed the order (others get NotFound)."""
    require_capability(actor, "ORDER_ATTACH_PAYMENT_PROOF")

    def apply(order: Order) -> None:
        _guard_mutable(order, "attaching payment proof")
        order.payment_proof = url

    return _mutate(
        order_id, actor=actor, action="order.payment_proof_attached", expected_version=expected_version, apply=apply,
    )


def edit_items(
    order_id: int,
    items: list[dict],
    *,
    actor: Actor,
    notes: str | None = None,
    expected_version: int | None = None,
) -> Order:
    """
    Replace an order's lines: restore the old reservation, re-price and
    reserve the new lines. All-or-nothing; staff only.

    Allowed while the order still holds its reservation
    (pending_whatsapp, confirmed, preparing).
    """
    require_capability(actor, "ORDER_EDIT_ITEMS")

    def apply(order: Order) -> None:
        if order.status not in EDITABLE_STATUSES:
            raise _reject(
                order, order.status, "terminal" if order.status in TERMINAL_STATUSES else "not_allowed",
                f"Order {order.order_number} is {order.status}; its items can no longer be edited",
            )
        stock_service.restore_for_order(order, actor_id=actor.id, movement_type="edit")
        priced = order_service.price_items(items)
        order_service.replace_lines(order, priced)
        db.session.flush()
        stock_service.reserve_all(
            items,
            order_id=order.id,
            actor_id=actor.id,
            movement_type="edit",
            reason=f"Order {order.order_number} edit",
        )
        if notes is not None:
            order.admin_notes = notes
        # Force a version bump even when totals are unchanged
        order.updated_at = utcnow()

    return _mutate(order_id, actor=actor, action="order.items_edited", expected_version=expected_version, apply=apply)
