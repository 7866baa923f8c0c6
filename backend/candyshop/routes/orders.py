# Overview: Flask API routes for order operations; parses input and returns JSON responses.

# backend/candyshop/routes/orders.py
"""
Order API Routes

DESIGN:
- Checkout (guest or customer) creates an order with server-computed totals
- Staff drive the lifecycle: confirm, advance, cancel, shipping, item edits
- Customers read, cancel (while pending_whatsapp) and pay for their own orders
- Every route maps OrderError subclasses to their HTTP status and JSON body;
  anything else is logged and answered with a generic 500

ACTOR:
- Identity comes from gateway headers (see decorators.require_actor)
- Route-level capability checks are coarse; services enforce ownership
  and status-dependent rules
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderError, ValidationError
from ..services import audit_service, lifecycle_service, order_service, stock_service
from ..decorators import require_actor, require_capability, require_any_capability
from .. import validation


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _body():
    return request.get_json(silent=True)


# =============================================================================
# CHECKOUT
# =============================================================================

@orders_bp.post("")
@require_actor
@require_capability("ORDER_CREATE")
def create_order_route():
    """
    Create an order (status: pending_whatsapp).

    Request body:
    {
        "customer": {"name", "email", "phone", "address": {"street", "number", "city", ...}},
        "items": [{"variant": 12, "quantity": 5}],
        "deliveryMethod": "delivery" | "pickup",
        "paymentMethod": "cash-on-delivery" | "transfer" | "card",
        "deliveryNotes": "...", "customerNotes": "..."
    }

    Returns:
        201: Order created, stock reserved
        400: Validation error (details.field carries the path)
        404: Unknown variant
        409: Insufficient stock
        422: Broken discount configuration on a variant
        503: Storage unavailable, retry
    """
    try:
        data = validation.validate_create_order(_body())
        order = order_service.create_order(data, actor=g.actor)
        return jsonify({"order": order.to_dict()}), 201

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/validate-cart")
@require_actor
@require_capability("CART_VALIDATE")
def validate_cart_route():
    """
    Re-price a cart server-side before checkout.

    Request body: {"items": [{"variant": 12, "quantity": 5, "unitPrice": 900}]}
    Returns the authoritative prices and a list of discrepancies.
    """
    try:
        items = validation.validate_cart(_body())
        return jsonify(order_service.price_cart(items)), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to validate cart")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# READS
# =============================================================================

@orders_bp.get("")
@require_actor
@require_any_capability("ORDER_VIEW_ALL", "ORDER_VIEW_OWN")
def list_orders_route():
    """
    List orders, newest first.

    Query params: page, limit (<=100), status, deliveryMethod, paymentMethod,
    customerId (staff only), startDate, endDate (YYYY-MM-DD), search
    """
    try:
        filters = validation.validate_order_query(request.args)
        return jsonify(order_service.list_orders(filters, actor=g.actor)), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/mine")
@require_actor
@require_capability("ORDER_VIEW_OWN")
def my_orders_route():
    try:
        filters = validation.validate_order_query(request.args)
        return jsonify(order_service.list_orders(filters, actor=g.actor, own_only=True)), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list own orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_actor
@require_any_capability("ORDER_VIEW_ALL", "ORDER_VIEW_OWN")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, actor=g.actor)
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/number/<string:order_number>")
@require_actor
@require_any_capability("ORDER_VIEW_ALL", "ORDER_VIEW_OWN")
def get_order_by_number_route(order_number: str):
    try:
        order = order_service.get_order_by_number(order_number, actor=g.actor)
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get order by number")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/audit")
@require_actor
@require_capability("AUDIT_VIEW")
def order_audit_route(order_id: int):
    """Before/after snapshots for every mutation of an order (admin only)."""
    try:
        order = order_service.load_order(order_id)
        entries = audit_service.entries_for("order", order.id)
        return jsonify({"entries": [e.to_dict() for e in entries], "count": len(entries)}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get order audit trail")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/movements")
@require_actor
@require_capability("STOCK_VIEW")
def order_movements_route(order_id: int):
    try:
        order = order_service.load_order(order_id)
        movements = stock_service.movements_for_order(order.id)
        return jsonify({"movements": [m.to_dict() for m in movements], "count": len(movements)}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get order stock movements")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LIFECYCLE
# =============================================================================

@orders_bp.post("/<int:order_id>/confirm")
@require_actor
@require_capability("ORDER_CONFIRM")
def confirm_order_route(order_id: int):
    """
    Confirm a pending order.

    Request body: {"shippingCost": 2000, "adminNotes": "...", "expectedVersion": 1}
    """
    try:
        body = _body()
        payload = dict(body) if isinstance(body, dict) else {}
        if "status" in payload:
            raise ValidationError("Field not allowed: status", field="status")
        payload["status"] = "confirmed"
        data = validation.validate_status_update(payload)
        order = lifecycle_service.apply_status_update(order_id, data, actor=g.actor)
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/status")
@require_actor
@require_any_capability("ORDER_CONFIRM", "ORDER_ADVANCE")
def update_status_route(order_id: int):
    """
    Move an order to its next status.

    Request body: {"status": "preparing", "adminNotes": "...", "expectedVersion": 2}

    Returns:
        200: Transition applied
        400: Invalid payload, or status=cancelled (use /cancel)
        409: Illegal transition (details.reason) or version conflict
    """
    try:
        data = validation.validate_status_update(_body())
        order = lifecycle_service.apply_status_update(order_id, data, actor=g.actor)
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
@require_any_capability("ORDER_CANCEL", "ORDER_CANCEL_OWN")
def cancel_order_route(order_id: int):
    """
    Cancel an order and restore its stock.

    Request body: {"cancellationReason": "10-500 chars", "expectedVersion": 3}
    """
    try:
        data = validation.validate_cancellation(_body())
        order = lifecycle_service.cancel(
            order_id,
            data["reason"],
            actor=g.actor,
            expected_version=data["expected_version"],
        )
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/shipping")
@require_actor
@require_capability("ORDER_UPDATE_SHIPPING")
def update_shipping_route(order_id: int):
    try:
        data = validation.validate_shipping_update(_body())
        order = lifecycle_service.update_shipping_cost(
            order_id,
            data["shipping_cost"],
            actor=g.actor,
            expected_version=data["expected_version"],
        )
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update shipping cost")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/items")
@require_actor
@require_capability("ORDER_EDIT_ITEMS")
def edit_items_route(order_id: int):
    """
    Replace an order's lines (re-priced, re-reserved, all-or-nothing).

    Request body: {"items": [{"variant": 12, "quantity": 3}], "adminNotes": "...", "expectedVersion": 2}
    """
    try:
        data = validation.validate_items_edit(_body())
        order = lifecycle_service.edit_items(
            order_id,
            data["items"],
            actor=g.actor,
            notes=data["admin_notes"],
            expected_version=data["expected_version"],
        )
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to edit order items")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/payment-proof")
@require_actor
@require_capability("ORDER_ATTACH_PAYMENT_PROOF")
def payment_proof_route(order_id: int):
    try:
        data = validation.validate_payment_proof(_body())
        order = lifecycle_service.attach_payment_proof(
            order_id,
            data["payment_proof"],
            actor=g.actor,
            expected_version=data["expected_version"],
        )
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to attach payment proof")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/whatsapp-sent")
@require_actor
@require_capability("ORDER_MARK_NOTIFIED")
def whatsapp_sent_route(order_id: int):
    """Record the WhatsApp handoff. Request body (optional): {"messageId": "..."}"""
    try:
        data = validation.validate_notification(_body())
        order = lifecycle_service.mark_notification_sent(
            order_id,
            actor=g.actor,
            message_id=data["message_id"],
        )
        return jsonify({"order": order.to_dict()}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to mark notification sent")
        return jsonify({"error": "Internal server error"}), 500
