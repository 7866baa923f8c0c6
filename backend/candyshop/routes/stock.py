# Overview: Flask API routes for stock levels and adjustments; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderError, ValidationError
from ..services import stock_service
from ..decorators import require_actor, require_capability
from .. import validation


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _limit_arg(default: int = 50) -> int:
    raw = request.args.get("limit")
    if raw is None:
        return default
    if not raw.isdigit() or not 1 <= int(raw) <= validation.MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be an integer between 1 and {validation.MAX_PAGE_SIZE}", field="limit")
    return int(raw)


@stock_bp.get("/<int:variant_id>/availability")
@require_actor
@require_capability("STOCK_VIEW")
def availability_route(variant_id: int):
    """
    Classify whether `quantity` units can be reserved now.

    Query params: quantity (default 1)
    Returns status: available | insufficient | backorder_allowed
    """
    try:
        quantity = validation.positive_int(request.args.get("quantity", "1"), "quantity")
        check = stock_service.check_availability(variant_id, quantity)
        return jsonify(check.to_dict()), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to check availability")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/low")
@require_actor
@require_capability("STOCK_VIEW")
def low_stock_route():
    try:
        variants = stock_service.low_stock_variants(limit=_limit_arg())
        return jsonify({"items": [v.to_dict() for v in variants], "count": len(variants)}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list low stock variants")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/out")
@require_actor
@require_capability("STOCK_VIEW")
def out_of_stock_route():
    try:
        variants = stock_service.out_of_stock_variants(limit=_limit_arg())
        return jsonify({"items": [v.to_dict() for v in variants], "count": len(variants)}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list out of stock variants")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.post("/adjust")
@require_actor
@require_capability("STOCK_ADJUST")
def adjust_route():
    """
    Manual stock correction or restock (admin only).

    Request body:
    {
        "variant": 12,
        "quantity": -3,          (signed, non-zero)
        "type": "adjustment",    (or "restock", quantity > 0)
        "reason": "Broken bags found during count",
        "notes": "..."           (optional)
    }

    Returns:
        201: Movement recorded
        409: Adjustment would drive stock negative
    """
    try:
        data = validation.validate_stock_adjustment(request.get_json(silent=True))
        movement = stock_service.adjust(
            data["variant_id"],
            data["delta"],
            reason=data["reason"],
            actor_id=g.actor.id,
            movement_type=data["movement_type"],
            notes=data["notes"],
        )
        return jsonify({"movement": movement.to_dict()}), 201

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@stock_bp.get("/<int:variant_id>/movements")
@require_actor
@require_capability("STOCK_VIEW")
def variant_movements_route(variant_id: int):
    try:
        movements = stock_service.movements_for_variant(variant_id, limit=_limit_arg(100))
        return jsonify({"movements": [m.to_dict() for m in movements], "count": len(movements)}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list stock movements")
        return jsonify({"error": "Internal server error"}), 500
