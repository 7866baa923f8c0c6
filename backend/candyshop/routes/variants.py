# Overview: Flask API routes for catalog products and variants; parses input and returns JSON responses.

"""
Catalog API Routes

Only the catalog surface the pricing engine needs: parent products carrying
the discount flags, and variants carrying price, stock settings and discount
configuration. Discount configuration is validated on every write.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderError
from ..services import catalog_service, discount_service
from ..decorators import require_actor, require_capability
from .. import validation


variants_bp = Blueprint("variants", __name__, url_prefix="/api")


def _variant_payload(variant) -> dict:
    data = variant.to_dict()
    data["tier_previews"] = discount_service.tier_previews(variant)
    return data


@variants_bp.get("/variants")
@require_actor
def list_variants_route():
    """
    List active variants (staff may pass includeInactive=true).

    Query params: parentId, includeInactive
    """
    try:
        parent_id = request.args.get("parentId")
        if parent_id is not None:
            parent_id = validation.positive_int(parent_id, "parentId")
        include_inactive = g.actor.is_staff and request.args.get("includeInactive") == "true"

        variants = catalog_service.list_variants(parent_id=parent_id, include_inactive=include_inactive)
        return jsonify({"items": [_variant_payload(v) for v in variants], "count": len(variants)}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to list variants")
        return jsonify({"error": "Internal server error"}), 500


@variants_bp.get("/variants/<int:variant_id>")
@require_actor
def get_variant_route(variant_id: int):
    try:
        variant = catalog_service.get_variant(variant_id)
        if not variant.active and not g.actor.is_staff:
            return jsonify({"error": f"Variant {variant_id} not found", "code": "NotFound", "details": {}}), 404
        return jsonify({"variant": _variant_payload(variant)}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to get variant")
        return jsonify({"error": "Internal server error"}), 500


@variants_bp.get("/variants/<int:variant_id>/price")
@require_actor
def quote_variant_route(variant_id: int):
    """Price `quantity` units (default 1) with the current discounts."""
    try:
        quantity = validation.positive_int(request.args.get("quantity", "1"), "quantity")
        variant = catalog_service.get_variant(variant_id)
        flags = variant.parent.pricing_flags() if variant.parent else None
        quote = discount_service.price_line(variant, quantity, flags)
        return jsonify({
            "variant_id": variant.id,
            "quantity": quantity,
            **quote.to_dict(),
            "line_total": quote.line_total(quantity),
        }), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to price variant")
        return jsonify({"error": "Internal server error"}), 500


@variants_bp.post("/variants")
@require_actor
@require_capability("CATALOG_MANAGE")
def create_variant_route():
    """
    Create a variant.

    Request body:
    {
        "parentId": 1, "sku": "GOM-OSO-1KG", "name": "Ositos 1kg", "price": 1000,
        "stock": 40, "attributes": {"size": "1kg"},
        "tieredDiscount": {"active": true, "tiers": [{"minQuantity": 5, "type": "unit_price", "value": 900}]}
    }

    Returns:
        201: Variant created
        409: SKU already exists
        422: Invalid discount configuration
    """
    try:
        patch = validation.validate_variant_payload(request.get_json(silent=True), partial=False)
        variant = catalog_service.create_variant(patch, actor=g.actor)
        return jsonify({"variant": _variant_payload(variant)}), 201

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create variant")
        return jsonify({"error": "Internal server error"}), 500


@variants_bp.patch("/variants/<int:variant_id>")
@require_actor
@require_capability("CATALOG_MANAGE")
def update_variant_route(variant_id: int):
    """Partial update; stock changes go through /api/stock/adjust."""
    try:
        body = request.get_json(silent=True)
        expected_version = None
        if isinstance(body, dict) and "expectedVersion" in body:
            body = dict(body)
            expected_version = validation.positive_int(body.pop("expectedVersion"), "expectedVersion")
        patch = validation.validate_variant_payload(body, partial=True)
        variant = catalog_service.update_variant(
            variant_id, patch, actor=g.actor, expected_version=expected_version,
        )
        return jsonify({"variant": _variant_payload(variant)}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update variant")
        return jsonify({"error": "Internal server error"}), 500


@variants_bp.delete("/variants/<int:variant_id>")
@require_actor
@require_capability("CATALOG_MANAGE")
def deactivate_variant_route(variant_id: int):
    """Soft-delete; refused (409) while open orders reference the variant."""
    try:
        variant = catalog_service.deactivate_variant(variant_id, actor=g.actor)
        return jsonify({"variant": variant.to_dict()}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to deactivate variant")
        return jsonify({"error": "Internal server error"}), 500


@variants_bp.post("/products")
@require_actor
@require_capability("CATALOG_MANAGE")
def create_parent_route():
    """Request body: {"name", "description"?, "discountsEnabled"?, "promotional"?}"""
    try:
        patch = validation.validate_parent_payload(request.get_json(silent=True))
        parent = catalog_service.create_parent(patch, actor=g.actor)
        return jsonify({"product": parent.to_dict()}), 201

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@variants_bp.put("/products/<int:parent_id>")
@require_actor
@require_capability("CATALOG_MANAGE")
def update_parent_route(parent_id: int):
    try:
        patch = validation.validate_parent_payload(request.get_json(silent=True))
        parent = catalog_service.update_parent(parent_id, patch, actor=g.actor)
        return jsonify({"product": parent.to_dict()}), 200

    except OrderError as e:
        return jsonify(e.to_dict()), e.http_status
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500
