from __future__ import annotations

import re
from typing import Any

from .errors import ValidationError
from .models import ORDER_STATUSES, DELIVERY_METHODS, PAYMENT_METHODS, OrderStatus
from candyshop.time_utils import parse_calendar_date


"""
Request validation for the order engine.

Every validator runs before any pricing or stock work, returns a cleaned
dict, and raises ValidationError on the FIRST violation with a dotted field
path (e.g. "customer.address.street", "items.3.quantity"). Nothing is
partially accepted.
"""

MAX_ITEMS = 50
MAX_LINE_QUANTITY = 999
MAX_NOTES_LENGTH = 500
MAX_SEARCH_LENGTH = 100
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 20
MIN_CANCELLATION_REASON = 10
MAX_CANCELLATION_REASON = 500

# Maximum price: 999,999,999 units
MAX_PRICE = 999_999_999

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")
URL_RE = re.compile(r"^https?://[^\s]+$")
SKU_RE = re.compile(r"^[A-Z0-9][A-Z0-9\-_.]{0,63}$")


def _path(prefix: str, key: str | int) -> str:
    return f"{prefix}.{key}" if prefix else str(key)


def _require_object(value: Any, field: str) -> dict:
    if value is None:
        raise ValidationError(f"{field or 'body'} is required", field=field or None)
    if not isinstance(value, dict):
        raise ValidationError(f"{field or 'body'} must be an object", field=field or None)
    return value


def _reject_unknown(payload: dict, allowed: set[str], prefix: str = "") -> None:
    for key in payload.keys():
        if key not in allowed:
            raise ValidationError(f"Field not allowed: {_path(prefix, key)}", field=_path(prefix, key))


def _coerce_int(value: Any, field: str) -> int:
    """Strict integer parsing: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field)
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    raise ValidationError(f"{field} must be an integer", field=field)


def _int_in_range(value: Any, field: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    number = _coerce_int(value, field)
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", field=field)
    if maximum is not None and number > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", field=field)
    return number


def _string(
    value: Any,
    field: str,
    *,
    required: bool = True,
    min_length: int = 0,
    max_length: int | None = None,
) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip() and not required):
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    text = value.strip()
    if required and not text:
        raise ValidationError(f"{field} cannot be blank", field=field)
    if len(text) < min_length:
        raise ValidationError(f"{field} must be at least {min_length} characters", field=field)
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", field=field)
    return text


def _choice(value: Any, field: str, choices: tuple[str, ...]) -> str:
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}", field=field)
    return value


def _notes(payload: dict, key: str, field: str | None = None) -> str | None:
    return _string(payload.get(key), field or key, required=False, max_length=MAX_NOTES_LENGTH)


def _expected_version(payload: dict) -> int | None:
    if payload.get("expectedVersion") is None:
        return None
    return _int_in_range(payload["expectedVersion"], "expectedVersion", minimum=1)


def positive_int(value: Any, field: str) -> int:
    """Ids and quantities: positive integers (JSON number or digit string)."""
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    return _int_in_range(value, field, minimum=1)


variant_id = positive_int


# =============================================================================
# ORDER CREATION
# =============================================================================

ADDRESS_FIELDS = {"street", "number", "city", "neighborhood", "reference"}
CUSTOMER_FIELDS = {"name", "email", "phone", "address"}
CREATE_ORDER_FIELDS = {"customer", "items", "deliveryMethod", "paymentMethod", "deliveryNotes", "customerNotes"}


def _validate_address(value: Any, *, required: bool) -> dict | None:
    field = "customer.address"
    if value is None:
        if required:
            raise ValidationError("customer.address is required for delivery orders", field=field)
        return None
    address = _require_object(value, field)
    _reject_unknown(address, ADDRESS_FIELDS, field)
    return {
        "street": _string(address.get("street"), f"{field}.street", max_length=255),
        "number": _string(address.get("number"), f"{field}.number", max_length=32),
        "city": _string(address.get("city"), f"{field}.city", max_length=128),
        "neighborhood": _string(address.get("neighborhood"), f"{field}.neighborhood", required=False, max_length=128),
        "reference": _string(address.get("reference"), f"{field}.reference", required=False, max_length=255),
    }


def _validate_customer(value: Any, delivery_method: str) -> dict:
    customer = _require_object(value, "customer")
    _reject_unknown(customer, CUSTOMER_FIELDS, "customer")

    name = _string(customer.get("name"), "customer.name", min_length=2, max_length=255)

    email = _string(customer.get("email"), "customer.email", max_length=255)
    if not EMAIL_RE.match(email):
        raise ValidationError("customer.email is not a valid email address", field="customer.email")

    phone = customer.get("phone")
    if isinstance(phone, str):
        phone = re.sub(r"\s+", "", phone)
    phone = _string(phone, "customer.phone", max_length=16)
    if not PHONE_RE.match(phone):
        raise ValidationError("customer.phone must look like +595981123456", field="customer.phone")

    return {
        "name": name,
        "email": email.lower(),
        "phone": phone,
        "address": _validate_address(customer.get("address"), required=(delivery_method == "delivery")),
    }


def validate_items(value: Any, field: str = "items") -> list[dict]:
    """
    Validate 1-50 `{variant, quantity}` entries.

    Duplicate variants are merged by summing quantities; the merged
    quantity must still be within [1, 999]. Each merged item keeps the
    index of its first entry in `value` as "line".
    """
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    if not isinstance(value, list):
        raise ValidationError(f"{field} must be a list", field=field)
    if len(value) < 1:
        raise ValidationError(f"{field} must include at least one product", field=field)
    if len(value) > MAX_ITEMS:
        raise ValidationError(f"{field} cannot exceed {MAX_ITEMS} products", field=field)

    merged: dict[int, dict] = {}
    for index, raw in enumerate(value):
        item_field = _path(field, index)
        item = _require_object(raw, item_field)
        _reject_unknown(item, {"variant", "quantity"}, item_field)

        vid = variant_id(item.get("variant"), f"{item_field}.variant")
        if item.get("quantity") is None:
            raise ValidationError(f"{item_field}.quantity is required", field=f"{item_field}.quantity")
        quantity = _int_in_range(
            item.get("quantity"), f"{item_field}.quantity", minimum=1, maximum=MAX_LINE_QUANTITY
        )

        if vid in merged:
            merged[vid]["quantity"] += quantity
            if merged[vid]["quantity"] > MAX_LINE_QUANTITY:
                raise ValidationError(
                    f"{item_field}.quantity: combined quantity for variant {vid} exceeds {MAX_LINE_QUANTITY}",
                    field=f"{item_field}.quantity",
                )
        else:
            merged[vid] = {"variant_id": vid, "quantity": quantity, "line": index}

    return list(merged.values())


def validate_create_order(payload: Any) -> dict:
    """Validate a checkout submission. Client-computed totals are not accepted."""
    payload = _require_object(payload, "")
    _reject_unknown(payload, CREATE_ORDER_FIELDS)

    delivery_method = _choice(payload.get("deliveryMethod"), "deliveryMethod", DELIVERY_METHODS)
    payment_method = _choice(payload.get("paymentMethod"), "paymentMethod", PAYMENT_METHODS)
    customer = _validate_customer(payload.get("customer"), delivery_method)
    items = validate_items(payload.get("items"))

    return {
        "customer": customer,
        "items": items,
        "delivery_method": delivery_method,
        "payment_method": payment_method,
        "delivery_notes": _notes(payload, "deliveryNotes"),
        "customer_notes": _notes(payload, "customerNotes"),
    }


# =============================================================================
# ORDER MUTATIONS
# =============================================================================

def validate_shipping_cost(value: Any, field: str = "shippingCost") -> int:
    return _int_in_range(value, field, minimum=0, maximum=MAX_PRICE)


def validate_status_update(payload: Any) -> dict:
    payload = _require_object(payload, "")
    _reject_unknown(payload, {"status", "adminNotes", "shippingCost", "expectedVersion"})

    status = _choice(payload.get("status"), "status", ORDER_STATUSES)
    if status == OrderStatus.CANCELLED.value:
        raise ValidationError(
            "Use the cancellation endpoint to cancel an order (a reason is required)",
            field="status",
        )

    shipping_cost = None
    if payload.get("shippingCost") is not None:
        if status != OrderStatus.CONFIRMED.value:
            raise ValidationError("shippingCost can only be set when confirming", field="shippingCost")
        shipping_cost = validate_shipping_cost(payload["shippingCost"])

    return {
        "status": status,
        "admin_notes": _notes(payload, "adminNotes"),
        "shipping_cost": shipping_cost,
        "expected_version": _expected_version(payload),
    }


def validate_cancellation(payload: Any) -> dict:
    payload = _require_object(payload, "")
    _reject_unknown(payload, {"cancellationReason", "expectedVersion"})
    reason = _string(
        payload.get("cancellationReason"),
        "cancellationReason",
        min_length=MIN_CANCELLATION_REASON,
        max_length=MAX_CANCELLATION_REASON,
    )
    return {"reason": reason, "expected_version": _expected_version(payload)}


def validate_shipping_update(payload: Any) -> dict:
    payload = _require_object(payload, "")
    _reject_unknown(payload, {"shippingCost", "expectedVersion"})
    if payload.get("shippingCost") is None:
        raise ValidationError("shippingCost is required", field="shippingCost")
    return {
        "shipping_cost": validate_shipping_cost(payload["shippingCost"]),
        "expected_version": _expected_version(payload),
    }


def validate_payment_proof(payload: Any) -> dict:
    payload = _require_object(payload, "")
    _reject_unknown(payload, {"paymentProof", "expectedVersion"})
    url = _string(payload.get("paymentProof"), "paymentProof", max_length=MAX_NOTES_LENGTH)
    if not URL_RE.match(url):
        raise ValidationError("paymentProof must be an http(s) URL", field="paymentProof")
    return {"payment_proof": url, "expected_version": _expected_version(payload)}


def validate_items_edit(payload: Any) -> dict:
    payload = _require_object(payload, "")
    _reject_unknown(payload, {"items", "adminNotes", "expectedVersion"})
    return {
        "items": validate_items(payload.get("items")),
        "admin_notes": _notes(payload, "adminNotes"),
        "expected_version": _expected_version(payload),
    }


def validate_notification(payload: Any) -> dict:
    payload = _require_object(payload or {}, "")
    _reject_unknown(payload, {"messageId"})
    return {"message_id": _string(payload.get("messageId"), "messageId", required=False, max_length=128)}


def validate_cart(payload: Any) -> list[dict]:
    """
    Validate a serializable cart value: {items: [{variant, quantity, unitPrice?}]}.

    `unitPrice` is what the client displayed; it is only compared, never used.
    """
    payload = _require_object(payload, "")
    _reject_unknown(payload, {"items"})
    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list", field="items")
    if len(raw_items) > MAX_ITEMS:
        raise ValidationError(f"items cannot exceed {MAX_ITEMS} products", field="items")

    items = []
    for index, raw in enumerate(raw_items):
        item_field = _path("items", index)
        item = _require_object(raw, item_field)
        _reject_unknown(item, {"variant", "quantity", "unitPrice"}, item_field)
        displayed = None
        if item.get("unitPrice") is not None:
            displayed = _int_in_range(item["unitPrice"], f"{item_field}.unitPrice", minimum=0, maximum=MAX_PRICE)
        items.append({
            "variant_id": variant_id(item.get("variant"), f"{item_field}.variant"),
            "quantity": _int_in_range(
                item.get("quantity"), f"{item_field}.quantity", minimum=1, maximum=MAX_LINE_QUANTITY
            ),
            "unit_price": displayed,
        })
    return items


# =============================================================================
# QUERIES
# =============================================================================

ORDER_QUERY_FIELDS = {
    "page", "limit", "status", "deliveryMethod", "paymentMethod",
    "customerId", "startDate", "endDate", "search",
}


def validate_order_query(args) -> dict:
    """Validate list filters from request.args (all values arrive as strings)."""
    _reject_unknown(dict(args), ORDER_QUERY_FIELDS)

    page = _int_in_range(args.get("page", 1), "page", minimum=1)
    limit = _int_in_range(args.get("limit", DEFAULT_PAGE_SIZE), "limit", minimum=1, maximum=MAX_PAGE_SIZE)

    status = args.get("status")
    if status is not None:
        _choice(status, "status", ORDER_STATUSES)
    delivery_method = args.get("deliveryMethod")
    if delivery_method is not None:
        _choice(delivery_method, "deliveryMethod", DELIVERY_METHODS)
    payment_method = args.get("paymentMethod")
    if payment_method is not None:
        _choice(payment_method, "paymentMethod", PAYMENT_METHODS)

    dates = {}
    for key in ("startDate", "endDate"):
        raw = args.get(key)
        if raw is None:
            dates[key] = None
            continue
        try:
            dates[key] = parse_calendar_date(raw)
        except ValueError:
            raise ValidationError(f"{key} must be a YYYY-MM-DD date", field=key)
    if dates["startDate"] and dates["endDate"] and dates["startDate"] > dates["endDate"]:
        raise ValidationError("startDate must not be after endDate", field="startDate")

    return {
        "page": page,
        "limit": limit,
        "status": status,
        "delivery_method": delivery_method,
        "payment_method": payment_method,
        "customer_id": _string(args.get("customerId"), "customerId", required=False, max_length=64),
        "start_date": dates["startDate"],
        "end_date": dates["endDate"],
        "search": _string(args.get("search"), "search", required=False, max_length=MAX_SEARCH_LENGTH),
    }


# =============================================================================
# STOCK & CATALOG
# =============================================================================

def validate_stock_adjustment(payload: Any) -> dict:
    payload = _require_object(payload, "")
    _reject_unknown(payload, {"variant", "quantity", "type", "reason", "notes"})
    movement_type = _choice(payload.get("type", "adjustment"), "type", ("adjustment", "restock"))
    if payload.get("quantity") is None:
        raise ValidationError("quantity is required", field="quantity")
    delta = _coerce_int(payload.get("quantity"), "quantity")
    if delta == 0:
        raise ValidationError("quantity must be non-zero", field="quantity")
    return {
        "variant_id": variant_id(payload.get("variant"), "variant"),
        "delta": delta,
        "movement_type": movement_type,
        "reason": _string(payload.get("reason"), "reason", min_length=3, max_length=255),
        "notes": _notes(payload, "notes"),
    }


VARIANT_WRITABLE_FIELDS = {
    "parentId", "sku", "name", "attributes", "price", "stock", "trackStock",
    "allowBackorder", "lowStockThreshold", "fixedDiscount", "tieredDiscount", "active",
}
VARIANT_REQUIRED_ON_CREATE = {"parentId", "sku", "price"}
# stock is only settable at creation; later changes go through stock adjustments
VARIANT_CREATE_ONLY = {"parentId", "stock"}


def _bool(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be a boolean", field=field)
    return value


def validate_variant_payload(payload: Any, *, partial: bool) -> dict:
    """
    Validate + normalize a variant create (partial=False) or patch (partial=True).

    Returns a dict keyed by model attribute names. Discount structure is
    checked later by discount_service against the final price.
    """
    payload = _require_object(payload, "")
    _reject_unknown(payload, VARIANT_WRITABLE_FIELDS)

    if not partial:
        missing = sorted(f for f in VARIANT_REQUIRED_ON_CREATE if payload.get(f) is None)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])
    else:
        for key in VARIANT_CREATE_ONLY:
            if key in payload:
                raise ValidationError(f"{key} cannot be changed after creation", field=key)

    patch: dict = {}
    if "parentId" in payload:
        patch["parent_id"] = _int_in_range(payload["parentId"], "parentId", minimum=1)
    if "sku" in payload:
        sku = _string(payload["sku"], "sku", max_length=64).upper()
        if not SKU_RE.match(sku):
            raise ValidationError("sku may only contain letters, digits, '-', '_' and '.'", field="sku")
        patch["sku"] = sku
    if "name" in payload:
        patch["name"] = _string(payload["name"], "name", max_length=255)
    if "attributes" in payload:
        attributes = _require_object(payload["attributes"], "attributes")
        cleaned = {}
        for key, value in attributes.items():
            attr_field = _path("attributes", key)
            if not isinstance(key, str) or not key.strip():
                raise ValidationError("attribute names cannot be blank", field="attributes")
            normalized_key = key.strip().lower()
            if normalized_key in cleaned:
                raise ValidationError(f"duplicate attribute {normalized_key}", field=attr_field)
            cleaned[normalized_key] = _string(value, attr_field, max_length=64)
        patch["attributes"] = cleaned
    if "price" in payload:
        patch["price"] = _int_in_range(payload["price"], "price", minimum=0, maximum=MAX_PRICE)
    if "stock" in payload:
        patch["stock"] = _int_in_range(payload["stock"], "stock", minimum=0)
    if "trackStock" in payload:
        patch["track_stock"] = _bool(payload["trackStock"], "trackStock")
    if "allowBackorder" in payload:
        patch["allow_backorder"] = _bool(payload["allowBackorder"], "allowBackorder")
    if "lowStockThreshold" in payload:
        patch["low_stock_threshold"] = _int_in_range(payload["lowStockThreshold"], "lowStockThreshold", minimum=0)
    for key, attr in (("fixedDiscount", "fixed_discount"), ("tieredDiscount", "tiered_discount")):
        if key in payload:
            if payload[key] is not None:
                _require_object(payload[key], key)
            patch[attr] = payload[key]
    if "active" in payload:
        patch["active"] = _bool(payload["active"], "active")

    return patch


def validate_parent_payload(payload: Any) -> dict:
    payload = _require_object(payload, "")
    _reject_unknown(payload, {"name", "description", "discountsEnabled", "promotional"})
    patch = {
        "name": _string(payload.get("name"), "name", min_length=2, max_length=255),
        "description": _string(payload.get("description"), "description", required=False, max_length=1000),
    }
    if "discountsEnabled" in payload:
        patch["discounts_enabled"] = _bool(payload["discountsEnabled"], "discountsEnabled")
    if "promotional" in payload:
        patch["promotional"] = _bool(payload["promotional"], "promotional")
    return patch
