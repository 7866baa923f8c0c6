# Overview: Pure pricing engine resolving a variant's effective unit price for a quantity.

"""
Discount engine.

================================================================================
PURPOSE: Resolve the unit price a customer pays for N units of one variant
================================================================================

Two merchandising mechanisms live on a variant:

    fixed_discount   flat amount or percentage off the base price,
                     optionally bounded by startDate/endDate
    tiered_discount  quantity breaks; each tier sets a unit price, takes a
                     percentage off, or subtracts an amount from the base price

SELECTION RULE:
    Candidates are {tiered result, fixed result, base price}. The lowest unit
    price wins. Ties go to the tiered discount first (it is the mechanism
    shown to shoppers as a badge), then the fixed discount, then base.
    Mechanisms never stack.

    discount = base_price - chosen_unit_price, clamped to >= 0, and the
    chosen unit price is never below 0.

DETERMINISM:
    No randomness, no hidden state. The only time dependency is the
    validity window check, and callers may pin it by passing `now`.

All money is integer currency units. Percentages are rounded half-up.
================================================================================
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

from ..errors import InvalidDiscountConfiguration, InvalidQuantity
from candyshop.time_utils import utcnow, parse_iso_datetime


FIXED_DISCOUNT_TYPES = {"percentage", "amount"}
TIER_TYPES = {"percentage", "amount", "unit_price"}

# Tie-break order: lower wins
_PRIORITY_TIERED = 0
_PRIORITY_FIXED = 1
_PRIORITY_BASE = 2


@dataclass(frozen=True)
class PriceQuote:
    """
    Result of pricing one line.

    `unit_price` is what the customer pays per unit after the chosen
    mechanism; `base_price` is the catalog price before any discount.
    """
    base_price: int
    unit_price: int
    discount: int
    applied_tier: dict | None
    applied_fixed_discount: dict | None
    promotional: bool

    def line_total(self, quantity: int) -> int:
        return (self.base_price - self.discount) * quantity

    def to_dict(self) -> dict:
        return {
            "base_price": self.base_price,
            "unit_price": self.unit_price,
            "discount": self.discount,
            "applied_tier": self.applied_tier,
            "applied_fixed_discount": self.applied_fixed_discount,
            "promotional": self.promotional,
        }


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_decimal(value, label: str) -> Decimal:
    if isinstance(value, bool) or value is None:
        raise InvalidDiscountConfiguration(f"{label} must be a number")
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidDiscountConfiguration(f"{label} must be a number")
    if not number.is_finite():
        raise InvalidDiscountConfiguration(f"{label} must be a finite number")
    return number


def _percent_off(base_price: int, percent: Decimal) -> int:
    return base_price - _round_half_up(Decimal(base_price) * percent / Decimal(100))


def _parse_window_bound(value, label: str) -> datetime | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(str(value))
    except ValueError:
        raise InvalidDiscountConfiguration(f"{label} must be an ISO-8601 datetime")


def _validate_window(config: dict, label: str) -> tuple[datetime | None, datetime | None]:
    start = _parse_window_bound(config.get("startDate"), f"{label}.startDate")
    end = _parse_window_bound(config.get("endDate"), f"{label}.endDate")
    if start and end and start > end:
        raise InvalidDiscountConfiguration(f"{label}.startDate must not be after endDate")
    return start, end


def is_window_active(config: dict, now: datetime | None = None) -> bool:
    """True when `now` falls inside the config's optional [startDate, endDate]."""
    start, end = _validate_window(config, "discount")
    now = now or utcnow()
    if start and start > now:
        return False
    if end and end < now:
        return False
    return True


# =============================================================================
# CONFIGURATION VALIDATION
# =============================================================================

def validate_fixed_discount(config: dict | None) -> None:
    """Raise InvalidDiscountConfiguration for a malformed fixed discount."""
    if not config:
        return
    if not isinstance(config, dict):
        raise InvalidDiscountConfiguration("fixed_discount must be an object")

    if not config.get("enabled"):
        return

    dtype = config.get("type")
    if dtype not in FIXED_DISCOUNT_TYPES:
        raise InvalidDiscountConfiguration(
            f"fixed_discount.type must be one of: {', '.join(sorted(FIXED_DISCOUNT_TYPES))}"
        )
    value = _as_decimal(config.get("value"), "fixed_discount.value")
    if value < 0:
        raise InvalidDiscountConfiguration("fixed_discount.value must be >= 0")
    if dtype == "percentage" and value > 100:
        raise InvalidDiscountConfiguration("fixed_discount.value cannot exceed 100 for percentage")

    _validate_window(config, "fixed_discount")


def _tier_unit_price(base_price: int, tier: dict) -> int:
    value = _as_decimal(tier.get("value"), "tier.value")
    ttype = tier.get("type")
    if ttype == "unit_price":
        price = _round_half_up(value)
    elif ttype == "percentage":
        price = _percent_off(base_price, value)
    else:
        price = base_price - _round_half_up(value)
    return max(0, price)


def validate_tiered_discount(config: dict | None, base_price: int) -> list[dict]:
    """
    Validate a tiered discount and return its tiers.

    Rules:
    - tiers are stored in strictly increasing minQuantity order (>= 1)
    - maxQuantity, when present, is exactly one below the next tier's
      minQuantity (no overlaps, no gaps); the last tier is open-ended
    - value >= 0; percentage tiers are capped at 100
    - the effective unit price never increases as quantity rises

    An inactive config is not checked tier by tier; it never prices.
    """
    if not config:
        return []
    if not isinstance(config, dict):
        raise InvalidDiscountConfiguration("tiered_discount must be an object")
    if not config.get("active"):
        return []

    _validate_window(config, "tiered_discount")

    tiers = config.get("tiers") or []
    if not isinstance(tiers, list):
        raise InvalidDiscountConfiguration("tiered_discount.tiers must be a list")

    previous_min = 0
    previous_max = None
    previous_price = None
    for index, tier in enumerate(tiers):
        label = f"tiered_discount.tiers.{index}"
        if not isinstance(tier, dict):
            raise InvalidDiscountConfiguration(f"{label} must be an object")

        min_qty = tier.get("minQuantity")
        if not isinstance(min_qty, int) or isinstance(min_qty, bool) or min_qty < 1:
            raise InvalidDiscountConfiguration(f"{label}.minQuantity must be an integer >= 1")
        if min_qty <= previous_min:
            raise InvalidDiscountConfiguration(
                f"{label}.minQuantity must be greater than the previous tier's minQuantity",
                details={"tier": index, "min_quantity": min_qty, "previous_min_quantity": previous_min},
            )
        if previous_max is not None and previous_max != min_qty - 1:
            problem = "overlaps" if previous_max >= min_qty else "leaves a gap after"
            raise InvalidDiscountConfiguration(
                f"{label} {problem} the previous tier's quantity range",
                details={"tier": index, "min_quantity": min_qty, "previous_max_quantity": previous_max},
            )

        max_qty = tier.get("maxQuantity")
        if max_qty is not None:
            if not isinstance(max_qty, int) or isinstance(max_qty, bool) or max_qty < min_qty:
                raise InvalidDiscountConfiguration(f"{label}.maxQuantity must be an integer >= minQuantity")
            if index == len(tiers) - 1:
                # A capped last tier would make larger orders pay more per unit
                raise InvalidDiscountConfiguration(f"{label} is the last tier and must not set maxQuantity")

        ttype = tier.get("type")
        if ttype not in TIER_TYPES:
            raise InvalidDiscountConfiguration(
                f"{label}.type must be one of: {', '.join(sorted(TIER_TYPES))}"
            )
        value = _as_decimal(tier.get("value"), f"{label}.value")
        if value < 0:
            raise InvalidDiscountConfiguration(f"{label}.value must be >= 0")
        if ttype == "percentage" and value > 100:
            raise InvalidDiscountConfiguration(f"{label}.value cannot exceed 100 for percentage")

        price = _tier_unit_price(base_price, tier)
        if ttype == "unit_price" and price > base_price:
            raise InvalidDiscountConfiguration(
                f"{label} sets a unit price above the base price",
                details={"tier": index, "unit_price": price, "base_price": base_price},
            )
        if previous_price is not None and price > previous_price:
            raise InvalidDiscountConfiguration(
                f"{label} raises the unit price above the previous tier",
                details={"tier": index, "unit_price": price, "previous_unit_price": previous_price},
            )

        previous_min = min_qty
        previous_max = max_qty
        previous_price = price

    return tiers


def validate_discount_configuration(variant) -> None:
    """Validate both discount mechanisms of a variant (used on catalog writes)."""
    validate_fixed_discount(variant.fixed_discount)
    validate_tiered_discount(variant.tiered_discount, variant.price)


# =============================================================================
# PRICING
# =============================================================================

def resolve_tier(tiers: list[dict], quantity: int) -> dict | None:
    """Highest tier with minQuantity <= quantity, honoring its maxQuantity."""
    chosen = None
    for tier in tiers:
        if tier["minQuantity"] <= quantity:
            chosen = tier
        else:
            break
    if chosen is None:
        return None
    max_qty = chosen.get("maxQuantity")
    if max_qty is not None and quantity > max_qty:
        return None
    return chosen


def _fixed_unit_price(base_price: int, config: dict) -> int:
    value = _as_decimal(config.get("value"), "fixed_discount.value")
    if config.get("type") == "percentage":
        price = _percent_off(base_price, value)
    else:
        price = base_price - _round_half_up(value)
    return max(0, price)


def price_line(variant, quantity: int, product_flags: dict | None = None, *, now: datetime | None = None) -> PriceQuote:
    """
    Resolve the effective unit price of `quantity` units of `variant`.

    Args:
        variant: object exposing price, fixed_discount, tiered_discount
        quantity: units requested (integer >= 1)
        product_flags: {"discounts_enabled": bool, "promotional": bool}
        now: pin the validity window check (defaults to utcnow())

    Raises:
        InvalidQuantity: quantity is not a positive integer
        InvalidDiscountConfiguration: malformed tier or fixed discount data
    """
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise InvalidQuantity("Quantity must be an integer greater than 0", field="quantity")

    flags = product_flags or {}
    promotional = bool(flags.get("promotional", False))
    base_price = max(0, int(variant.price or 0))
    now = now or utcnow()

    # Validate up front so a broken config never prices silently
    validate_fixed_discount(variant.fixed_discount)
    tiers = validate_tiered_discount(variant.tiered_discount, base_price)

    candidates = [(base_price, _PRIORITY_BASE, None)]

    if flags.get("discounts_enabled", True):
        tiered = variant.tiered_discount or {}
        if tiers and is_window_active(tiered, now):
            tier = resolve_tier(tiers, quantity)
            if tier is not None:
                candidates.append((_tier_unit_price(base_price, tier), _PRIORITY_TIERED, tier))

        fixed = variant.fixed_discount or {}
        if fixed.get("enabled") and is_window_active(fixed, now):
            candidates.append((_fixed_unit_price(base_price, fixed), _PRIORITY_FIXED, fixed))

    unit_price, priority, source = min(candidates, key=lambda c: (c[0], c[1]))
    unit_price = max(0, min(unit_price, base_price))
    discount = max(0, base_price - unit_price)

    applied_tier = None
    applied_fixed = None
    if priority == _PRIORITY_TIERED:
        applied_tier = {
            "minQuantity": source["minQuantity"],
            "maxQuantity": source.get("maxQuantity"),
            "type": source["type"],
            "value": source["value"],
        }
    elif priority == _PRIORITY_FIXED:
        applied_fixed = {"type": source["type"], "value": source["value"]}

    return PriceQuote(
        base_price=base_price,
        unit_price=unit_price,
        discount=discount,
        applied_tier=applied_tier,
        applied_fixed_discount=applied_fixed,
        promotional=promotional,
    )


def tier_previews(variant, limit: int = 2, *, now: datetime | None = None) -> list[dict]:
    """
    First `limit` tiers of an active tiered discount, priced for storefront badges.

    Returns an empty list when there is no active, in-window tiered discount.
    """
    config = variant.tiered_discount or {}
    tiers = validate_tiered_discount(config, variant.price)
    if not tiers or not is_window_active(config, now):
        return []

    previews = []
    for tier in tiers[:limit]:
        previews.append({
            "minQuantity": tier["minQuantity"],
            "unit_price": _tier_unit_price(variant.price, tier),
            "type": tier["type"],
            "value": tier["value"],
            "badge": config.get("badge"),
        })
    return previews
