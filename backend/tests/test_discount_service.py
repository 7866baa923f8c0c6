"""
Tests for the discount engine.

The engine is pure: variants are plain namespaces, no database needed.
"""

from datetime import datetime
from types import SimpleNamespace

import pytest

from candyshop.errors import InvalidDiscountConfiguration, InvalidQuantity
from candyshop.services.discount_service import (
    price_line,
    resolve_tier,
    tier_previews,
    validate_tiered_discount,
)


NOW = datetime(2026, 10, 19, 12, 0, 0)


def variant(price=1000, fixed=None, tiered=None):
    return SimpleNamespace(price=price, fixed_discount=fixed, tiered_discount=tiered)


def tiers(*rows, **config):
    return {"active": True, "tiers": list(rows), **config}


class TestTieredDiscount:
    def test_unit_price_tier_applies_at_min_quantity(self):
        v = variant(tiered=tiers({"minQuantity": 5, "type": "unit_price", "value": 900}))

        quote = price_line(v, 5, now=NOW)

        assert quote.unit_price == 900
        assert quote.discount == 100
        assert quote.line_total(5) == 4500
        assert quote.applied_tier["minQuantity"] == 5
        assert quote.applied_fixed_discount is None

    def test_below_first_tier_pays_base_price(self):
        v = variant(tiered=tiers({"minQuantity": 5, "type": "unit_price", "value": 900}))

        quote = price_line(v, 4, now=NOW)

        assert quote.unit_price == 1000
        assert quote.discount == 0
        assert quote.applied_tier is None

    def test_highest_matching_tier_wins(self):
        v = variant(tiered=tiers(
            {"minQuantity": 5, "maxQuantity": 9, "type": "unit_price", "value": 900},
            {"minQuantity": 10, "type": "percentage", "value": 15},
        ))

        assert price_line(v, 9, now=NOW).unit_price == 900
        assert price_line(v, 10, now=NOW).unit_price == 850
        assert price_line(v, 500, now=NOW).unit_price == 850

    def test_amount_tier_subtracts_per_unit(self):
        v = variant(tiered=tiers({"minQuantity": 3, "type": "amount", "value": 150}))

        assert price_line(v, 3, now=NOW).discount == 150

    def test_percentage_rounds_half_up(self):
        v = variant(price=333, tiered=tiers({"minQuantity": 2, "type": "percentage", "value": 50}))

        # 333 * 0.5 = 166.5 -> 167 off
        assert price_line(v, 2, now=NOW).unit_price == 166

    def test_unit_price_never_increases_with_quantity(self):
        v = variant(tiered=tiers(
            {"minQuantity": 3, "maxQuantity": 5, "type": "amount", "value": 50},
            {"minQuantity": 6, "maxQuantity": 11, "type": "unit_price", "value": 900},
            {"minQuantity": 12, "type": "percentage", "value": 20},
        ))

        prices = [price_line(v, q, now=NOW).unit_price for q in range(1, 40)]

        assert prices == sorted(prices, reverse=True)

    def test_inactive_config_prices_at_base(self):
        v = variant(tiered={"active": False, "tiers": [{"minQuantity": 2, "type": "unit_price", "value": 1}]})

        assert price_line(v, 10, now=NOW).unit_price == 1000

    def test_outside_window_is_ignored(self):
        v = variant(tiered=tiers(
            {"minQuantity": 2, "type": "unit_price", "value": 800},
            startDate="2026-11-01T00:00:00Z",
        ))

        assert price_line(v, 2, now=NOW).unit_price == 1000


class TestTierValidation:
    @pytest.mark.parametrize("rows", [
        # not strictly increasing
        [{"minQuantity": 5, "type": "unit_price", "value": 900},
         {"minQuantity": 5, "type": "unit_price", "value": 800}],
        # overlapping ranges
        [{"minQuantity": 5, "maxQuantity": 12, "type": "unit_price", "value": 900},
         {"minQuantity": 10, "type": "unit_price", "value": 800}],
        # gap between ranges
        [{"minQuantity": 5, "maxQuantity": 7, "type": "unit_price", "value": 900},
         {"minQuantity": 10, "type": "unit_price", "value": 800}],
        # capped last tier
        [{"minQuantity": 5, "maxQuantity": 9, "type": "unit_price", "value": 900}],
        # unit price rises
        [{"minQuantity": 5, "type": "unit_price", "value": 800},
         {"minQuantity": 10, "type": "unit_price", "value": 900}],
        # tier price above the base price
        [{"minQuantity": 2, "type": "unit_price", "value": 1200}],
        # percentage above 100
        [{"minQuantity": 2, "type": "percentage", "value": 120}],
        # negative value
        [{"minQuantity": 2, "type": "amount", "value": -5}],
        # unknown type
        [{"minQuantity": 2, "type": "bogo", "value": 1}],
        # minQuantity below 1
        [{"minQuantity": 0, "type": "unit_price", "value": 900}],
    ])
    def test_malformed_tiers_raise(self, rows):
        with pytest.raises(InvalidDiscountConfiguration):
            validate_tiered_discount(tiers(*rows), 1000)

    def test_pricing_refuses_malformed_config(self):
        v = variant(tiered=tiers(
            {"minQuantity": 5, "maxQuantity": 12, "type": "unit_price", "value": 900},
            {"minQuantity": 10, "type": "unit_price", "value": 800},
        ))

        with pytest.raises(InvalidDiscountConfiguration):
            price_line(v, 11, now=NOW)

    def test_window_start_after_end_is_invalid(self):
        config = tiers(
            {"minQuantity": 2, "type": "unit_price", "value": 900},
            startDate="2026-12-01", endDate="2026-11-01",
        )
        with pytest.raises(InvalidDiscountConfiguration):
            validate_tiered_discount(config, 1000)

    def test_resolve_tier_respects_max_quantity(self):
        rows = [
            {"minQuantity": 2, "maxQuantity": 4, "type": "unit_price", "value": 900},
            {"minQuantity": 5, "type": "unit_price", "value": 800},
        ]
        assert resolve_tier(rows, 1) is None
        assert resolve_tier(rows, 4)["minQuantity"] == 2
        assert resolve_tier(rows, 5)["minQuantity"] == 5


class TestFixedDiscount:
    def test_amount_discount(self):
        v = variant(fixed={"enabled": True, "type": "amount", "value": 200})

        quote = price_line(v, 1, now=NOW)

        assert quote.unit_price == 800
        assert quote.applied_fixed_discount == {"type": "amount", "value": 200}

    def test_disabled_fixed_discount_is_ignored(self):
        v = variant(fixed={"enabled": False, "type": "amount", "value": 200})

        assert price_line(v, 1, now=NOW).unit_price == 1000

    def test_expired_window_is_ignored(self):
        v = variant(fixed={"enabled": True, "type": "percentage", "value": 10, "endDate": "2026-10-01T00:00:00Z"})

        assert price_line(v, 1, now=NOW).unit_price == 1000

    def test_amount_larger_than_price_clamps_to_zero(self):
        v = variant(price=100, fixed={"enabled": True, "type": "amount", "value": 250})

        quote = price_line(v, 1, now=NOW)

        assert quote.unit_price == 0
        assert quote.discount == 100

    def test_percentage_over_100_is_invalid(self):
        v = variant(fixed={"enabled": True, "type": "percentage", "value": 101})

        with pytest.raises(InvalidDiscountConfiguration):
            price_line(v, 1, now=NOW)


class TestSelection:
    def test_lowest_price_wins_over_tier(self):
        v = variant(
            fixed={"enabled": True, "type": "amount", "value": 300},
            tiered=tiers({"minQuantity": 5, "type": "unit_price", "value": 900}),
        )

        quote = price_line(v, 5, now=NOW)

        assert quote.unit_price == 700
        assert quote.applied_fixed_discount is not None
        assert quote.applied_tier is None

    def test_tie_goes_to_tier(self):
        v = variant(
            fixed={"enabled": True, "type": "amount", "value": 100},
            tiered=tiers({"minQuantity": 5, "type": "unit_price", "value": 900}),
        )

        quote = price_line(v, 5, now=NOW)

        assert quote.unit_price == 900
        assert quote.applied_tier is not None
        assert quote.applied_fixed_discount is None

    def test_mechanisms_never_stack(self):
        v = variant(
            fixed={"enabled": True, "type": "amount", "value": 100},
            tiered=tiers({"minQuantity": 5, "type": "amount", "value": 100}),
        )

        assert price_line(v, 5, now=NOW).discount == 100

    def test_product_flag_disables_discounts(self):
        v = variant(
            fixed={"enabled": True, "type": "amount", "value": 300},
            tiered=tiers({"minQuantity": 5, "type": "unit_price", "value": 900}),
        )

        quote = price_line(v, 5, {"discounts_enabled": False, "promotional": True}, now=NOW)

        assert quote.unit_price == 1000
        assert quote.discount == 0
        assert quote.promotional is True

    def test_same_inputs_same_output(self):
        v = variant(
            fixed={"enabled": True, "type": "percentage", "value": 7},
            tiered=tiers({"minQuantity": 5, "type": "percentage", "value": 7}),
        )

        assert price_line(v, 6, now=NOW) == price_line(v, 6, now=NOW)

    @pytest.mark.parametrize("quantity", [0, -1, 2.5, True, "3"])
    def test_non_positive_or_non_integer_quantity(self, quantity):
        with pytest.raises(InvalidQuantity):
            price_line(variant(), quantity, now=NOW)


def test_tier_previews_lists_first_tiers():
    v = variant(tiered=tiers(
        {"minQuantity": 5, "maxQuantity": 9, "type": "unit_price", "value": 900},
        {"minQuantity": 10, "maxQuantity": 19, "type": "unit_price", "value": 850},
        {"minQuantity": 20, "type": "unit_price", "value": 800},
        badge="Mayorista",
    ))

    previews = tier_previews(v, now=NOW)

    assert [p["minQuantity"] for p in previews] == [5, 10]
    assert previews[0]["unit_price"] == 900
    assert previews[0]["badge"] == "Mayorista"


def test_tier_previews_empty_without_active_tiers():
    assert tier_previews(variant(), now=NOW) == []
