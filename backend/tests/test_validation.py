"""Tests for request validation (field paths, ranges, enums, cross-field rules)."""

import pytest
from werkzeug.datastructures import MultiDict

from candyshop.errors import ValidationError
from candyshop import validation

from conftest import checkout_payload


def field_of(exc_info) -> str:
    return exc_info.value.details.get("field")


class TestCreateOrder:
    def test_valid_pickup_order(self):
        data = validation.validate_create_order(checkout_payload([(1, 2), (2, 3)]))

        assert data["items"] == [
            {"variant_id": 1, "quantity": 2, "line": 0},
            {"variant_id": 2, "quantity": 3, "line": 1},
        ]
        assert data["customer"]["address"] is None
        assert data["delivery_method"] == "pickup"

    def test_delivery_requires_address(self):
        payload = checkout_payload([(1, 1)], delivery_method="delivery")
        del payload["customer"]["address"]

        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(payload)
        assert field_of(exc) == "customer.address"

    def test_address_street_path(self):
        payload = checkout_payload([(1, 1)], delivery_method="delivery")
        payload["customer"]["address"]["street"] = "  "

        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(payload)
        assert field_of(exc) == "customer.address.street"

    def test_optional_address_fields(self):
        payload = checkout_payload([(1, 1)], delivery_method="delivery")
        payload["customer"]["address"]["neighborhood"] = "Villa Morra"

        data = validation.validate_create_order(payload)

        assert data["customer"]["address"]["neighborhood"] == "Villa Morra"
        assert data["customer"]["address"]["reference"] is None

    @pytest.mark.parametrize("name", ["A", "", None, 12])
    def test_short_or_missing_name(self, name):
        payload = checkout_payload([(1, 1)])
        payload["customer"]["name"] = name

        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(payload)
        assert field_of(exc) == "customer.name"

    @pytest.mark.parametrize("email", ["ana", "ana@", "ana@example", "a b@example.com"])
    def test_bad_email(self, email):
        payload = checkout_payload([(1, 1)])
        payload["customer"]["email"] = email

        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(payload)
        assert field_of(exc) == "customer.email"

    @pytest.mark.parametrize("phone", ["0981123456", "+0981", "phone", "+5959811234567890"])
    def test_bad_phone(self, phone):
        payload = checkout_payload([(1, 1)])
        payload["customer"]["phone"] = phone

        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(payload)
        assert field_of(exc) == "customer.phone"

    def test_phone_spaces_are_ignored(self):
        payload = checkout_payload([(1, 1)])
        payload["customer"]["phone"] = "+595 981 123 456"

        assert validation.validate_create_order(payload)["customer"]["phone"] == "+595981123456"

    @pytest.mark.parametrize("quantity", [0, 1000, -1, 2.5, "1e3", "3.0", True, None])
    def test_quantity_out_of_range_or_not_integer(self, quantity):
        payload = checkout_payload([(1, 1), (2, 1), (3, 1), (4, 1)])
        payload["items"][3]["quantity"] = quantity

        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(payload)
        assert field_of(exc) == "items.3.quantity"

    def test_quantity_boundaries_accepted(self):
        data = validation.validate_create_order(checkout_payload([(1, 1), (2, 999)]))

        assert [i["quantity"] for i in data["items"]] == [1, 999]

    def test_no_items(self):
        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(checkout_payload([]))
        assert field_of(exc) == "items"

    def test_too_many_items(self):
        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(checkout_payload([(i, 1) for i in range(1, 52)]))
        assert field_of(exc) == "items"

    def test_fifty_items_accepted(self):
        data = validation.validate_create_order(checkout_payload([(i, 1) for i in range(1, 51)]))

        assert len(data["items"]) == 50

    def test_malformed_variant_id(self):
        payload = checkout_payload([(1, 1)])
        payload["items"][0]["variant"] = "abc"

        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(payload)
        assert field_of(exc) == "items.0.variant"

    def test_duplicate_variants_are_merged(self):
        data = validation.validate_create_order(checkout_payload([(7, 2), (7, 3)]))

        assert data["items"] == [{"variant_id": 7, "quantity": 5, "line": 0}]

    def test_merged_quantity_is_capped(self):
        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(checkout_payload([(7, 500), (7, 500)]))
        assert field_of(exc) == "items.1.quantity"

    @pytest.mark.parametrize("key,value", [("deliveryMethod", "drone"), ("paymentMethod", "crypto")])
    def test_enums(self, key, value):
        payload = checkout_payload([(1, 1)])
        payload[key] = value

        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(payload)
        assert field_of(exc) == key

    def test_notes_capped_at_500(self):
        ok = validation.validate_create_order(checkout_payload([(1, 1)], customerNotes="x" * 500))
        assert len(ok["customer_notes"]) == 500

        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(checkout_payload([(1, 1)], deliveryNotes="x" * 501))
        assert field_of(exc) == "deliveryNotes"

    def test_client_totals_are_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validation.validate_create_order(checkout_payload([(1, 1)], total=1))
        assert field_of(exc) == "total"

    def test_body_must_be_object(self):
        with pytest.raises(ValidationError):
            validation.validate_create_order(None)
        with pytest.raises(ValidationError):
            validation.validate_create_order([1, 2])


class TestMutations:
    def test_status_update_rejects_cancelled(self):
        with pytest.raises(ValidationError) as exc:
            validation.validate_status_update({"status": "cancelled"})
        assert field_of(exc) == "status"

    def test_status_update_unknown_status(self):
        with pytest.raises(ValidationError):
            validation.validate_status_update({"status": "lost"})

    def test_status_update_shipping_only_with_confirm(self):
        data = validation.validate_status_update({"status": "confirmed", "shippingCost": 2000})
        assert data["shipping_cost"] == 2000

        with pytest.raises(ValidationError) as exc:
            validation.validate_status_update({"status": "preparing", "shippingCost": 2000})
        assert field_of(exc) == "shippingCost"

    def test_expected_version(self):
        assert validation.validate_status_update({"status": "preparing", "expectedVersion": 3})["expected_version"] == 3
        with pytest.raises(ValidationError):
            validation.validate_status_update({"status": "preparing", "expectedVersion": 0})

    def test_cancellation_reason_nine_characters_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validation.validate_cancellation({"cancellationReason": "123456789"})
        assert field_of(exc) == "cancellationReason"

    def test_cancellation_reason_ten_characters_accepted(self):
        assert validation.validate_cancellation({"cancellationReason": "1234567890"})["reason"] == "1234567890"

    def test_cancellation_reason_max_500(self):
        with pytest.raises(ValidationError):
            validation.validate_cancellation({"cancellationReason": "x" * 501})

    def test_negative_shipping_cost(self):
        with pytest.raises(ValidationError) as exc:
            validation.validate_shipping_update({"shippingCost": -1})
        assert field_of(exc) == "shippingCost"

    def test_payment_proof_must_be_url(self):
        assert validation.validate_payment_proof(
            {"paymentProof": "https://cdn.example.com/r/1.jpg"}
        )["payment_proof"].startswith("https://")

        with pytest.raises(ValidationError):
            validation.validate_payment_proof({"paymentProof": "receipt.jpg"})
        with pytest.raises(ValidationError):
            validation.validate_payment_proof({"paymentProof": "https://x.com/" + "a" * 500})

    def test_cart_keeps_displayed_price(self):
        items = validation.validate_cart({"items": [{"variant": 3, "quantity": 5, "unitPrice": 900}]})

        assert items == [{"variant_id": 3, "quantity": 5, "unit_price": 900}]

    def test_stock_adjustment_rejects_zero(self):
        with pytest.raises(ValidationError) as exc:
            validation.validate_stock_adjustment({"variant": 1, "quantity": 0, "reason": "count"})
        assert field_of(exc) == "quantity"


class TestOrderQuery:
    def test_defaults(self):
        filters = validation.validate_order_query(MultiDict())

        assert filters["page"] == 1
        assert filters["limit"] == 20

    def test_limit_capped(self):
        with pytest.raises(ValidationError) as exc:
            validation.validate_order_query(MultiDict({"limit": "101"}))
        assert field_of(exc) == "limit"

    @pytest.mark.parametrize("page", ["0", "-1", "abc", "1.5"])
    def test_page_must_be_positive_integer(self, page):
        with pytest.raises(ValidationError):
            validation.validate_order_query(MultiDict({"page": page}))

    def test_dates(self):
        filters = validation.validate_order_query(MultiDict({"startDate": "2026-10-01", "endDate": "2026-10-19"}))
        assert filters["start_date"].day == 1

        with pytest.raises(ValidationError) as exc:
            validation.validate_order_query(MultiDict({"startDate": "2026-10-20", "endDate": "2026-10-19"}))
        assert field_of(exc) == "startDate"

        with pytest.raises(ValidationError):
            validation.validate_order_query(MultiDict({"startDate": "19/10/2026"}))

    def test_search_length(self):
        with pytest.raises(ValidationError) as exc:
            validation.validate_order_query(MultiDict({"search": "x" * 101}))
        assert field_of(exc) == "search"

    def test_unknown_filter(self):
        with pytest.raises(ValidationError):
            validation.validate_order_query(MultiDict({"sort": "total"}))
