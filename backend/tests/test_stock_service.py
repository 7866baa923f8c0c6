"""Tests for the stock ledger: atomic reservation, restore, classification, movements."""

import pytest

from candyshop.errors import InsufficientStock, NotFound, ValidationError
from candyshop.extensions import db
from candyshop.models import ProductVariant, StockMovement
from candyshop.services import stock_service


def stock_of(variant_id: int) -> int:
    return db.session.query(ProductVariant.stock).filter_by(id=variant_id).scalar()


class TestAvailability:
    def test_available(self, make_variant):
        v = make_variant(stock=5)

        check = stock_service.check_availability(v.id, 5)

        assert check.status == stock_service.AVAILABLE
        assert check.ok

    def test_insufficient_reports_current_stock(self, make_variant):
        v = make_variant(stock=2)

        check = stock_service.check_availability(v.id, 3)

        assert check.status == stock_service.INSUFFICIENT
        assert check.current_stock == 2
        assert not check.ok

    def test_backorder_allowed(self, make_variant):
        v = make_variant(stock=0, allow_backorder=True)

        assert stock_service.check_availability(v.id, 4).status == stock_service.BACKORDER_ALLOWED

    def test_untracked_is_always_available(self, make_variant):
        v = make_variant(stock=0, track_stock=False)

        assert stock_service.check_availability(v.id, 999).status == stock_service.AVAILABLE

    def test_unknown_variant(self, db_session):
        with pytest.raises(NotFound):
            stock_service.check_availability(12345, 1)


class TestReserveAll:
    def test_decrements_every_line(self, make_variant):
        a = make_variant(stock=10)
        b = make_variant(stock=4)

        stock_service.reserve_all([
            {"variant_id": a.id, "quantity": 3},
            {"variant_id": b.id, "quantity": 4},
        ], commit=True)

        assert stock_of(a.id) == 7
        assert stock_of(b.id) == 0

    def test_all_or_nothing(self, make_variant):
        a = make_variant(stock=10)
        b = make_variant(stock=1)

        with pytest.raises(InsufficientStock) as exc:
            stock_service.reserve_all([
                {"variant_id": a.id, "quantity": 3},
                {"variant_id": b.id, "quantity": 2},
            ], commit=True)

        assert exc.value.details["variant_id"] == b.id
        assert exc.value.details["requested"] == 2
        assert exc.value.details["current_stock"] == 1
        assert stock_of(a.id) == 10
        assert stock_of(b.id) == 1
        assert db.session.query(StockMovement).count() == 0

    def test_duplicate_lines_are_summed(self, make_variant):
        v = make_variant(stock=5)

        with pytest.raises(InsufficientStock):
            stock_service.reserve_all([
                {"variant_id": v.id, "quantity": 3},
                {"variant_id": v.id, "quantity": 3},
            ], commit=True)
        assert stock_of(v.id) == 5

    def test_insufficient_line_is_request_position(self, make_variant):
        short = make_variant(stock=1)
        plenty = make_variant(stock=50)

        # Reservation runs in variant id order; the reported line does not
        with pytest.raises(InsufficientStock) as exc:
            stock_service.reserve_all([
                {"variant_id": plenty.id, "quantity": 1},
                {"variant_id": short.id, "quantity": 5},
            ], commit=True)

        assert exc.value.details["line"] == 1

    def test_merge_keeps_first_position(self):
        merged = stock_service.merge_lines([
            {"variant_id": 9, "quantity": 1},
            {"variant_id": 4, "quantity": 2},
            {"variant_id": 9, "quantity": 3},
        ])

        assert merged == [
            {"variant_id": 4, "quantity": 2, "line": 1},
            {"variant_id": 9, "quantity": 4, "line": 0},
        ]

    def test_merge_prefers_supplied_line(self):
        merged = stock_service.merge_lines([{"variant_id": 4, "quantity": 2, "line": 3}])

        assert merged[0]["line"] == 3

    def test_backorder_goes_negative(self, make_variant):
        v = make_variant(stock=1, allow_backorder=True)

        stock_service.reserve_all([{"variant_id": v.id, "quantity": 3}], commit=True)

        assert stock_of(v.id) == -2

    def test_untracked_not_decremented(self, make_variant):
        v = make_variant(stock=0, track_stock=False)

        movements = stock_service.reserve_all([{"variant_id": v.id, "quantity": 50}], commit=True)

        assert movements == []
        assert stock_of(v.id) == 0

    def test_writes_signed_movements(self, make_variant):
        v = make_variant(stock=8)

        stock_service.reserve_all([{"variant_id": v.id, "quantity": 3}], reason="Test", commit=True)

        movement = db.session.query(StockMovement).one()
        assert movement.type == "sale"
        assert movement.quantity == -3
        assert (movement.previous_stock, movement.new_stock) == (8, 5)


class TestRestore:
    def test_restore_all_credits_back(self, make_variant):
        v = make_variant(stock=8)
        stock_service.reserve_all([{"variant_id": v.id, "quantity": 3}], commit=True)

        stock_service.restore_all([{"variant_id": v.id, "quantity": 3}])
        db.session.commit()

        assert stock_of(v.id) == 8
        types = [m.type for m in stock_service.movements_for_variant(v.id)]
        assert sorted(types) == ["cancellation", "sale"]


class TestAdjust:
    def test_restock(self, make_variant):
        v = make_variant(stock=2)

        movement = stock_service.adjust(v.id, 10, reason="Supplier delivery", movement_type="restock", actor_id="admin-1")

        assert movement.new_stock == 12
        assert stock_of(v.id) == 12

    def test_negative_adjustment_cannot_go_below_zero(self, make_variant):
        v = make_variant(stock=2)

        with pytest.raises(InsufficientStock):
            stock_service.adjust(v.id, -3, reason="Broken bags")
        assert stock_of(v.id) == 2

    def test_restock_must_be_positive(self, make_variant):
        v = make_variant(stock=2)

        with pytest.raises(ValidationError):
            stock_service.adjust(v.id, -1, reason="oops", movement_type="restock")

    def test_untracked_variant_rejected(self, make_variant):
        v = make_variant(track_stock=False)

        with pytest.raises(ValidationError):
            stock_service.adjust(v.id, 5, reason="count")


class TestClassification:
    def test_low_and_out_of_stock(self, make_variant):
        low = make_variant(stock=3, low_stock_threshold=5)
        at_threshold = make_variant(stock=5, low_stock_threshold=5)
        fine = make_variant(stock=6, low_stock_threshold=5)
        out = make_variant(stock=0)
        backorder = make_variant(stock=0, allow_backorder=True)

        assert low.is_low_stock and at_threshold.is_low_stock
        assert not fine.is_low_stock
        assert not out.is_low_stock
        assert out.is_out_of_stock
        assert not backorder.is_out_of_stock

        low_ids = {v.id for v in stock_service.low_stock_variants()}
        out_ids = {v.id for v in stock_service.out_of_stock_variants()}
        assert low_ids == {low.id, at_threshold.id}
        assert out_ids == {out.id}

    def test_untracked_variant_is_never_low_or_out(self, make_variant):
        v = make_variant(stock=0, track_stock=False, low_stock_threshold=5)

        assert not v.is_out_of_stock
        assert not v.is_low_stock
        assert v.to_dict()["is_out_of_stock"] is False
        assert stock_service.check_availability(v.id, 1).status == stock_service.AVAILABLE
        assert v.id not in {row.id for row in stock_service.out_of_stock_variants()}
