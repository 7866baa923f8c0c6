"""
Concurrency tests against a file-backed SQLite database.

Each worker thread runs in its own app context and therefore its own
session and connection, so the conditional stock UPDATE and the order
version check are exercised across real connections.
"""

import threading

import pytest

from candyshop import create_app
from candyshop.errors import ConcurrentModification, InsufficientStock, InvalidTransition
from candyshop.extensions import db
from candyshop.models import Order, ProductParent, ProductVariant, StockMovement
from candyshop.services import lifecycle_service, order_service

from conftest import ADMIN, CUSTOMER, OTHER_CUSTOMER, OPERATOR, cleaned_order


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.sqlite3'}",
        "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False, "timeout": 10}},
        "STOCK_RETRY_ATTEMPTS": 5,
        "STOCK_RETRY_BACKOFF": 0.01,
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def seed_variant(app, *, stock: int) -> int:
    with app.app_context():
        parent = ProductParent(name="Gomitas surtidas")
        db.session.add(parent)
        db.session.flush()
        variant = ProductVariant(parent_id=parent.id, sku=f"RACE-{stock}", name="Bolsa 1kg", price=1000, stock=stock)
        db.session.add(variant)
        db.session.commit()
        return variant.id


def run_together(app, *calls):
    """Run each call in its own thread and app context, released at once."""
    barrier = threading.Barrier(len(calls))
    results = [None] * len(calls)

    def worker(index, call):
        with app.app_context():
            barrier.wait()
            try:
                results[index] = ("ok", call())
            except Exception as exc:
                results[index] = ("error", exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return results


def test_two_checkouts_for_the_last_units(file_app):
    # Warm-up order creates today's sequence row so the race is on stock only
    warmup_id = seed_variant(file_app, stock=1)
    with file_app.app_context():
        order_service.create_order(cleaned_order([(warmup_id, 1)]), actor=CUSTOMER)
        db.session.remove()

    variant_id = seed_variant(file_app, stock=5)

    def checkout(actor):
        return lambda: order_service.create_order(cleaned_order([(variant_id, 3)]), actor=actor).id

    results = run_together(file_app, checkout(CUSTOMER), checkout(OTHER_CUSTOMER))

    outcomes = sorted(kind for kind, _ in results)
    assert outcomes == ["error", "ok"], results
    error = next(value for kind, value in results if kind == "error")
    assert isinstance(error, InsufficientStock)

    with file_app.app_context():
        assert db.session.get(ProductVariant, variant_id).stock == 2
        assert db.session.query(Order).count() == 2
        sales = db.session.query(StockMovement).filter_by(variant_id=variant_id, type="sale").all()
        assert [m.quantity for m in sales] == [-3]


def test_concurrent_cancellations_restore_once(file_app):
    variant_id = seed_variant(file_app, stock=10)
    with file_app.app_context():
        order_id = order_service.create_order(cleaned_order([(variant_id, 3)]), actor=CUSTOMER).id
        db.session.remove()

    def cancel(actor):
        return lambda: lifecycle_service.cancel(order_id, "Customer changed their mind", actor=actor).status

    results = run_together(file_app, cancel(ADMIN), cancel(OPERATOR))

    successes = [value for kind, value in results if kind == "ok"]
    failures = [value for kind, value in results if kind == "error"]
    assert successes == ["cancelled"], results
    assert len(failures) == 1
    assert isinstance(failures[0], (ConcurrentModification, InvalidTransition))

    with file_app.app_context():
        assert db.session.get(ProductVariant, variant_id).stock == 10
        restores = db.session.query(StockMovement).filter_by(variant_id=variant_id, type="cancellation").count()
        assert restores == 1
        assert db.session.get(Order, order_id).status == "cancelled"
