"""
Pytest fixtures for the candyshop order engine tests.

Provides an in-memory database, a test client, catalog factories and the
actors used to drive the capability table.
"""

import pytest
from candyshop import create_app
from candyshop.extensions import db
from candyshop.models import ProductParent, ProductVariant
from candyshop.permissions import Actor
from candyshop.services import order_service


ADMIN = Actor(id="admin-1", role="admin")
OPERATOR = Actor(id="operator-1", role="operator")
CUSTOMER = Actor(id="customer-1", role="customer")
OTHER_CUSTOMER = Actor(id="customer-2", role="customer")
GUEST = Actor(id=None, role="guest")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_RETRY_BACKOFF': 0.0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def actor_headers(actor: Actor) -> dict:
    """Gateway headers for an actor (guests send none)."""
    if actor.id is None:
        return {}
    return {"X-Actor-Id": actor.id, "X-Actor-Role": actor.role}


@pytest.fixture(scope='function')
def make_variant(db_session):
    """
    Factory for a committed variant under its own parent product.

    Usage: make_variant(price=1000, stock=10, tiered_discount={...})
    """
    counter = {"n": 0}

    def _make(
        *,
        price=1000,
        stock=10,
        sku=None,
        discounts_enabled=True,
        promotional=False,
        **fields,
    ):
        counter["n"] += 1
        parent = ProductParent(
            name=f"Product {counter['n']}",
            discounts_enabled=discounts_enabled,
            promotional=promotional,
        )
        db_session.add(parent)
        db_session.flush()

        variant = ProductVariant(
            parent_id=parent.id,
            sku=sku or f"SKU-{counter['n']:03d}",
            name=fields.pop("name", f"Variant {counter['n']}"),
            attributes=fields.pop("attributes", {"size": "1kg"}),
            price=price,
            stock=stock,
            **fields,
        )
        db_session.add(variant)
        db_session.commit()
        return variant

    return _make


def checkout_payload(items, *, delivery_method="pickup", **overrides) -> dict:
    """A valid order-creation body for the given (variant_id, quantity) pairs."""
    payload = {
        "customer": {
            "name": "Ana Benítez",
            "email": "ana@example.com",
            "phone": "+595981123456",
        },
        "items": [{"variant": vid, "quantity": qty} for vid, qty in items],
        "deliveryMethod": delivery_method,
        "paymentMethod": "transfer",
    }
    if delivery_method == "delivery":
        payload["customer"]["address"] = {"street": "Mcal. López", "number": "1234", "city": "Asunción"}
    payload.update(overrides)
    return payload


def cleaned_order(items, *, delivery_method="pickup") -> dict:
    """Service-level equivalent of validate_create_order(checkout_payload(...))."""
    address = None
    if delivery_method == "delivery":
        address = {
            "street": "Mcal. López", "number": "1234", "city": "Asunción",
            "neighborhood": None, "reference": None,
        }
    return {
        "customer": {
            "name": "Ana Benítez",
            "email": "ana@example.com",
            "phone": "+595981123456",
            "address": address,
        },
        "items": [
            {"variant_id": vid, "quantity": qty, "line": index}
            for index, (vid, qty) in enumerate(items)
        ],
        "delivery_method": delivery_method,
        "payment_method": "transfer",
        "delivery_notes": None,
        "customer_notes": None,
    }


@pytest.fixture(scope='function')
def place_order(db_session):
    """Create an order through the service layer (customer actor by default)."""
    def _place(items, *, actor=CUSTOMER, delivery_method="pickup"):
        return order_service.create_order(cleaned_order(items, delivery_method=delivery_method), actor=actor)

    return _place
