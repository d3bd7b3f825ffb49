"""
Pytest fixtures for stockgate backend tests.

Provides the application, an isolated database per test, a product factory
and actor headers for the API.
"""

from decimal import Decimal

import pytest

from stockgate import create_app
from stockgate.config import TestConfig
from stockgate.extensions import db
from stockgate.models import Product


ACCOUNT_ID = 1
REQUESTER_ID = 10
MANAGER_ID = 20


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory for products with known stock.

    Defaults: 5kg loose, 2 boxes of 10kg, box 40/50 and kg 4/5.50 cost/price.
    """
    def _make(**overrides):
        fields = {
            "account_id": ACCOUNT_ID,
            "name": "Tilapia",
            "category": "fresh",
            "loose_kg": Decimal("5"),
            "boxes": 2,
            "box_to_kg_ratio": Decimal("10"),
            "cost_per_box": Decimal("40"),
            "cost_per_kg": Decimal("4"),
            "price_per_box": Decimal("50"),
            "price_per_kg": Decimal("5.50"),
            "boxed_low_stock_threshold": 1,
        }
        fields.update(overrides)
        product = Product(**fields)
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Default product: 5kg loose, 2 boxes, 10kg per box."""
    return make_product()


def actor_headers(role: str = "staff", user_id: int = REQUESTER_ID, account_id: int = ACCOUNT_ID) -> dict:
    """Helper to create the gateway identity headers."""
    return {
        "X-User-Id": str(user_id),
        "X-Account-Id": str(account_id),
        "X-User-Role": role,
    }


@pytest.fixture(scope='function')
def staff_headers():
    return actor_headers("staff")


@pytest.fixture(scope='function')
def manager_headers():
    return actor_headers("manager", user_id=MANAGER_ID)
