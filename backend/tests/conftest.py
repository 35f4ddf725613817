"""
Pytest fixtures for billing backend tests.

Provides test database setup, product/customer factories, and test client.
"""

from decimal import Decimal

import pytest
from billing import create_app
from billing.extensions import db
from billing.services.products_service import create_product
from billing.services.customers_service import create_customer


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DB_RETRY_ATTEMPTS': 1,
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
        db.session.rollback()
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
    """Factory: product registered through the stock ledger (OPENING movement)."""
    counter = {"n": 0}

    def _make(stock: int = 100, rate: str = "120.00", gst: int = 12, **fields):
        counter["n"] += 1
        patch = {
            "name": f"Product {counter['n']}",
            "hsn_code": "3004",
            "rate": Decimal(rate),
            "mrp": Decimal(rate) + Decimal("30"),
            "gst_percentage": gst,
        }
        patch.update(fields)
        return create_product(patch=patch, opening_stock_qty=stock, actor="tests")

    return _make


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory: customer with zero balance."""
    counter = {"n": 0}

    def _make(payment_type: str = "CREDIT", **fields):
        counter["n"] += 1
        patch = {
            "name": f"Customer {counter['n']}",
            "phone": f"98000000{counter['n']:02d}",
            "payment_type": payment_type,
        }
        patch.update(fields)
        return create_customer(patch=patch, actor="tests")

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Product with 100 units at rate 120.00, GST 12%."""
    return make_product(stock=100, rate="120.00", gst=12, name="Paracetamol 500mg")


@pytest.fixture(scope='function')
def customer(make_customer):
    """Active credit customer with zero balance."""
    return make_customer(payment_type="CREDIT", name="City Medical Store")
