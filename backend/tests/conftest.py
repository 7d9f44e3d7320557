"""
Pytest fixtures for billing backend tests.

Provides test database setup, domain fixtures and test client.
"""

from decimal import Decimal

import pytest

from billing import create_app
from billing.extensions import db
from billing.models import Customer, Product


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        # Run notification jobs inline without sleeping between retries
        'NOTIFICATIONS_ASYNC': False,
        'NOTIFICATION_BACKOFF_BASE': 0,
        'EMAIL_USER': None,
        'EMAIL_PASSWORD': None,
        'WHATSAPP_ACCESS_TOKEN': None,
        'WHATSAPP_BUSINESS_PHONE_ID': None,
        'ADMIN_EMAIL': None,
        'ADMIN_PHONE': None,
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


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for products with sensible GST defaults."""
    def _make(name="Widget", price="100.00", gst_rate="18.00", stock=5, threshold=1, **kwargs):
        product = Product(
            name=name,
            price=Decimal(price),
            gst_rate=Decimal(gst_rate),
            stock_quantity=stock,
            low_stock_threshold=threshold,
            hsn_code=kwargs.pop("hsn_code", "8471"),
            **kwargs,
        )
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Product priced 100.00 at 18% GST with 5 on hand."""
    return make_product()


@pytest.fixture(scope='function')
def customer(db_session):
    """B2C customer without contact details (no notifications)."""
    cust = Customer(name="Walk-in Buyer", customer_type="b2c", state="Karnataka")
    db_session.add(cust)
    db_session.commit()
    return cust


@pytest.fixture(scope='function')
def b2b_customer(db_session):
    cust = Customer(
        name="Acme Traders",
        customer_type="b2b",
        gst_number="29ABCDE1234F1Z5",
        email="accounts@acme.example",
        phone="9876543210",
        state="Karnataka",
    )
    db_session.add(cust)
    db_session.commit()
    return cust
