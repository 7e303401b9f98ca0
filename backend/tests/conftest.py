"""
Pytest fixtures for SaleFlow backend tests.

Provides test database setup, actor/product/customer factories, and test client.
"""

import itertools

import pytest

from saleflow import create_app
from saleflow.extensions import db
from saleflow.models import User
from saleflow.services import customer_service, inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEFAULT_TAX_RATE_BPS': 0,
        'VOID_REVERSES_EFFECTS': True,
        'AUDIT_LOG_ENABLED': True,
        'LOG_LEVEL': 'WARNING',
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
def seller(db_session):
    user = User(username="seller", name="Sam Seller", role="operator")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def manager(db_session):
    user = User(username="manager", name="Mia Manager", role="manager")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: committed product with opening stock booked as a movement."""
    counter = itertools.count(1)

    def _make(name="Widget", price_cents=1000, stock=10, **kwargs):
        return inventory_service.create_product(
            sku=kwargs.pop("sku", f"SKU-{next(counter):04d}"),
            name=name,
            price_cents=price_cents,
            initial_stock=stock,
            **kwargs,
        )

    return _make


@pytest.fixture(scope='function')
def customer(db_session):
    return customer_service.create_customer(name="Carla Customer", phone="555-0100")


@pytest.fixture(scope='function')
def actor_headers(seller):
    return {"X-User-Id": str(seller.id)}
