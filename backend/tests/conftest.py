"""
Pytest fixtures for the stock ledger backend tests.

Provides test database setup, domain fixtures, and test client.
"""

import pytest
from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import Supplier, Product


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF': 0,
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
def supplier(db_session):
    """Create a supplier."""
    supplier = Supplier(name="Fresh Farms", phone="555-0100", is_active=True)
    db_session.add(supplier)
    db_session.commit()
    return supplier


def make_product(db_session, *, sku, name=None, stock=0, min_stock=0, price_cents=100, supplier=None):
    """Insert a product whose opening stock is its initial_stock."""
    product = Product(
        sku=sku,
        name=name or sku,
        stock=stock,
        initial_stock=stock,
        min_stock=min_stock,
        price_cents=price_cents,
        cost_price_cents=price_cents // 2,
        supplier_id=supplier.id if supplier else None,
        is_active=True,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product(db_session, supplier):
    """Product with comfortable stock (20 on hand, alert at 5)."""
    return make_product(db_session, sku="MILK-1L", name="Milk 1L", stock=20, min_stock=5,
                        price_cents=150, supplier=supplier)


@pytest.fixture(scope='function')
def product_b(db_session, supplier):
    """Second product, for multi-line sales."""
    return make_product(db_session, sku="BREAD", name="Bread", stock=10, min_stock=2,
                        price_cents=250, supplier=supplier)
