"""
Pytest fixtures for order core tests.

Provides test database setup, catalog fixtures (products, tax, discounts),
order helpers and an audit fact collector.
"""

import pytest
from pos_core import create_app
from pos_core.extensions import db
from pos_core.services import audit_service, catalog_service, payment_service
from pos_core.services.catalog_service import DISCOUNT_FIXED_AMOUNT, DISCOUNT_PERCENTAGE
from pos_core.services.order_service import create_order
from pos_core.services.payment_service import record_payment


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RETRY_BACKOFF_BASE': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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
        audit_service.clear_audit_sinks()
        audit_service.clear_low_stock_listeners()
        payment_service.clear_payment_processors()


@pytest.fixture(scope='function')
def audit_facts(db_session):
    """Collect audit facts delivered after commit."""
    facts = []
    audit_service.register_audit_sink(facts.append)
    return facts


@pytest.fixture(scope='function')
def low_stock_notices(db_session):
    """Collect low-stock notices delivered after commit."""
    notices = []
    audit_service.register_low_stock_listener(notices.append)
    return notices


@pytest.fixture(scope='function')
def tax_config(db_session):
    """Active flat 10% tax."""
    return catalog_service.set_tax_config("Sales Tax", 1000)


@pytest.fixture(scope='function')
def zero_tax(db_session):
    """Active 0% tax, for scenarios that only check subtotal arithmetic."""
    return catalog_service.set_tax_config("No Tax", 0)


@pytest.fixture(scope='function')
def product_a(db_session):
    """Product A: 10.00, stock 10."""
    return catalog_service.create_product(
        sku="PROD-A-001",
        name="Product A",
        price_cents=1000,
        cost_price_cents=600,
        stock_quantity=10,
        low_stock_threshold=3,
    )


@pytest.fixture(scope='function')
def product_b(db_session):
    """Product B: 25.00, stock 5, 12 month warranty."""
    return catalog_service.create_product(
        sku="PROD-B-001",
        name="Product B",
        price_cents=2500,
        cost_price_cents=1500,
        stock_quantity=5,
        low_stock_threshold=1,
        warranty_months=12,
    )


@pytest.fixture(scope='function')
def percent_discount(db_session):
    """SAVE20: 20% off, capped at 5.00."""
    return catalog_service.create_discount(
        code="save20",
        name="Save 20%",
        discount_type=DISCOUNT_PERCENTAGE,
        value=2000,
        max_discount_cents=500,
    )


@pytest.fixture(scope='function')
def fixed_discount(db_session):
    """FIVEOFF: 5.00 off orders of at least 20.00."""
    return catalog_service.create_discount(
        code="FIVEOFF",
        name="Five off",
        discount_type=DISCOUNT_FIXED_AMOUNT,
        value=500,
        min_purchase_cents=2000,
    )


@pytest.fixture(scope='function')
def pending_order(db_session, tax_config, product_a):
    """Order for 2 x Product A (subtotal 20.00, tax 2.00, total 22.00)."""
    return create_order([{"product_id": product_a.id, "quantity": 2}], user_id=1)


@pytest.fixture(scope='function')
def paid_order(pending_order):
    """pending_order paid in exact cash."""
    record_payment(pending_order.id, pending_order.total_cents, "CASH", user_id=1)
    return db.session.get(type(pending_order), pending_order.id)


@pytest.fixture(scope='function')
def serialized_product(db_session):
    """Serial Phone: 500.00, two tracked units (SN-A, SN-B)."""
    return catalog_service.create_product(
        sku="PHN-SER-1",
        name="Serial Phone",
        price_cents=50000,
        is_serialized=True,
        serial_numbers=["SN-A", "SN-B"],
        low_stock_threshold=0,
        warranty_months=12,
    )
