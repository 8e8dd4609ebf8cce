"""
Pytest fixtures for the credit ledger backend tests.

Provides the app on in-memory SQLite, a per-test clean database, a test
client and small factories for customers, products and confirmed orders.
"""

import pytest

from mardecores import create_app
from mardecores.extensions import db
from mardecores.services import customer_service, inventory_service, order_service
from mardecores.services.notification_service import notifier


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'NOTIFY_ASYNC': False,
        'NOTIFY_MAX_ATTEMPTS': 2,
        'NOTIFY_BACKOFF_SECONDS': 0,
        'WEBHOOK_URLS': [],
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
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        notifier.clear()
        notifier.http_transport = None

        yield db.session

        # Cleanup after test
        db.session.rollback()
        notifier.clear()
        notifier.http_transport = None


@pytest.fixture(scope='function')
def customer(db_session):
    """Maria, the default crediário customer."""
    return customer_service.create_customer(name="Maria Silva", phone="(11) 98765-4321", email="maria@example.com")


@pytest.fixture(scope='function')
def other_customer(db_session):
    return customer_service.create_customer(name="Joana Souza", phone="(21) 91234-5678")


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(price="100.00", stock=10, name="Kit Hidratante"):
        return inventory_service.create_product(name=name, price=price, stock=stock)
    return _make


@pytest.fixture(scope='function')
def make_order(db_session, make_product):
    """
    Create (and by default confirm) a one-line order for a customer.

    Returns the order; credit orders come back linked to their account.
    """
    def _make(customer, total="100.00", payment_method="credit", quantity=1, confirm=True):
        product = make_product(price=total)
        order = order_service.create_order(
            items=[{"product_id": product.id, "quantity": quantity}],
            payment_method=payment_method,
            customer_id=customer.id,
        )
        if confirm:
            order = order_service.confirm_order(order.id)
        return order
    return _make


@pytest.fixture(scope='function')
def credit_order(customer, make_order):
    """Confirmed credit order of R$ 100,00: its account starts at total 100, paid 0."""
    return make_order(customer, total="100.00")


@pytest.fixture(scope='function')
def events(db_session):
    """Collect every reconciliation event delivered in-process."""
    received = []
    notifier.subscribe(received.append)
    yield received
    notifier.unsubscribe(received.append)
