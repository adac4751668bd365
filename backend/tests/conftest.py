"""
Pytest fixtures for hwpos backend tests.

Provides test database setup, collaborator doubles, factory fixtures and
the test client.
"""

import pytest
from hwpos import create_app
from hwpos.extensions import COLLABORATORS_KEY, db
from hwpos.services import customer_service, settlement_service, shift_service
from hwpos.services.collaborators import InMemoryProductCatalog, InventoryService, LoggingInventoryService
from hwpos.services.payment_split_service import PaymentLeg
from hwpos.services.tax_service import CartLine


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'RETRY_BACKOFF_BASE': 0,
}


class FailingInventoryService(InventoryService):
    """Inventory double whose every call fails."""

    def decrement(self, product_id, quantity, reason_tag):
        raise RuntimeError("inventory service unavailable")

    def restock(self, product_id, quantity, reason_tag):
        raise RuntimeError("inventory service unavailable")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    catalog = InMemoryProductCatalog()
    catalog.add_product(1, unit_price_cents=56000, sku="CEM-40KG", name="Portland Cement 40kg")
    catalog.add_product(2, unit_price_cents=1500, sku="NAIL-2IN", name="Common Nail 2in (1kg)")

    app = create_app(TEST_CONFIG, catalog=catalog, inventory=LoggingInventoryService())

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
def db_session(app):
    """Fresh data for each test."""
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def inventory(app):
    """The default inventory service with its move log cleared."""
    service = app.extensions[COLLABORATORS_KEY]["inventory"]
    service.moves.clear()
    return service


@pytest.fixture(scope='function')
def failing_inventory(app):
    """Swap in an inventory service that always fails."""
    original = app.extensions[COLLABORATORS_KEY]["inventory"]
    app.extensions[COLLABORATORS_KEY]["inventory"] = FailingInventoryService()
    yield
    app.extensions[COLLABORATORS_KEY]["inventory"] = original


@pytest.fixture(scope='function')
def make_customer(db_session):
    """Factory: open an AR customer account."""
    counter = {"n": 0}

    def _make(credit_limit_cents=100000, opening_balance_cents=0, **kwargs):
        counter["n"] += 1
        return customer_service.create_customer(
            customer_code=kwargs.pop("customer_code", f"C-{counter['n']:04d}"),
            customer_name=kwargs.pop("customer_name", f"Customer {counter['n']}"),
            credit_limit_cents=credit_limit_cents,
            opening_balance_cents=opening_balance_cents,
            **kwargs,
        )

    return _make


@pytest.fixture(scope='function')
def shift(db_session):
    """ACTIVE shift for cashier 1 with a 100.00 float."""
    return shift_service.start_shift(1, 10000, cashier_name="Ana")


@pytest.fixture(scope='function')
def ring_sale(shift):
    """Factory: settle a one-line VAT sale on the default shift."""

    def _ring(price_cents, legs, *, customer_id=None, quantity=1, **kwargs):
        return settlement_service.settle(
            [CartLine(product_id=kwargs.pop("product_id", 1), unit_price_cents=price_cents, quantity=quantity)],
            legs,
            cashier_id=shift.cashier_id,
            shift_id=shift.id,
            customer_id=customer_id,
            **kwargs,
        )

    return _ring


def cash(amount_cents):
    return PaymentLeg("CASH", amount_cents)


def ar(amount_cents):
    return PaymentLeg("AR", amount_cents)


def card(amount_cents, reference="AUTH-123456"):
    return PaymentLeg("CREDIT_CARD", amount_cents, reference_number=reference)


def actor_headers(user_id: int = 1) -> dict:
    """Helper to create acting-user headers."""
    return {'X-User-Id': str(user_id)}
