"""
Pytest fixtures for restaurant POS backend tests.

Provides test database setup, staff with PINs, a small catalog, and
helpers for orders and shifts.
"""

import pytest

from restopos import create_app
from restopos.extensions import db, events
from restopos.models import Printer, Category, Product, DiningTable, AdditionalCharge
from restopos.models.auth import ROLE_ADMIN, ROLE_MANAGER, ROLE_CASHIER, ROLE_WAITER
from restopos.services import auth_service
from restopos.services import order_service
from restopos.services import shift_service


MANAGER_PIN = "1111"
ADMIN_PIN = "2222"
CASHIER_PIN = "3333"
CASHIER2_PIN = "4444"
WAITER_PIN = "5555"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
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
        events.clear()


@pytest.fixture(scope='function')
def recorded_events(db_session):
    """Capture realtime events emitted during the test."""
    recorded = []

    def _listener(name, payload):
        recorded.append((name, payload))

    events.subscribe(_listener)
    yield recorded
    events.unsubscribe(_listener)


# =============================================================================
# STAFF
# =============================================================================

@pytest.fixture(scope='function')
def manager(db_session):
    return auth_service.create_staff_user("manager", ROLE_MANAGER, pin=MANAGER_PIN, full_name="Maya Manager")


@pytest.fixture(scope='function')
def admin(db_session):
    return auth_service.create_staff_user("admin", ROLE_ADMIN, pin=ADMIN_PIN, full_name="Adi Admin")


@pytest.fixture(scope='function')
def cashier(db_session):
    return auth_service.create_staff_user("cashier", ROLE_CASHIER, pin=CASHIER_PIN, full_name="Citra Cashier")


@pytest.fixture(scope='function')
def cashier2(db_session):
    return auth_service.create_staff_user("cashier2", ROLE_CASHIER, pin=CASHIER2_PIN, full_name="Dewi Cashier")


@pytest.fixture(scope='function')
def waiter(db_session):
    return auth_service.create_staff_user("waiter", ROLE_WAITER, pin=WAITER_PIN, full_name="Wawan Waiter")


# =============================================================================
# CATALOG
# =============================================================================

@pytest.fixture(scope='function')
def printers(db_session):
    """Kitchen printer and receipt (struk) printer."""
    kitchen = Printer(name="Kitchen", printer_type="kitchen", ip_address="10.0.0.10", port=9100)
    struk = Printer(name="Cashier Receipt", printer_type="struk", ip_address="10.0.0.11", port=9100)
    db_session.add_all([kitchen, struk])
    db_session.commit()
    return {"kitchen": kitchen, "struk": struk}


@pytest.fixture(scope='function')
def products(db_session, printers):
    """Nasi Goreng (1000, kitchen printer) and Es Teh (2000, no printer)."""
    food = Category(name="Food", printer_id=printers["kitchen"].id)
    drinks = Category(name="Drinks")
    db_session.add_all([food, drinks])
    db_session.flush()

    nasi = Product(name="Nasi Goreng", price=1000, category_id=food.id)
    teh = Product(name="Es Teh", price=2000, category_id=drinks.id)
    db_session.add_all([nasi, teh])
    db_session.commit()
    return {"nasi": nasi, "teh": teh}


@pytest.fixture(scope='function')
def tables(db_session):
    rows = [DiningTable(table_number=str(n), capacity=4) for n in range(1, 5)]
    db_session.add_all(rows)
    db_session.commit()
    return {row.table_number: row for row in rows}


@pytest.fixture(scope='function')
def service_charge(db_session):
    charge = AdditionalCharge(name="Service", charge_type="percentage", value=10, is_active=True)
    db_session.add(charge)
    db_session.commit()
    return charge


@pytest.fixture(scope='function')
def open_shift(db_session, cashier):
    return shift_service.open_shift(cashier.id, opening_cash=50000)


# =============================================================================
# HELPERS
# =============================================================================

@pytest.fixture(scope='function')
def make_order(db_session, products, tables, waiter):
    """
    Factory: make_order(table, nasi=2, teh=1) -> Order.

    Defaults give subtotal 4000 (2 x 1000 + 1 x 2000).
    """
    def _make(table_number="1", nasi=2, teh=1, pax=2):
        items = []
        if nasi:
            items.append({"product_id": products["nasi"].id, "qty": nasi})
        if teh:
            items.append({"product_id": products["teh"].id, "qty": teh})
        return order_service.create_order_with_items(
            table_number,
            items,
            pax=pax,
            customer_name="Budi",
            created_by=waiter.id,
        )

    return _make
