"""
Pytest fixtures for GasDepot backend tests.

Provides an in-memory database, a seeded default warehouse with catalog and
stock, one user per role, and helpers for bearer-token requests.
"""

import pytest

from gasdepot import create_app
from gasdepot.extensions import db
from gasdepot.models import CylinderType, OtherProduct, Warehouse
from gasdepot.models.auth import (
    ROLE_ACCOUNTING,
    ROLE_CUSTOMER,
    ROLE_DELIVERY,
    ROLE_DISPATCH,
    ROLE_MANAGER,
)
from gasdepot.models.inventory import ITEM_CYLINDER, ITEM_OTHER_PRODUCT, STATE_AVAILABLE, STATE_FULL
from gasdepot.services import inventory_service, loyalty_service, session_service
from gasdepot.services.auth_service import Actor, create_user
from gasdepot.services.inventory_service import StockKey


PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'STALE_DATA_RETRY_ATTEMPTS': 3,
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
    """Fresh data for each test, same schema."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


# =============================================================================
# REFERENCE DATA
# =============================================================================

@pytest.fixture(scope='function')
def warehouse(db_session):
    wh = Warehouse(name="Main Depot", code="MAIN", is_default=True, is_active=True)
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture(scope='function')
def other_warehouse(db_session):
    wh = Warehouse(name="North Depot", code="NORTH", is_default=False, is_active=True)
    db_session.add(wh)
    db_session.commit()
    return wh


@pytest.fixture(scope='function')
def cylinder(db_session):
    """10 kg cylinder: new 150.00, exchange 97.00, loan 120.00."""
    cyl = CylinderType(
        name="10 kg",
        price_new_cents=15000,
        price_exchange_cents=9700,
        price_loan_cents=12000,
        is_available=True,
    )
    db_session.add(cyl)
    db_session.commit()
    return cyl


@pytest.fixture(scope='function')
def regulator(db_session):
    """Accessory product at 35.00."""
    product = OtherProduct(name="Regulator", price_cents=3500, stock_unit="unidad", is_available=True)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def stocked(warehouse, cylinder, regulator):
    """10 full cylinders and 5 regulators in the default warehouse."""
    inventory_service.credit(StockKey(warehouse.id, ITEM_CYLINDER, cylinder.id, STATE_FULL), 10)
    inventory_service.credit(StockKey(warehouse.id, ITEM_OTHER_PRODUCT, regulator.id, STATE_AVAILABLE), 5)
    return warehouse


# =============================================================================
# USERS
# =============================================================================

def _user(username, role, full_name=None):
    return create_user(
        username=username,
        full_name=full_name or username.title(),
        password=PASSWORD,
        role=role,
    )


@pytest.fixture(scope='function')
def customer_user(db_session):
    return _user("maria", ROLE_CUSTOMER, "Maria Quispe")


@pytest.fixture(scope='function')
def other_customer_user(db_session):
    return _user("jose", ROLE_CUSTOMER, "Jose Ramos")


@pytest.fixture(scope='function')
def dispatcher(db_session):
    return _user("base1", ROLE_DISPATCH)


@pytest.fixture(scope='function')
def driver(db_session):
    return _user("driver1", ROLE_DELIVERY)


@pytest.fixture(scope='function')
def other_driver(db_session):
    return _user("driver2", ROLE_DELIVERY)


@pytest.fixture(scope='function')
def accountant(db_session):
    return _user("conta1", ROLE_ACCOUNTING)


@pytest.fixture(scope='function')
def manager(db_session):
    return _user("gerente1", ROLE_MANAGER)


def actor_for(user) -> Actor:
    return Actor(user_id=user.id, role=user.role)


@pytest.fixture(scope='function')
def customer(customer_user):
    return actor_for(customer_user)


@pytest.fixture(scope='function')
def rich_customer(customer_user, manager):
    """Customer actor holding 150 settled loyalty points."""
    loyalty_service.adjust_points(customer_user.id, 150, notes="Opening balance", user_id=manager.id)
    return actor_for(customer_user)


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Callable: user -> Authorization header for a fresh session."""
    def _headers(user) -> dict:
        _, token = session_service.create_session(user_id=user.id)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture(scope='function')
def make_actor():
    return actor_for
