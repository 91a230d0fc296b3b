"""
Pytest fixtures for salonerp backend tests.

Provides an in-memory database, two isolated salons with staff, catalog
fixtures, explicit SalonContext objects for service calls, and bearer tokens
for route tests.
"""

import pytest
from salonerp import create_app
from salonerp.extensions import db
from salonerp.models import Salon, Staff, Customer, Service
from salonerp.models.auth import ROLE_SALON_ADMIN, ROLE_STAFF, ROLE_SUPER_ADMIN
from salonerp.permissions import permissions_for_role
from salonerp.services import session_service, stock_service
from salonerp.services.context import SalonContext


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'PAYMENT_STRICTNESS': 'lenient',
    'LEDGER_RETRY_BACKOFF': 0.01,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
        app.config['PAYMENT_STRICTNESS'] = 'lenient'


@pytest.fixture(scope='function')
def file_app(tmp_path):
    """App on a file-backed SQLite database so worker threads share real locking."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.sqlite3'}",
        'SQLALCHEMY_ENGINE_OPTIONS': {'connect_args': {'timeout': 30, 'check_same_thread': False}},
        'LEDGER_RETRY_ATTEMPTS': 10,
        'LEDGER_RETRY_BACKOFF': 0.01,
        'LEDGER_DEADLINE_SECONDS': 60.0,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture(scope='function')
def strict_mode(app):
    app.config['PAYMENT_STRICTNESS'] = 'strict'
    yield
    app.config['PAYMENT_STRICTNESS'] = 'lenient'


@pytest.fixture(scope='function')
def salon_a(db_session):
    """Create Salon A (first tenant)."""
    salon = Salon(name="Salon A - Glow Studio", code="GLOW", timezone="UTC", is_active=True)
    db_session.add(salon)
    db_session.commit()
    return salon


@pytest.fixture(scope='function')
def salon_b(db_session):
    """Create Salon B (second tenant)."""
    salon = Salon(name="Salon B - Shear Bliss", code="SHEAR", timezone="UTC", is_active=True)
    db_session.add(salon)
    db_session.commit()
    return salon


def _make_staff(db_session, salon, email, role):
    staff = Staff(
        salon_id=salon.id if salon is not None else None,
        name=email.split("@")[0],
        email=email,
        role=role,
        is_active=True,
    )
    db_session.add(staff)
    db_session.commit()
    return staff


@pytest.fixture(scope='function')
def admin_a(db_session, salon_a):
    return _make_staff(db_session, salon_a, "admin@glow.example", ROLE_SALON_ADMIN)


@pytest.fixture(scope='function')
def stylist_a(db_session, salon_a):
    return _make_staff(db_session, salon_a, "stylist@glow.example", ROLE_STAFF)


@pytest.fixture(scope='function')
def admin_b(db_session, salon_b):
    return _make_staff(db_session, salon_b, "admin@shear.example", ROLE_SALON_ADMIN)


@pytest.fixture(scope='function')
def platform_admin(db_session):
    return _make_staff(db_session, None, "ops@platform.example", ROLE_SUPER_ADMIN)


def context_for(staff) -> SalonContext:
    return SalonContext(
        salon_id=staff.salon_id,
        staff_id=staff.id,
        role=staff.role,
        permissions=permissions_for_role(staff.role),
    )


@pytest.fixture(scope='function')
def ctx_a(admin_a):
    """Service-call context for Salon A's admin."""
    return context_for(admin_a)


@pytest.fixture(scope='function')
def ctx_b(admin_b):
    return context_for(admin_b)


@pytest.fixture(scope='function')
def customer_a(db_session, salon_a):
    customer = Customer(salon_id=salon_a.id, name="Priya", phone="+91-90000-00001")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def customer_b(db_session, salon_b):
    customer = Customer(salon_id=salon_b.id, name="Meera", phone="+91-90000-00002")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def haircut_a(db_session, salon_a):
    """Service priced at 1000 cents in Salon A."""
    service = Service(salon_id=salon_a.id, name="Haircut", category="hair", price_cents=1000, duration_minutes=30)
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture(scope='function')
def product_a(db_session, ctx_a):
    """Product in Salon A with 10 units booked as opening balance."""
    return stock_service.create_product(
        ctx_a,
        sku="SHAMPOO-001",
        name="Argan Shampoo",
        opening_stock=10,
        reorder_level=3,
        min_stock=5,
        max_stock=50,
        cost_price_cents=250,
        unit_price_cents=500,
    )


@pytest.fixture(scope='function')
def product_b(db_session, ctx_b):
    return stock_service.create_product(ctx_b, max_stock=50, sku="SHAMPOO-001", name="Other Shampoo", opening_stock=4)


def issue_token(staff) -> str:
    _, token = session_service.create_session(staff.id)
    return token


def auth_headers(token: str, salon_id: int | None = None) -> dict:
    """Helper to create Authorization headers."""
    headers = {'Authorization': f'Bearer {token}'}
    if salon_id is not None:
        headers['X-Salon-Id'] = str(salon_id)
    return headers


@pytest.fixture(scope='function')
def admin_headers(admin_a):
    return auth_headers(issue_token(admin_a))


@pytest.fixture(scope='function')
def stylist_headers(stylist_a):
    return auth_headers(issue_token(stylist_a))


@pytest.fixture(scope='function')
def admin_b_headers(admin_b):
    return auth_headers(issue_token(admin_b))
