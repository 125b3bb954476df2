"""
Pytest fixtures for posledger backend tests.

Provides the app with an in-memory database, two tenants with users per role,
products, bearer headers obtained through the real login route, and a
recording fake in place of the payment gateway.
"""

import itertools

import pytest

from posledger import create_app
from posledger.extensions import db
from posledger.models import Organization, User, Product
from posledger.services.audit_service import DatabaseAuditSink
from posledger.services.auth_service import hash_password


PASSWORD = "Password123!"


class FakeGateway:
    """Records every initiate() call; fails on demand."""

    def __init__(self):
        self.calls = []
        self.error = None
        self._ids = itertools.count(1)

    def fail_with(self, error: Exception) -> None:
        self.error = error

    def initiate(self, phone, amount_cents, reference, description=None):
        self.calls.append({
            "phone": phone,
            "amount_cents": amount_cents,
            "reference": reference,
            "description": description,
        })
        if self.error is not None:
            raise self.error
        return {
            "MerchantRequestID": f"mr-{len(self.calls)}",
            "CheckoutRequestID": f"ws_CO_{next(self._ids):04d}",
            "ResponseCode": "0",
            "ResponseDescription": "Success. Request accepted for processing",
            "CustomerMessage": "Success. Request accepted for processing",
        }


class FailingAuditSink:
    def __init__(self):
        self.attempts = 0

    def write(self, event):
        self.attempts += 1
        raise RuntimeError("audit store unavailable")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'GATEWAY_BASE_URL': 'https://gateway.test',
        'GATEWAY_CONSUMER_KEY': 'key',
        'GATEWAY_CONSUMER_SECRET': 'secret',
        'GATEWAY_SHORTCODE': '174379',
        'GATEWAY_PASSKEY': 'passkey',
        'GATEWAY_CALLBACK_URL': 'https://pos.test/api/transactions/payment-callback',
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
    """Fresh data (and fresh collaborators) for each test."""
    with app.app_context():
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        app.extensions['payment_gateway'] = FakeGateway()
        app.extensions['audit_sink'] = DatabaseAuditSink()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def fake_gateway(app, db_session):
    return app.extensions['payment_gateway']


@pytest.fixture(scope='function')
def failing_audit_sink(app, db_session):
    sink = FailingAuditSink()
    app.extensions['audit_sink'] = sink
    return sink


@pytest.fixture(scope='function')
def org_a(db_session):
    """Organization A (first tenant)."""
    org = Organization(name="Org A - Corner Shop", code="SHOPA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Organization B (second tenant)."""
    org = Organization(name="Org B - Market Stall", code="SHOPB", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


def _make_user(db_session, org, username, role):
    user = User(
        org_id=org.id,
        username=username,
        password_hash=hash_password(PASSWORD),
        role=role,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def owner_a(db_session, org_a):
    return _make_user(db_session, org_a, "owner_a", "owner")


@pytest.fixture(scope='function')
def manager_a(db_session, org_a):
    return _make_user(db_session, org_a, "manager_a", "manager")


@pytest.fixture(scope='function')
def cashier_a(db_session, org_a):
    return _make_user(db_session, org_a, "cashier_a", "cashier")


@pytest.fixture(scope='function')
def owner_b(db_session, org_b):
    return _make_user(db_session, org_b, "owner_b", "owner")


def _make_product(db_session, org, name, price_cents, stock, sku):
    product = Product(
        org_id=org.id,
        sku=sku,
        name=name,
        price_cents=price_cents,
        stock_quantity=stock,
    )
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def product_x(db_session, org_a):
    """Stock 10, price 100."""
    return _make_product(db_session, org_a, "Product X", 100, 10, "X-001")


@pytest.fixture(scope='function')
def product_y(db_session, org_a):
    """Stock 5, price 50."""
    return _make_product(db_session, org_a, "Product Y", 50, 5, "Y-001")


@pytest.fixture(scope='function')
def product_b(db_session, org_b):
    """Product owned by Organization B."""
    return _make_product(db_session, org_b, "Product B", 2000, 10, "B-001")


def stock_of(product_id: int) -> int:
    """Current stock straight from the database."""
    return db.session.query(Product.stock_quantity).filter(Product.id == product_id).scalar()


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def owner_headers(client, owner_a):
    return auth_headers(get_auth_token(client, owner_a.username))


@pytest.fixture(scope='function')
def manager_headers(client, manager_a):
    return auth_headers(get_auth_token(client, manager_a.username))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier_a):
    return auth_headers(get_auth_token(client, cashier_a.username))


@pytest.fixture(scope='function')
def owner_b_headers(client, owner_b):
    return auth_headers(get_auth_token(client, owner_b.username))