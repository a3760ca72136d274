"""
Pytest fixtures for FacturaPro backend tests.

Provides:
- an in-memory service app (session scoped) with a per-test table wipe
- two tenants (A with an admin and an employee, B with an admin)
- an HttpDataService wired to the app in-process through httpx.WSGITransport
- a scriptable FakeRemote for forcing failures the real service never
  produces on demand (partial commits, stale responses)
"""

import httpx
import pytest

from facturapro_service import create_app
from facturapro_service.extensions import db
from facturapro_service.models import Tenant, Account, Client, Product
from facturapro_service.services.auth_service import create_identity

from facturapro.config import ClientConfig
from facturapro.models import Session
from facturapro.remote import AuthEvent, HttpDataService, Subscription
from facturapro.session_store import SessionStore


PUBLIC_KEY = "test-public-key"
PASSWORD = "secret123"
SERVICE_URL = "http://facturapro.test"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'PUBLIC_API_KEY': PUBLIC_KEY,
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


def make_account(tenant: Tenant, name: str, email: str, role: str) -> Account:
    identity = create_identity(email, PASSWORD)
    account = Account(id=identity.id, tenant_id=tenant.id, name=name, role=role, email=identity.email)
    db.session.add(account)
    db.session.commit()
    return account


@pytest.fixture(scope='function')
def tenant_a(db_session):
    """Tenant A (first company)."""
    tenant = Tenant(name="Acme SL", tax_id="B12345678")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def tenant_b(db_session):
    """Tenant B (second company)."""
    tenant = Tenant(name="Beta SA", tax_id="A87654321")
    db_session.add(tenant)
    db_session.commit()
    return tenant


@pytest.fixture(scope='function')
def admin_a(tenant_a):
    return make_account(tenant_a, "Ana Admin", "ana@acme.test", "admin")


@pytest.fixture(scope='function')
def employee_a(tenant_a):
    return make_account(tenant_a, "Eva Employee", "eva@acme.test", "employee")


@pytest.fixture(scope='function')
def admin_b(tenant_b):
    return make_account(tenant_b, "Bruno Admin", "bruno@beta.test", "admin")


@pytest.fixture(scope='function')
def client_a(db_session, tenant_a):
    row = Client(tenant_id=tenant_a.id, name="Cliente Uno", email="uno@clients.test")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def client_b(db_session, tenant_b):
    row = Client(tenant_id=tenant_b.id, name="Cliente Beta", email="beta@clients.test")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def product_a(db_session, tenant_a):
    """Product in tenant A: 12.50 with 5 in stock."""
    row = Product(tenant_id=tenant_a.id, name="Widget", price_cents=1250, stock=5)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def product_a2(db_session, tenant_a):
    """Second product in tenant A: 3.00 with 10 in stock."""
    row = Product(tenant_id=tenant_a.id, name="Gadget", price_cents=300, stock=10)
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture(scope='function')
def product_b(db_session, tenant_b):
    row = Product(tenant_id=tenant_b.id, name="Beta Widget", price_cents=999, stock=3)
    db_session.add(row)
    db_session.commit()
    return row


# =============================================================================
# HTTP HELPERS (service tests)
# =============================================================================

def api_headers(token: str | None = None) -> dict:
    """apikey header plus Bearer token when given."""
    headers = {'apikey': PUBLIC_KEY}
    if token:
        headers['Authorization'] = f'Bearer {token}'
    return headers


def get_auth_token(client, email: str, password: str = PASSWORD) -> str | None:
    """Helper to get an access token for an identity."""
    response = client.post('/api/auth/login', json={'email': email, 'password': password},
                           headers=api_headers())
    if response.status_code == 200:
        return response.json['session']['access_token']
    return None


@pytest.fixture(scope='function')
def admin_a_headers(client, admin_a):
    return api_headers(get_auth_token(client, admin_a.email))


@pytest.fixture(scope='function')
def employee_a_headers(client, employee_a):
    return api_headers(get_auth_token(client, employee_a.email))


@pytest.fixture(scope='function')
def admin_b_headers(client, admin_b):
    return api_headers(get_auth_token(client, admin_b.email))


# =============================================================================
# CORE FIXTURES (in-process remote)
# =============================================================================

@pytest.fixture(scope='function')
def remote_factory(app, db_session):
    """Build HttpDataService instances that talk to the app without a network."""
    services = []

    def make() -> HttpDataService:
        service = HttpDataService(
            ClientConfig(url=SERVICE_URL, public_key=PUBLIC_KEY),
            transport=httpx.WSGITransport(app=app),
        )
        services.append(service)
        return service

    yield make

    for service in services:
        service.close()


@pytest.fixture(scope='function')
def remote(remote_factory):
    return remote_factory()


def signed_in_store(remote, email: str) -> SessionStore:
    store = SessionStore(remote)
    store.initialize()
    store.sign_in(email, PASSWORD)
    return store


@pytest.fixture(scope='function')
def admin_store(remote, admin_a):
    return signed_in_store(remote, admin_a.email)


@pytest.fixture(scope='function')
def employee_store(remote_factory, employee_a):
    return signed_in_store(remote_factory(), employee_a.email)


@pytest.fixture(scope='function')
def admin_b_store(remote_factory, admin_b):
    return signed_in_store(remote_factory(), admin_b.email)


# =============================================================================
# FAKE REMOTE (scripted failures)
# =============================================================================

class FakeAuth:
    def __init__(self):
        self.session = None
        self.listeners = []
        self.sign_out_calls = 0

    def get_session(self):
        return self.session

    def on_session_change(self, callback):
        self.listeners.append(callback)
        return Subscription(self.listeners, callback)

    def emit(self, event, session):
        self.session = session
        for listener in list(self.listeners):
            listener(event, session)

    def sign_in(self, email, password):
        session = Session(access_token="access", refresh_token="refresh", user_id=1, email=email)
        self.emit(AuthEvent.SIGNED_IN, session)
        return session

    def sign_out(self):
        self.sign_out_calls += 1
        self.emit(AuthEvent.SIGNED_OUT, None)


class FakeTable:
    def __init__(self, remote, name):
        self._remote = remote
        self._name = name

    def select(self, columns="*", filters=None, order=None, **kwargs):
        return self._remote.dispatch("select", self._name, filters)

    def insert(self, row, **kwargs):
        return self._remote.dispatch("insert", self._name, row)

    def update(self, patch, filters, **kwargs):
        return self._remote.dispatch("update", self._name, patch, filters)

    def delete(self, filters):
        return self._remote.dispatch("delete", self._name, filters)


class FakeRemote:
    """
    Records every call; responses are scripted per (operation, name).

    A response may be a value, an exception instance (raised), or a callable
    receiving the call arguments.
    """

    def __init__(self):
        self.auth = FakeAuth()
        self.calls = []
        self.responses = {}

    def on(self, operation, name, response):
        self.responses[(operation, name)] = response

    def table(self, name):
        return FakeTable(self, name)

    def rpc(self, function_name, args=None):
        return self.dispatch("rpc", function_name, args)

    def dispatch(self, operation, name, *args):
        self.calls.append((operation, name) + args)
        response = self.responses.get((operation, name), [] if operation == "select" else {})
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(*args)
        return response


PROFILE_ROW = {
    "id": 1,
    "tenant_id": 10,
    "name": "Fiona Fake",
    "role": "admin",
    "email": "fiona@fake.test",
    "tenant": {"id": 10, "name": "Fake SL"},
}


@pytest.fixture(scope='function')
def fake_remote():
    return FakeRemote()


@pytest.fixture(scope='function')
def fake_store(fake_remote):
    """SessionStore authenticated against the fake remote as PROFILE_ROW."""
    fake_remote.on("select", "accounts", [PROFILE_ROW])
    fake_remote.auth.session = Session(
        access_token="access", refresh_token="refresh", user_id=1, email=PROFILE_ROW["email"],
    )
    store = SessionStore(fake_remote)
    store.initialize()
    fake_remote.calls.clear()
    return store
