"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any smsrelay import so the
settings, engine and token service are built against them.
"""

import os
import tempfile

_TEST_DB_DIR = tempfile.mkdtemp(prefix="smsrelay-tests-")

os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}")
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("JWT_SECRET", "test-secret-key-that-is-at-least-32-bytes")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACtest")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "test-auth-token")
os.environ.setdefault("TWILIO_PHONE_NUMBER", "+15005550006")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

# Clear settings cache before any app imports to ensure test env vars are used
from smsrelay.config import get_settings  # noqa: E402
get_settings.cache_clear()

from smsrelay.delivery import DeliveryFailure, DeliverySuccess, get_delivery_gateway  # noqa: E402
from smsrelay.main import app  # noqa: E402
from smsrelay.models import Message  # noqa: E402
from smsrelay.storage import SessionLocal, Base, engine  # noqa: E402


TEST_PASSWORD = "password123"


class StubGateway:
    """Delivery gateway double that records calls and returns a fixed outcome."""

    def __init__(self, outcome=None, raises=None):
        self.outcome = outcome if outcome is not None else DeliverySuccess(status="queued", provider_id="SM123")
        self.raises = raises
        self.calls = []

    def send(self, destination, body):
        self.calls.append((destination, body))
        if self.raises is not None:
            raise self.raises
        return self.outcome


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(client):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def gateway(client):
    """Stub gateway installed in place of Twilio; tests adjust its outcome."""
    stub = StubGateway()
    app.dependency_overrides[get_delivery_gateway] = lambda: stub
    return stub


def register(client, email: str, password: str = TEST_PASSWORD):
    return client.post("/users", json={"email": email, "password": password})


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def count_messages(db, user_id=None) -> int:
    """Stored message rows, optionally for one user."""
    query = db.query(Message)
    if user_id is not None:
        query = query.filter(Message.user_id == user_id)
    return query.count()


@pytest.fixture
def user_token(client):
    """Registered user: (user dict, token)."""
    response = register(client, "test@example.com")
    assert response.status_code == 201
    data = response.json()
    return data["user"], data["token"]


@pytest.fixture
def other_user_token(client):
    response = register(client, "other@example.com")
    assert response.status_code == 201
    data = response.json()
    return data["user"], data["token"]
