"""Pytest configuration and fixtures for the API tests.

Every app is built with ``create_app`` and an in-memory store, so no test
touches Supabase or the environment's secrets.
"""

import pytest
from fastapi.testclient import TestClient

from app.auth import compute_sync_token
from app.config import Settings
from app.main import create_app
from ledgersync.testing import InMemoryStore

TEST_SYNC_SECRET = "test-only-sync-secret"
TEST_SYNC_SHARED_KEY = "test-only-shared-key"
TEST_ADMIN_SECRET = "test-only-admin-secret"
TEST_DEVICE_ID = "device-api-test"


def make_settings(**overrides) -> Settings:
    values = dict(
        supabase_url=None,
        supabase_secret_key=None,
        supabase_service_role_key=None,
        sync_secret=TEST_SYNC_SECRET,
        sync_shared_key=TEST_SYNC_SHARED_KEY,
        admin_secret=TEST_ADMIN_SECRET,
        ai_provider="none",
        rate_limit_enabled=False,
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def app(settings, store):
    return create_app(settings, store=store)


@pytest.fixture
def client(app):
    """Create a test client."""
    return TestClient(app)


@pytest.fixture
def build_client():
    """Build a client for custom settings, store or AI provider."""

    def _build(*, store=None, ai_provider=None, raise_server_exceptions=True, **overrides):
        app = create_app(make_settings(**overrides), store=store, ai_provider=ai_provider)
        return TestClient(app, raise_server_exceptions=raise_server_exceptions)

    return _build


@pytest.fixture
def sync_headers():
    """Sync credentials (HMAC token) plus a device id for ``workspace``."""

    def _headers(workspace: str = "home", **extra) -> dict:
        headers = {
            "x-sync-token": compute_sync_token(TEST_SYNC_SECRET, workspace),
            "x-device-id": TEST_DEVICE_ID,
        }
        headers.update(extra)
        return headers

    return _headers


@pytest.fixture
def device_id():
    return TEST_DEVICE_ID


@pytest.fixture
def shared_key_headers():
    """Sync credentials using the static shared key instead of the HMAC token."""
    return {"x-sync-key": TEST_SYNC_SHARED_KEY}


@pytest.fixture
def admin_headers():
    return {"x-admin-token": TEST_ADMIN_SECRET, "x-device-id": TEST_DEVICE_ID}


@pytest.fixture
def wire_state():
    """Minimal camelCase client state."""

    def _state(transactions=None, **overrides) -> dict:
        data = {
            "schemaVersion": 1,
            "monthlyIncome": 5000,
            "variableCap": 1500,
            "categories": ["Food", "Transport"],
            "transactions": transactions or [],
            "cards": [],
            "installmentPlans": [],
            "updatedAt": "2025-03-01T00:00:00+00:00",
        }
        data.update(overrides)
        return data

    return _state


@pytest.fixture
def wire_transaction():
    def _transaction(tx_id: str = "tx-1", **overrides) -> dict:
        data = {
            "id": tx_id,
            "date": "2025-03-14",
            "kind": "expense",
            "amount": 100,
            "description": "Groceries",
            "categoryId": "Food",
            "paymentMethod": "pix",
            "status": "paid",
            "createdAt": "2025-03-14T10:00:00+00:00",
            "updatedAt": "2025-03-14T10:00:00+00:00",
        }
        data.update(overrides)
        return data

    return _transaction
