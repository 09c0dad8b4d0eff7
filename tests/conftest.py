"""
Pytest fixtures for the ledgersync core library tests.
"""

from itertools import count

import pytest

from ledgersync.audit import Actor, AuditRecorder
from ledgersync.testing import InMemoryStore
from ledgersync.types import AppState


def make_state(**overrides) -> AppState:
    """Build an AppState from camelCase wire data."""
    data = {
        "schemaVersion": 1,
        "monthlyIncome": 5000,
        "variableCap": 1500,
        "categories": ["Food", "Transport"],
        "transactions": [],
        "cards": [],
        "installmentPlans": [],
        "updatedAt": "2025-03-01T00:00:00+00:00",
    }
    data.update(overrides)
    return AppState.model_validate(data)


def make_transaction(tx_id: str = "tx-1", **overrides) -> dict:
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


@pytest.fixture
def store():
    """Fresh in-memory store."""
    return InMemoryStore()


@pytest.fixture
def audit(store):
    return AuditRecorder(store)


@pytest.fixture
def actor():
    return Actor(device_id="device-test-1", user_id="8d3c1f0e-6c1b-4a57-9c0e-2f7b5d9a1e42")


@pytest.fixture
def clock():
    """Monotonic fake clock returning ISO timestamps one second apart."""
    ticks = count()

    def _now() -> str:
        return f"2025-04-01T12:00:{next(ticks):02d}+00:00"

    return _now


@pytest.fixture
def state_factory():
    """``make_state`` as a fixture, so test modules never import conftest."""
    return make_state


@pytest.fixture
def tx_factory():
    return make_transaction
