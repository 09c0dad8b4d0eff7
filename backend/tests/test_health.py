"""Test the liveness and health endpoints."""

from ledgersync.testing import InMemoryStore


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == "ledgersync-backend"
    assert data["status"] == "ok"


def test_health_connected(client, store):
    response = client.get("/health")
    assert response.json() == {"status": "healthy", "storage": "connected"}
    assert store.calls == [("select", "app_states", 0)]


def test_health_without_storage(build_client):
    response = build_client().get("/health")
    assert response.json() == {"status": "degraded", "storage": "not configured"}


def test_health_storage_error(build_client):
    store = InMemoryStore()
    store.fail_next("select", "app_states")
    response = build_client(store=store).get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["storage"].startswith("error: simulated select failure")


def test_unknown_route_uses_error_shape(client):
    response = client.get("/api/nope")
    assert response.status_code == 404
    assert response.json() == {"error": "Not Found"}
