from fastapi.testclient import TestClient

from app.main import app


def test_health_ready_ok():
    client = TestClient(app)
    response = client.get("/health/ready")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    assert payload["checks"]["db"] == "ok"


def test_request_id_is_propagated():
    client = TestClient(app)
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.status_code == 200
    assert response.headers.get("X-Request-ID") == "req-123"

    generated = client.get("/health")
    assert generated.headers.get("X-Request-ID")


def test_routes_are_mounted():
    paths = set(app.openapi()["paths"])
    assert "/public/{business_slug}/slots" in paths
    assert "/public/{business_slug}/slots/alternatives" in paths
    assert "/api/bookings/validate" in paths
    assert "/api/conflicts/revalidate" in paths
    assert "/api/policy" in paths
