from fastapi.testclient import TestClient
from backend.app.main import app

client = TestClient(app)


def test_read_root():
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"app": "ClassLedger backend", "status": "ok"}


def test_health_check():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_routers_are_mounted():
    paths = {route.path for route in app.routes}
    assert "/classes/{class_id}/join-status" in paths
    assert "/ledger/report" in paths
    assert "/availability/" in paths
