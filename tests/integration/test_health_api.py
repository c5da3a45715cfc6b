from fastapi.testclient import TestClient

import caisse.app_setup.factory as factory


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_health_storage_memory_backend(client):
    r = client.get("/health/storage")
    assert r.status_code == 200
    assert r.json() == {"backend": "memory", "sales_ok": True, "sessions_ok": True}


def test_health_storage_reports_failures(client, services, monkeypatch):
    def down(*args, **kwargs):
        raise RuntimeError("down")

    monkeypatch.setattr(services.sales, "list_sales", down)
    r = client.get("/health/storage")
    assert r.status_code == 503
    assert r.json()["sales_ok"] is False


def test_protected_routes_require_authentication(services):
    with TestClient(factory.create_app(services=services)) as c:
        assert c.get("/api/v1/cart/session").status_code == 401
        assert c.get("/health").status_code == 200
