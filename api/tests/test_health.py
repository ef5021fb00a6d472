from __future__ import annotations


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["uptime_s"] >= 0


def test_storage_health_reports_backend(client, settings):
    response = client.get("/health/storage")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "backend": settings.storage_backend}


def test_public_config(client):
    response = client.get("/api/config")
    assert response.status_code == 200
    body = response.json()
    assert body["categories"] == ["construction", "furniture", "services"]
    assert body["auth_strategy"] == "credentials"
    assert body["counter_mode"] == "direct"


def test_security_headers(client):
    response = client.get("/health")
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["X-Frame-Options"] == "DENY"
    assert "Strict-Transport-Security" not in response.headers


def test_unhandled_error_is_opaque(make_app, open_client, monkeypatch):
    from fastapi.testclient import TestClient

    from buildtalk.storage import Storage

    def explode(self, *args, **kwargs):
        raise RuntimeError("database on fire")

    app = make_app()
    open_client(app)
    monkeypatch.setattr(Storage, "get_target", explode)
    client = TestClient(app, raise_server_exceptions=False)

    response = client.get("/api/votes/thread/00000000-0000-0000-0000-000000000000")
    assert response.status_code == 500
    assert response.json() == {"detail": "Internal server error"}
