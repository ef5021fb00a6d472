"""Federated login with the provider calls replaced by stubs."""

from __future__ import annotations

from contextlib import contextmanager
from urllib.parse import parse_qs, urlparse

import pytest

from buildtalk.db import get_session
from buildtalk.services import oidc
from buildtalk.storage import DatabaseStorage

DISCOVERY = {
    "authorization_endpoint": "https://issuer.example/authorize",
    "token_endpoint": "https://issuer.example/token",
    "userinfo_endpoint": "https://issuer.example/userinfo",
}


@pytest.fixture()
def provider(monkeypatch):
    """Stub provider; records every call that would have gone over the network."""
    calls: list[str] = []
    claims = {
        "sub": "oidc-user-1",
        "email": "Builder@Example.com",
        "email_verified": True,
        "given_name": "Анна",
        "family_name": "Смирнова",
        "picture": "https://cdn.example/a.png",
    }

    def fake_exchange(settings, code):
        calls.append(f"exchange:{code}")
        return {"access_token": "provider-access-token"}

    def fake_userinfo(settings, access_token):
        calls.append(f"userinfo:{access_token}")
        return dict(claims)

    monkeypatch.setattr(oidc, "discover", lambda issuer_url: DISCOVERY)
    monkeypatch.setattr(oidc, "exchange_code", fake_exchange)
    monkeypatch.setattr(oidc, "fetch_userinfo", fake_userinfo)
    return {"calls": calls, "claims": claims}


@pytest.fixture()
def oidc_client(make_app, open_client):
    return open_client(make_app(auth_strategy="oidc"))


@contextmanager
def storage_of(client, settings):
    """Storage behind a client's own application."""
    if settings.storage_backend == "memory":
        yield client.app.state.memory_storage
        return
    sessions = get_session(settings.database_url)
    try:
        yield DatabaseStorage(next(sessions))
    finally:
        sessions.close()


def start_login(client) -> str:
    response = client.get("/auth/login", follow_redirects=False)
    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(DISCOVERY["authorization_endpoint"])
    return parse_qs(urlparse(location).query)["state"][0]


def test_login_redirects_with_state_cookie(oidc_client, provider):
    response = oidc_client.get("/auth/login", follow_redirects=False)
    assert response.status_code == 302

    query = parse_qs(urlparse(response.headers["location"]).query)
    assert query["client_id"] == ["buildtalk"]
    assert query["response_type"] == ["code"]
    assert query["redirect_uri"] == ["http://testserver/auth/callback"]
    assert query["state"][0]

    set_cookie = response.headers["set-cookie"]
    assert f"{oidc.STATE_COOKIE_NAME}=" in set_cookie
    assert "HttpOnly" in set_cookie


def test_callback_signs_in_and_upserts_user(oidc_client, provider):
    state = start_login(oidc_client)

    response = oidc_client.get("/auth/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    assert response.status_code == 302
    assert response.headers["location"] == "/"
    assert provider["calls"] == ["exchange:abc", "userinfo:provider-access-token"]

    identity = oidc_client.get("/api/auth/user").json()
    assert identity["email"] == "builder@example.com"
    assert identity["first_name"] == "Анна"
    assert identity["profile_image_url"] == "https://cdn.example/a.png"

    profile = oidc_client.get("/api/profile").json()["user"]
    assert profile["karma"] == 0
    assert profile["role"] == "diy"


def test_repeat_login_refreshes_the_same_user(oidc_client, provider):
    oidc_client.get("/auth/callback", params={"code": "1", "state": start_login(oidc_client)}, follow_redirects=False)
    first_id = oidc_client.get("/api/auth/user").json()["id"]
    oidc_client.patch("/api/profile", json={"role": "contractor"})

    provider["claims"]["given_name"] = "Аня"
    oidc_client.get("/auth/callback", params={"code": "2", "state": start_login(oidc_client)}, follow_redirects=False)

    profile = oidc_client.get("/api/profile").json()["user"]
    assert profile["id"] == first_id
    assert profile["first_name"] == "Аня"
    assert profile["role"] == "contractor"


def test_verified_email_links_existing_account(oidc_client, provider, settings):
    with storage_of(oidc_client, settings) as storage:
        existing_id = str(storage.create_user(email="builder@example.com", password_hash="x").id)

    oidc_client.get("/auth/callback", params={"code": "abc", "state": start_login(oidc_client)}, follow_redirects=False)

    assert oidc_client.get("/api/auth/user").json()["id"] == existing_id


def test_unverified_email_does_not_take_over_existing_account(oidc_client, provider, settings):
    with storage_of(oidc_client, settings) as storage:
        storage.create_user(email="builder@example.com", password_hash="x")
    provider["claims"]["email_verified"] = False

    response = oidc_client.get(
        "/auth/callback", params={"code": "abc", "state": start_login(oidc_client)}, follow_redirects=False
    )
    assert response.status_code == 409
    assert oidc_client.get("/api/auth/user").status_code == 401


def test_callback_rejects_mismatched_state_before_network_call(oidc_client, provider):
    start_login(oidc_client)

    response = oidc_client.get(
        "/auth/callback", params={"code": "abc", "state": "forged"}, follow_redirects=False
    )
    assert response.status_code == 400
    assert provider["calls"] == []
    assert oidc_client.get("/api/auth/user").status_code == 401


def test_callback_rejects_state_without_cookie(oidc_client, provider, make_app, open_client):
    state = start_login(oidc_client)
    stranger = open_client(make_app(auth_strategy="oidc"))

    response = stranger.get("/auth/callback", params={"code": "abc", "state": state}, follow_redirects=False)
    assert response.status_code == 400
    assert provider["calls"] == []


def test_logout_destroys_session(oidc_client, provider):
    oidc_client.get("/auth/callback", params={"code": "abc", "state": start_login(oidc_client)}, follow_redirects=False)
    assert oidc_client.get("/api/auth/user").status_code == 200

    response = oidc_client.post("/auth/logout")
    assert response.status_code == 200
    assert response.headers["Clear-Site-Data"] == '"cache"'
    assert oidc_client.get("/api/auth/user").status_code == 401


def test_credential_routes_not_mounted_for_oidc(oidc_client):
    response = oidc_client.post("/api/auth/login", json={"email": "a@example.com", "password": "secret123"})
    assert response.status_code in (404, 405)


def test_state_token_round_trip(settings):
    state, nonce = oidc.create_state(settings)
    assert oidc.validate_state(settings, state, nonce)
    assert not oidc.validate_state(settings, state, "other-nonce")
    assert not oidc.validate_state(settings, state + "x", nonce)
    assert not oidc.validate_state(settings, None, nonce)
