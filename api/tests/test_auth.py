"""Test credential authentication and sessions."""

from __future__ import annotations

from buildtalk.services.credentials import DEMO_EMAIL, DEMO_PASSWORD, hash_password, verify_password
from buildtalk.services.sessions import hash_token

from conftest import DEFAULT_PASSWORD, register

COOKIE = "buildtalk_session"


def test_password_hashing():
    hashed = hash_password("secret123")
    assert hashed != "secret123"
    assert verify_password("secret123", hashed)
    assert not verify_password("wrong", hashed)


def test_register_signs_in(client):
    user = register(client, "New@Example.com", first_name="Иван", last_name="Петров")
    assert user["email"] == "new@example.com"
    assert user["first_name"] == "Иван"

    set_cookie = client.cookies.get(COOKIE)
    assert set_cookie

    response = client.get("/api/auth/user")
    assert response.status_code == 200
    assert response.json()["id"] == user["id"]
    assert response.json()["email"] == "new@example.com"


def test_register_cookie_is_http_only(client):
    response = client.post("/api/auth/register", json={"email": "a@example.com", "password": DEFAULT_PASSWORD})
    assert response.status_code == 201
    set_cookie = response.headers["set-cookie"]
    assert f"{COOKIE}=" in set_cookie
    assert "HttpOnly" in set_cookie


def test_duplicate_registration_conflicts(client, storage):
    register(client, "dup@example.com")
    response = client.post("/api/auth/register", json={"email": "DUP@example.com", "password": "another1"})
    assert response.status_code == 409

    assert storage.get_user_by_email("dup@example.com") is not None


def test_register_validation(client):
    response = client.post("/api/auth/register", json={"email": "not-an-email", "password": "short"})
    assert response.status_code == 400
    errors = response.json()["errors"]
    assert "email" in errors
    assert "password" in errors

    response = client.post(
        "/api/auth/register", json={"email": "a@example.com", "password": DEFAULT_PASSWORD, "karma": 1000}
    )
    assert response.status_code == 400
    assert "karma" in response.json()["errors"]


def test_login(client, other_client):
    register(client, "u@example.com")

    response = other_client.post("/api/auth/login", json={"email": "u@example.com", "password": DEFAULT_PASSWORD})
    assert response.status_code == 200
    assert response.json()["success"] is True
    assert other_client.get("/api/auth/user").json()["email"] == "u@example.com"


def test_login_failures_do_not_reveal_account_existence(client, other_client):
    register(client, "u@example.com")

    wrong_password = other_client.post("/api/auth/login", json={"email": "u@example.com", "password": "nope"})
    unknown_email = other_client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope"})

    assert wrong_password.status_code == unknown_email.status_code == 401
    assert wrong_password.json() == unknown_email.json() == {"detail": "Invalid credentials"}
    assert other_client.get("/api/auth/user").status_code == 401


def test_logout_destroys_server_session(client, storage):
    register(client, "u@example.com")
    token = client.cookies.get(COOKIE)
    assert storage.get_session(hash_token(token)) is not None

    response = client.post("/api/auth/logout")
    assert response.status_code == 200
    assert response.headers["Clear-Site-Data"] == '"cache"'
    assert response.headers["Cache-Control"] == "no-store"
    assert storage.get_session(hash_token(token)) is None

    # Replaying the old cookie does not bring the identity back
    client.cookies.set(COOKIE, token)
    assert client.get("/api/auth/user").status_code == 401
    assert client.get("/api/profile").status_code == 401


def test_logout_without_session_is_harmless(client):
    assert client.post("/api/auth/logout").status_code == 200


def test_unknown_cookie_is_anonymous(client):
    client.cookies.set(COOKIE, "forged-token")
    assert client.get("/api/auth/user").status_code == 401
    assert client.get("/api/threads").status_code == 200


def test_demo_login_only_in_development(make_app, open_client, client):
    credentials = {"email": DEMO_EMAIL, "password": DEMO_PASSWORD}
    assert client.post("/api/auth/login", json=credentials).status_code == 401

    dev_client = open_client(make_app(dev_fallback_user=True))
    response = dev_client.post("/api/auth/login", json=credentials)
    assert response.status_code == 200
    assert response.json()["user"]["email"] == DEMO_EMAIL


def test_oidc_routes_not_mounted_for_credentials(client):
    assert client.get("/auth/login", follow_redirects=False).status_code == 404
