from __future__ import annotations

import os
from contextlib import ExitStack
from dataclasses import replace
from typing import Callable, Generator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

# The module-level app in buildtalk.main is built at import time
os.environ.setdefault("BUILDTALK_STORAGE", "memory")
os.environ.setdefault("ENVIRONMENT", "test")

from buildtalk.main import create_app  # noqa: E402
from buildtalk.settings import Settings  # noqa: E402
from buildtalk.storage import DatabaseStorage, MemoryStorage, Storage  # noqa: E402

DEFAULT_PASSWORD = "secret123"


@pytest.fixture(params=["memory", "database"])
def settings(request, tmp_path) -> Settings:
    """Application settings; every HTTP test runs against both storage backends."""
    return Settings(
        environment="test",
        storage_backend=request.param,
        database_url=f"sqlite:///{tmp_path / 'buildtalk.db'}",
        auth_strategy="credentials",
        dev_fallback_user=False,
        counter_mode="direct",
        run_migrations=True,
        secret_key="test-secret-key-that-is-long-enough-for-hs256",
        oidc_issuer_url="https://issuer.example",
        oidc_client_id="buildtalk",
        oidc_client_secret="client-secret",
        oidc_redirect_uri="http://testserver/auth/callback",
    )


@pytest.fixture()
def make_app(settings: Settings) -> Callable[..., FastAPI]:
    def factory(**overrides) -> FastAPI:
        return create_app(replace(settings, **overrides))

    return factory


@pytest.fixture()
def open_client() -> Generator[Callable[[FastAPI], TestClient], None, None]:
    """Open TestClients (running the lifespan) that are closed after the test."""
    with ExitStack() as stack:
        yield lambda app: stack.enter_context(TestClient(app))


@pytest.fixture()
def app(make_app) -> FastAPI:
    return make_app()


@pytest.fixture()
def client(app: FastAPI, open_client) -> TestClient:
    return open_client(app)


@pytest.fixture()
def other_client(app: FastAPI, client: TestClient, open_client) -> TestClient:
    """Second browser against the same application, with its own cookies."""
    return open_client(app)


@pytest.fixture()
def storage(settings: Settings, client: TestClient) -> Generator[Storage, None, None]:
    """Direct access to the storage behind ``client``'s application."""
    if settings.storage_backend == "memory":
        memory: MemoryStorage = client.app.state.memory_storage
        yield memory
        return

    from buildtalk.db import get_session

    sessions = get_session(settings.database_url)
    try:
        yield DatabaseStorage(next(sessions))
    finally:
        sessions.close()


def register(client: TestClient, email: str, password: str = DEFAULT_PASSWORD, **names) -> dict:
    """Register and sign in; returns the session user."""
    response = client.post("/api/auth/register", json={"email": email, "password": password, **names})
    assert response.status_code == 201, response.text
    return response.json()["user"]


def create_thread(client: TestClient, **fields) -> dict:
    payload = {"title": "Стяжка пола", "content": "Какой состав выбрать?", "category": "construction"}
    payload.update(fields)
    response = client.post("/api/threads", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def create_comment(client: TestClient, thread_id: str, content: str = "Берите М150") -> dict:
    response = client.post(f"/api/threads/{thread_id}/comments", json={"content": content})
    assert response.status_code == 201, response.text
    return response.json()
