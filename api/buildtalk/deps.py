from __future__ import annotations

from typing import Generator

from fastapi import Request

from .db import get_session
from .settings import Settings
from .storage import DatabaseStorage, Storage


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_storage(request: Request) -> Generator[Storage, None, None]:
    """
    Persistence gateway for the current request.

    The memory backend is a single instance created at startup; the database
    backend wraps a fresh session per request.
    """
    settings: Settings = request.app.state.settings
    if settings.storage_backend == "memory":
        yield request.app.state.memory_storage
        return

    sessions = get_session(settings.database_url)
    session = next(sessions)
    try:
        yield DatabaseStorage(session)
    finally:
        sessions.close()
