from __future__ import annotations

import os
from functools import lru_cache
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .settings import get_database_url


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


def _is_sqlite_memory(url: str) -> bool:
    if not url.startswith("sqlite"):
        return False
    return ":memory:" in url or url.split("://", 1)[1] in ("", "/")


def create_db_engine(url: str) -> Engine:
    kwargs: dict = {
        "future": True,
        "echo": os.getenv("LOG_LEVEL", "INFO").upper() == "DEBUG",
    }
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if _is_sqlite_memory(url):
            # Every connection must see the same in-memory database
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    engine = create_engine(url, **kwargs)

    if url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


@lru_cache(maxsize=None)
def get_engine(url: str | None = None) -> Engine:
    return create_db_engine(url or get_database_url())


@lru_cache(maxsize=None)
def get_sessionmaker(url: str | None = None) -> sessionmaker:
    return sessionmaker(bind=get_engine(url), autoflush=False, autocommit=False, future=True)


def get_session(url: str | None = None) -> Generator[Session, None, None]:
    session: Session = get_sessionmaker(url)()
    try:
        yield session
    finally:
        session.close()
