"""Centralized environment-driven settings.

Keep this module lightweight: stdlib only, no app imports, to avoid circular deps.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import quote_plus

STORAGE_BACKENDS = ("database", "memory")
AUTH_STRATEGIES = ("credentials", "oidc")
COUNTER_MODES = ("direct", "ledger")

# Fixed identity used for anonymous thread/comment creation in development
DEV_FALLBACK_USER_ID = "550e8400-e29b-41d4-a716-446655440001"


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _choice_env(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = (os.getenv(name) or default).strip().lower()
    if raw not in choices:
        raise RuntimeError(f"{name} must be one of {', '.join(choices)} (got {raw!r})")
    return raw


def get_database_url() -> str:
    """Get the database URL, either explicit or built from DB_* components."""
    url = os.getenv("BUILDTALK_DATABASE_URL") or os.getenv("DATABASE_URL")
    if url:
        return url

    db_user = os.getenv("DB_USER")
    db_pass = os.getenv("DB_PASSWORD")
    db_name = os.getenv("DB_DATABASE")
    db_host = os.getenv("DB_HOST", "db")
    db_port = os.getenv("DB_PORT", "5432")

    if db_user and db_pass and db_name:
        # URL-encode the password in case it contains special characters
        encoded_pass = quote_plus(db_pass)
        return f"postgresql+psycopg://{db_user}:{encoded_pass}@{db_host}:{db_port}/{db_name}"

    return "sqlite:///./buildtalk.db"


@dataclass(frozen=True)
class Settings:
    environment: str = "development"
    storage_backend: str = "database"
    database_url: str = "sqlite:///./buildtalk.db"
    auth_strategy: str = "credentials"
    dev_fallback_user: bool = True
    counter_mode: str = "direct"
    session_ttl_hours: int = 168
    session_cookie_name: str = "buildtalk_session"
    run_migrations: bool = True
    secret_key: str | None = None
    oidc_issuer_url: str | None = None
    oidc_client_id: str | None = None
    oidc_client_secret: str | None = None
    oidc_redirect_uri: str = "http://localhost:5000/auth/callback"
    cors_origins: tuple[str, ...] = ("http://localhost:5000", "http://localhost:3000")

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def load_settings() -> Settings:
    """Build settings from the process environment."""
    environment = (os.getenv("ENVIRONMENT") or "development").strip().lower()
    cors_origins_str = os.getenv("CORS_ORIGINS", "http://localhost:5000,http://localhost:3000")

    return Settings(
        environment=environment,
        storage_backend=_choice_env("BUILDTALK_STORAGE", "database", STORAGE_BACKENDS),
        database_url=get_database_url(),
        auth_strategy=_choice_env("BUILDTALK_AUTH_STRATEGY", "credentials", AUTH_STRATEGIES),
        # The fallback identity is never available outside development
        dev_fallback_user=environment == "development"
        and _bool_env("BUILDTALK_DEV_FALLBACK_USER", True),
        counter_mode=_choice_env("BUILDTALK_COUNTER_MODE", "direct", COUNTER_MODES),
        session_ttl_hours=_int_env("BUILDTALK_SESSION_TTL_HOURS", 168),
        session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "buildtalk_session"),
        run_migrations=_bool_env("BUILDTALK_RUN_MIGRATIONS", True),
        secret_key=os.getenv("SECRET_KEY") or None,
        oidc_issuer_url=os.getenv("OIDC_ISSUER_URL") or None,
        oidc_client_id=os.getenv("OIDC_CLIENT_ID") or None,
        oidc_client_secret=os.getenv("OIDC_CLIENT_SECRET") or None,
        oidc_redirect_uri=os.getenv("OIDC_REDIRECT_URI", "http://localhost:5000/auth/callback"),
        cors_origins=tuple(origin.strip() for origin in cors_origins_str.split(",") if origin.strip()),
    )
