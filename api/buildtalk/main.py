from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from alembic import command
from alembic.config import Config
from dotenv import load_dotenv
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import schemas
from .db import get_session
from .middleware import RequestLoggingMiddleware, SecurityHeadersMiddleware
from .routers import (
    achievements,
    auth,
    bookmarks,
    comments,
    oidc,
    profiles,
    system,
    threads,
    users,
    votes,
)
from .seed import ensure_seed_data
from .settings import Settings, load_settings
from .storage import ConflictError, DatabaseStorage, MemoryStorage

load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)


def _alembic_config(database_url: str) -> Config:
    base_dir = Path(__file__).resolve().parent.parent
    cfg = Config(str(base_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(base_dir / "alembic"))
    # configparser interpolation: escape percent signs from URL-encoded passwords
    cfg.set_main_option("sqlalchemy.url", database_url.replace("%", "%%"))
    cfg.attributes["configure_logger"] = False
    return cfg


def run_migrations(database_url: str) -> None:
    logger.info("run_migrations: Upgrading database to head...")
    try:
        command.upgrade(_alembic_config(database_url), "head")
        logger.info("run_migrations: Completed successfully.")
    except Exception as e:
        logger.error(f"run_migrations: Error occurred: {e}", exc_info=True)
        raise


def run_startup_tasks(app: FastAPI) -> None:
    settings: Settings = app.state.settings
    logger.info(
        f"run_startup_tasks: storage={settings.storage_backend} "
        f"auth={settings.auth_strategy} counters={settings.counter_mode}"
    )
    if settings.storage_backend == "memory":
        ensure_seed_data(app.state.memory_storage, settings)
        return

    if settings.run_migrations:
        run_migrations(settings.database_url)
    sessions = get_session(settings.database_url)
    try:
        ensure_seed_data(DatabaseStorage(next(sessions)), settings)
    finally:
        sessions.close()
    logger.info("Startup tasks completed.")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    # Server won't start until these complete
    run_startup_tasks(app)
    logger.info("BuildTalk API server ready")
    yield
    logger.info("Shutting down application...")


def _field_name(loc: tuple) -> str:
    # Drop the "body"/"query"/"path" prefix; whole-body failures keep it
    parts = [str(part) for part in loc[1:]] if len(loc) > 1 else [str(part) for part in loc]
    return ".".join(parts) or "body"


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors: dict[str, list[str]] = {}
    for error in exc.errors():
        errors.setdefault(_field_name(tuple(error.get("loc", ()))), []).append(error.get("msg", "Invalid value"))
    problem = schemas.Problem(
        title="Validation failed",
        status=status.HTTP_400_BAD_REQUEST,
        detail="The request payload is invalid",
        errors=errors,
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder(problem),
        media_type="application/problem+json",
    )


async def conflict_exception_handler(request: Request, exc: ConflictError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc) or "Conflict"})


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or load_settings()

    app = FastAPI(
        title="BuildTalk API",
        version="1.0.0",
        description="Community forum for construction, furniture and services",
        lifespan=lifespan,
    )
    app.state.settings = settings
    # One in-process store per application; never module-global
    app.state.memory_storage = MemoryStorage() if settings.storage_backend == "memory" else None

    if "*" in settings.cors_origins:
        logger.warning(
            "CORS is configured to allow all origins. "
            "This is insecure for production. Set CORS_ORIGINS to specific domains."
        )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Origin", "X-Requested-With"],
        max_age=600,  # Cache preflight requests for 10 minutes
    )
    app.add_middleware(SecurityHeadersMiddleware, production=settings.is_production)
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ConflictError, conflict_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(system.router)
    app.include_router(threads.router)
    app.include_router(comments.router)
    app.include_router(votes.router)
    app.include_router(bookmarks.router)
    app.include_router(profiles.router)
    app.include_router(users.router)
    app.include_router(achievements.router)

    # Exactly one authentication strategy is mounted
    if settings.auth_strategy == "oidc":
        app.include_router(oidc.router)
    else:
        app.include_router(auth.router)
    app.include_router(auth.session_router)

    return app


app = create_app()
