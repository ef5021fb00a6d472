"""System endpoints (health, config)."""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from .. import schemas
from ..deps import get_settings, get_storage
from ..settings import Settings
from ..storage import Storage

router = APIRouter(prefix="", tags=["System"])
logger = logging.getLogger(__name__)

# Global startup time for uptime calculation
_STARTUP_TIME = time.time()


@router.get("/health", response_model=schemas.HealthResponse)
def get_health() -> schemas.HealthResponse:
    """Liveness check."""
    uptime_s = time.time() - _STARTUP_TIME
    return schemas.HealthResponse(status="ok", uptime_s=uptime_s)


@router.get("/health/storage")
def check_storage_health(
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> dict:
    """
    Storage readiness check.

    Returns 200 if the configured backend answers a read, 503 if not.
    """
    try:
        storage.get_achievements()
    except SQLAlchemyError as e:
        logger.error(f"Storage health check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Storage unavailable",
        )
    return {"status": "ok", "backend": settings.storage_backend}


@router.get("/api/config", response_model=schemas.Config)
def get_public_config(settings: Settings = Depends(get_settings)) -> schemas.Config:
    """Public configuration for the client."""
    return schemas.Config(auth_strategy=settings.auth_strategy, counter_mode=settings.counter_mode)
