from __future__ import annotations

import logging
import uuid
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status

from . import models
from .deps import get_settings, get_storage
from .services.sessions import read_session
from .settings import DEV_FALLBACK_USER_ID, Settings
from .storage import ConflictError, Storage

logger = logging.getLogger(__name__)

DEV_FALLBACK_EMAIL = "dev@buildtalk.local"


def get_current_user_optional(
    request: Request,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> models.User | None:
    """
    Resolve the caller from the session cookie.

    Used for endpoints that work differently for authenticated vs anonymous users.
    """
    session = read_session(storage, settings, request)
    if session is None:
        return None
    return storage.get_user(session.user_id)


def get_current_user(
    user: models.User | None = Depends(get_current_user_optional),
) -> models.User:
    """Get the current authenticated user, or 401."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return user


def ensure_dev_fallback_user(storage: Storage) -> models.User:
    """The fixed development identity used for anonymous posting."""
    user_id = uuid.UUID(DEV_FALLBACK_USER_ID)
    user = storage.get_user(user_id)
    if user is not None:
        return user
    try:
        user = storage.create_user(
            user_id=user_id,
            email=DEV_FALLBACK_EMAIL,
            first_name="Dev",
            last_name="User",
        )
        logger.info(f"Created development fallback user {user_id}")
        return user
    except ConflictError:
        return storage.get_user(user_id)


def get_author_or_fallback(
    user: models.User | None = Depends(get_current_user_optional),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> models.User:
    """
    Author for thread and comment creation.

    Anonymous callers are attributed to the development fallback user when it
    is enabled; otherwise they get 401 like any other mutation.
    """
    if user is not None:
        return user
    if settings.dev_fallback_user:
        return ensure_dev_fallback_user(storage)
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
    )


def require_author(author_id: UUID, current_user: models.User) -> None:
    """
    Require that the current user wrote the resource.

    Raises 403 Forbidden otherwise.
    """
    if author_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You don't have permission to modify this resource",
        )
