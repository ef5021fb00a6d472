"""Server-side sessions keyed by the hash of an opaque cookie token."""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import timedelta

from fastapi import Request, Response

from .. import models
from ..models import utcnow
from ..settings import Settings
from ..storage import Storage

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def identity_projection(user: models.User) -> dict:
    """Minimal identity kept in the session: id, email, names, avatar."""
    return {
        "id": str(user.id),
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "profile_image_url": user.profile_image_url,
    }


def issue_session(storage: Storage, settings: Settings, response: Response, user: models.User) -> str:
    """
    Create a session for the user and attach its cookie to the response.

    Only the SHA-256 of the token is stored; the raw token lives in the cookie.
    """
    token = secrets.token_urlsafe(32)
    storage.create_session(
        user_id=user.id,
        token_hash=hash_token(token),
        identity=identity_projection(user),
        expires_at=utcnow() + timedelta(hours=settings.session_ttl_hours),
    )
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/",
    )
    logger.info(f"Session issued for user {user.id}")
    return token


def read_session(storage: Storage, settings: Settings, request: Request) -> models.UserSession | None:
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    return storage.get_session(hash_token(token))


def destroy_session(storage: Storage, settings: Settings, request: Request, response: Response) -> bool:
    """
    Delete the server-side session and clear the cookie.

    The response also tells the browser to drop cached responses so data
    fetched under this identity is not served after logout.
    """
    token = request.cookies.get(settings.session_cookie_name)
    destroyed = storage.delete_session(hash_token(token)) if token else False
    response.delete_cookie(key=settings.session_cookie_name, path="/")
    response.headers["Clear-Site-Data"] = '"cache"'
    response.headers["Cache-Control"] = "no-store"
    if destroyed:
        logger.info("Session destroyed")
    return destroyed
