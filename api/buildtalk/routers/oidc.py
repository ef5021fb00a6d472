"""Federated (OpenID Connect) authentication endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse

from ..deps import get_settings, get_storage
from ..services import oidc
from ..services.sessions import destroy_session, issue_session
from ..settings import Settings
from ..storage import ConflictError, Storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.get("/login")
def login(settings: Settings = Depends(get_settings)) -> RedirectResponse:
    """Redirect to the provider's authorization endpoint."""
    try:
        state, nonce = oidc.create_state(settings)
        url = oidc.authorization_url(settings, state)
    except oidc.OIDCError as e:
        logger.error(f"Cannot start OIDC login: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Login provider unavailable")

    redirect = RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)
    redirect.set_cookie(
        key=oidc.STATE_COOKIE_NAME,
        value=nonce,
        max_age=oidc.STATE_TTL_SECONDS,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
        path="/auth",
    )
    return redirect


@router.get("/callback")
def callback(
    request: Request,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    """
    Complete the authorization-code flow.

    The state is checked against the cookie set by /auth/login before the
    provider is contacted. On success the user is upserted by subject or
    email, a session is issued and the browser is sent to /.
    """
    if not oidc.validate_state(settings, state, request.cookies.get(oidc.STATE_COOKIE_NAME)):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid OAuth state")
    if error or not code:
        logger.warning(f"OIDC callback without code: {error}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error or "Missing authorization code")

    try:
        tokens = oidc.exchange_code(settings, code)
        claims = oidc.fetch_userinfo(settings, tokens["access_token"])
    except oidc.OIDCError as e:
        logger.warning(f"OIDC callback failed: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Failed to authenticate with provider")

    try:
        user = storage.upsert_user(**oidc.profile_from_claims(claims))
    except ConflictError:
        # Unverified email owned by another account, or an email linked to another subject
        logger.warning(f"OIDC subject {claims.get('sub')} collides with an existing account")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Account already linked to another identity")

    redirect = RedirectResponse(url="/", status_code=status.HTTP_302_FOUND)
    issue_session(storage, settings, redirect, user)
    redirect.delete_cookie(key=oidc.STATE_COOKIE_NAME, path="/auth")
    logger.info(f"User {user.id} signed in via OIDC")
    return redirect


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> dict:
    destroy_session(storage, settings, request, response)
    return {"success": True}
