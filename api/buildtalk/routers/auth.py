"""Credential authentication endpoints and the shared session identity lookup."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from .. import schemas
from ..deps import get_settings, get_storage
from ..services import credentials
from ..services.sessions import destroy_session, issue_session, read_session
from ..settings import Settings
from ..storage import Storage

logger = logging.getLogger(__name__)

# Mounted only when the credential strategy is active
router = APIRouter(prefix="/api/auth", tags=["Auth"])

# Mounted for every strategy
session_router = APIRouter(prefix="/api/auth", tags=["Auth"])


@router.post("/register", response_model=schemas.AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    payload: schemas.RegisterRequest,
    response: Response,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> schemas.AuthResponse:
    """
    Register a new account with email and password and sign it in.

    Returns 409 if the email is already registered.
    """
    user = credentials.register(
        storage,
        email=str(payload.email),
        password=payload.password,
        first_name=payload.first_name,
        last_name=payload.last_name,
    )
    issue_session(storage, settings, response, user)
    return schemas.AuthResponse(user=schemas.SessionUser.model_validate(user, from_attributes=True))


@router.post("/login", response_model=schemas.AuthResponse)
def login(
    payload: schemas.LoginRequest,
    response: Response,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> schemas.AuthResponse:
    """Sign in with email and password."""
    try:
        user = credentials.authenticate(
            storage,
            email=payload.email,
            password=payload.password,
            allow_demo=settings.dev_fallback_user,
        )
    except credentials.InvalidCredentialsError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    issue_session(storage, settings, response, user)
    logger.info(f"User {user.id} signed in")
    return schemas.AuthResponse(user=schemas.SessionUser.model_validate(user, from_attributes=True))


@router.post("/logout")
def logout(
    request: Request,
    response: Response,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> dict:
    """Destroy the session. Safe to call without one."""
    destroy_session(storage, settings, request, response)
    return {"success": True}


@session_router.get("/user", response_model=schemas.SessionUser)
def get_session_user(
    request: Request,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> schemas.SessionUser:
    """Identity stored in the caller's session."""
    session = read_session(storage, settings, request)
    if session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return schemas.SessionUser.model_validate(session.identity)
