"""Email and password authentication."""

from __future__ import annotations

import logging

from passlib.context import CryptContext

from .. import models
from ..storage import ConflictError, Storage

logger = logging.getLogger(__name__)

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

DEMO_EMAIL = "test@example.com"
DEMO_PASSWORD = "password123"


class InvalidCredentialsError(Exception):
    """Email unknown or password wrong; callers must not tell which."""


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)


def register(
    storage: Storage,
    *,
    email: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
) -> models.User:
    """
    Create a user with a password.

    Raises:
        ConflictError: an account with this email already exists
    """
    if storage.get_user_by_email(email) is not None:
        raise ConflictError("An account with this email already exists")
    user = storage.create_user(
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
    )
    logger.info(f"Registered user {user.id}")
    return user


def ensure_demo_user(storage: Storage) -> models.User:
    """Development account usable with the well-known demo password."""
    user = storage.get_user_by_email(DEMO_EMAIL)
    if user is not None:
        return user
    try:
        return storage.create_user(
            email=DEMO_EMAIL,
            password_hash=hash_password(DEMO_PASSWORD),
            first_name="Test",
            last_name="User",
        )
    except ConflictError:
        return storage.get_user_by_email(DEMO_EMAIL)


def authenticate(storage: Storage, *, email: str, password: str, allow_demo: bool = False) -> models.User:
    """
    Return the user whose password matches.

    Raises:
        InvalidCredentialsError: unknown email, no password set, or wrong password
    """
    if allow_demo and email.lower() == DEMO_EMAIL and password == DEMO_PASSWORD:
        ensure_demo_user(storage)

    user = storage.get_user_by_email(email)
    if user is None or not user.password_hash:
        # Spend the same time as a real verification
        pwd_context.dummy_verify()
        logger.info("Login failed: unknown account")
        raise InvalidCredentialsError()

    if not verify_password(password, user.password_hash):
        logger.info(f"Login failed for user {user.id}")
        raise InvalidCredentialsError()
    return user
