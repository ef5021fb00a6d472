"""OpenID Connect authorization-code flow against a configured issuer."""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
import jwt

from ..settings import Settings

logger = logging.getLogger(__name__)

STATE_COOKIE_NAME = "oauth_state"
STATE_TTL_SECONDS = 600
STATE_ALGORITHM = "HS256"

_discovery_cache: dict[str, dict[str, Any]] = {}


class OIDCError(Exception):
    """The provider rejected the exchange or returned an unusable profile."""


def _require_config(settings: Settings) -> None:
    missing = [
        name
        for name, value in (
            ("OIDC_ISSUER_URL", settings.oidc_issuer_url),
            ("OIDC_CLIENT_ID", settings.oidc_client_id),
            ("SECRET_KEY", settings.secret_key),
        )
        if not value
    ]
    if missing:
        raise OIDCError(f"OIDC is not configured: missing {', '.join(missing)}")


def discover(issuer_url: str) -> dict[str, Any]:
    """Fetch (once per process) the provider's discovery document."""
    if issuer_url in _discovery_cache:
        return _discovery_cache[issuer_url]

    url = issuer_url.rstrip("/") + "/.well-known/openid-configuration"
    logger.info(f"Fetching OIDC discovery document from {url}")
    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(url)
            response.raise_for_status()
            document = response.json()
    except httpx.HTTPError as e:
        raise OIDCError(f"OIDC discovery failed: {e}") from e

    _discovery_cache[issuer_url] = document
    return document


# ============================================================================
# ANTI-FORGERY STATE
# ============================================================================


def create_state(settings: Settings) -> tuple[str, str]:
    """
    Return a signed state token and the nonce it carries.

    The nonce goes into an HttpOnly cookie; the callback only proceeds when
    the state echoed by the provider carries the same nonce.
    """
    _require_config(settings)
    nonce = secrets.token_urlsafe(16)
    now = datetime.now(timezone.utc)
    payload = {
        "nonce": nonce,
        "iat": now,
        "exp": now + timedelta(seconds=STATE_TTL_SECONDS),
        "type": "oidc_state",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=STATE_ALGORITHM), nonce


def validate_state(settings: Settings, state: str | None, cookie_nonce: str | None) -> bool:
    if not state or not cookie_nonce or not settings.secret_key:
        return False
    try:
        payload = jwt.decode(state, settings.secret_key, algorithms=[STATE_ALGORITHM])
    except jwt.InvalidTokenError as e:
        logger.warning(f"Rejected OIDC state: {e}")
        return False
    if payload.get("type") != "oidc_state":
        return False
    return secrets.compare_digest(str(payload.get("nonce", "")), cookie_nonce)


# ============================================================================
# PROVIDER CALLS
# ============================================================================


def authorization_url(settings: Settings, state: str) -> str:
    _require_config(settings)
    endpoint = discover(settings.oidc_issuer_url)["authorization_endpoint"]
    params = {
        "response_type": "code",
        "client_id": settings.oidc_client_id,
        "redirect_uri": settings.oidc_redirect_uri,
        "scope": "openid email profile",
        "state": state,
    }
    return f"{endpoint}?{urlencode(params)}"


def exchange_code(settings: Settings, code: str) -> dict[str, Any]:
    """Exchange the authorization code for tokens."""
    _require_config(settings)
    endpoint = discover(settings.oidc_issuer_url)["token_endpoint"]
    token_data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.oidc_redirect_uri,
        "client_id": settings.oidc_client_id,
    }
    if settings.oidc_client_secret:
        token_data["client_secret"] = settings.oidc_client_secret

    logger.info("Exchanging OIDC authorization code for tokens")
    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.post(endpoint, data=token_data, headers={"Accept": "application/json"})
            response.raise_for_status()
            tokens = response.json()
    except httpx.HTTPError as e:
        raise OIDCError(f"Token exchange failed: {e}") from e

    if "error" in tokens or "access_token" not in tokens:
        raise OIDCError(
            f"Token exchange failed: {tokens.get('error_description', tokens.get('error', 'no access token'))}"
        )
    return tokens


def fetch_userinfo(settings: Settings, access_token: str) -> dict[str, Any]:
    endpoint = discover(settings.oidc_issuer_url)["userinfo_endpoint"]
    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(endpoint, headers={"Authorization": f"Bearer {access_token}"})
            response.raise_for_status()
            claims = response.json()
    except httpx.HTTPError as e:
        raise OIDCError(f"Userinfo request failed: {e}") from e

    if not claims.get("sub"):
        raise OIDCError("Userinfo response has no subject")
    return claims


def profile_from_claims(claims: dict[str, Any]) -> dict[str, Any]:
    """Map standard OIDC claims onto user fields."""
    return {
        "oidc_subject": str(claims["sub"]),
        "email": claims.get("email"),
        # Some providers send the flag as a string
        "email_verified": claims.get("email_verified") in (True, "true"),
        "first_name": claims.get("given_name") or claims.get("first_name"),
        "last_name": claims.get("family_name") or claims.get("last_name"),
        "profile_image_url": claims.get("picture") or claims.get("profile_image_url"),
    }
