"""
Bearer token verification.

Tokens are issued elsewhere; this module only verifies them and extracts the
principal (the `sub` claim). A missing or invalid token is not an error here:
the request simply proceeds without a verified principal.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from jose import JWTError, jwt

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


def verify_bearer_token(
    authorization: Optional[str], settings: Optional[Settings] = None
) -> Optional[str]:
    """Return the verified principal id, or None when absent or unverifiable."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    settings = settings or get_settings()
    if not settings.auth_secret_key:
        return None
    token = authorization[len(BEARER_PREFIX) :].strip()
    options = {"verify_aud": settings.auth_audience is not None}
    try:
        payload = jwt.decode(
            token,
            settings.auth_secret_key,
            algorithms=settings.auth_algorithm_list,
            audience=settings.auth_audience,
            issuer=settings.auth_issuer,
            options=options,
        )
    except JWTError as e:
        logger.info("Bearer token rejected, continuing without principal: %s", e)
        return None
    subject = payload.get("sub")
    return str(subject) if subject else None


def get_verified_principal(request: Request) -> Optional[str]:
    """FastAPI dependency: verified principal id or None."""
    return verify_bearer_token(request.headers.get("authorization"))


def client_ip(request: Request) -> Optional[str]:
    """First X-Forwarded-For hop, else the socket peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client is not None:
        return request.client.host
    return None
