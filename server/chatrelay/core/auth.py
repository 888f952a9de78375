from __future__ import annotations
import logging
from typing import Any, Dict, Optional

import jwt  # PyJWT
from fastapi import Request

from chatrelay.config import Settings, get_settings
from chatrelay.core.errors import AuthRequired

logger = logging.getLogger(__name__)

GUEST_HEADER = "x-guest-id"


def _settings(request: Request) -> Settings:
    # create_app(settings=...) keeps its own settings on app.state
    return getattr(request.app.state, "settings", None) or get_settings()


def bearer_claims(request: Request, secret: Optional[str]) -> Optional[Dict[str, Any]]:
    """
    Claims of the HS256 JWT in `Authorization: Bearer <token>`.
    None when no secret is configured, the header is missing, or the token fails verification.
    """
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if not secret or scheme.lower() != "bearer" or not token.strip():
        return None
    try:
        claims = jwt.decode(token.strip(), secret, algorithms=["HS256"])
    except jwt.InvalidTokenError as e:
        logger.info("rejected bearer token: %s", e)
        return None
    return claims if isinstance(claims, dict) else None


def get_effective_owner(request: Request) -> Optional[str]:
    """Opaque owner key for this request.

    A verified token's `sub` (or `email`) wins; otherwise the per-browser
    guest id header set by the front end; otherwise nobody.
    """
    claims = bearer_claims(request, _settings(request).nextauth_secret)
    if claims:
        subject = claims.get("sub") or claims.get("email")
        if subject:
            return str(subject)
    guest = request.headers.get(GUEST_HEADER)
    return str(guest) if guest else None


def require_owner(request: Request) -> str:
    """FastAPI dependency: the owner key, or 401."""
    owner = get_effective_owner(request)
    if not owner:
        raise AuthRequired()
    return owner
