# fleetsync/auth.py
"""Caller identity resolution for the fleet query tools.

The tenant is always taken from the verified identity token, never from tool
arguments.
"""
from __future__ import annotations

from typing import Any, Optional

import jwt

from .config import Settings, get_settings
from .exceptions import IdentityResolutionError
from .utils import logger

TENANT_CLAIMS = ("tenant_id", "org_id")


def extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def decode_identity(token: str, settings: Optional[Settings] = None) -> dict[str, Any]:
    settings = settings or get_settings()
    try:
        return jwt.decode(
            token,
            settings.require_jwt_secret(),
            algorithms=[settings.jwt_algorithm],
            options={"verify_aud": False},
        )
    except jwt.ExpiredSignatureError as e:
        raise IdentityResolutionError("Identity token expired", status_code=401) from e
    except jwt.InvalidTokenError as e:
        logger.warning("Rejected identity token: %s", e)
        raise IdentityResolutionError("Invalid identity token", status_code=401) from e


def resolve_tenant_id(token: Optional[str], settings: Optional[Settings] = None) -> str:
    """Return the tenant the token's holder belongs to."""
    if not token:
        raise IdentityResolutionError("Missing identity token", status_code=401)
    claims = decode_identity(token, settings)
    for claim in TENANT_CLAIMS:
        value = claims.get(claim)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
            return str(value).strip()
    raise IdentityResolutionError("No active organization for this user.", status_code=400)
