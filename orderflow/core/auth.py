"""
Caller identity for callable endpoints.

Validates identity-provider JWTs and extracts the caller from the request.
Falls back to X-User-Id / X-User-Role headers outside production (tests).
"""
import logging
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Request

from orderflow.core.config import Settings, settings as default_settings
from orderflow.core.database import Database
from orderflow.core.errors import UnauthenticatedError
from orderflow.features.users.service import get_or_create_user

logger = logging.getLogger("orderflow.auth")


@dataclass(frozen=True)
class Caller:
    """Authenticated caller of a callable endpoint."""
    uid: str
    is_admin: bool = False


def verify_token(token: str, secret: Optional[str]) -> dict:
    """
    Verify an HS256 identity token and return its claims.

    Raises:
        UnauthenticatedError: Missing secret, expired or invalid token
    """
    if not secret:
        raise UnauthenticatedError("Token verification is not configured")
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            options={"verify_signature": True, "verify_exp": True},
        )
    except jwt.ExpiredSignatureError:
        raise UnauthenticatedError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.debug(f"Invalid token: {e}")
        raise UnauthenticatedError("Invalid token")

    if not claims.get("sub"):
        raise UnauthenticatedError("No 'sub' claim in token")
    return claims


def _provision(db: Optional[Database], uid: str, claims: Optional[dict] = None) -> bool:
    """Create the user on first authentication; True when the stored role is admin."""
    if db is None:
        return False
    claims = claims or {}
    user = get_or_create_user(db, uid, email=claims.get("email"), display_name=claims.get("name"))
    return bool(user) and user["role"] == "admin"


def resolve_caller(request: Request, cfg: Optional[Settings] = None) -> Optional[Caller]:
    """
    Resolve the caller from request headers.

    Priority:
    1. Bearer JWT from Authorization header
    2. X-User-Id header (non-production fallback)

    Returns None when the request carries no identity at all.
    """
    cfg = cfg or getattr(request.app.state, "settings", None) or default_settings
    db: Optional[Database] = getattr(request.app.state, "db", None)

    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        claims = verify_token(auth_header[7:], cfg.AUTH_JWT_SECRET)
        uid = claims["sub"]
        is_admin = _provision(db, uid, claims) or claims.get("admin") is True
        return Caller(uid=uid, is_admin=is_admin)

    if cfg.AUTH_HEADER_FALLBACK and cfg.ENV.lower() != "production":
        uid = request.headers.get("X-User-Id")
        if uid:
            role = (request.headers.get("X-User-Role") or "").lower()
            return Caller(uid=uid, is_admin=_provision(db, uid) or role == "admin")

    return None


def get_optional_caller(request: Request) -> Optional[Caller]:
    """FastAPI dependency for endpoints that accept anonymous callers."""
    return resolve_caller(request)


def get_caller(request: Request) -> Caller:
    """FastAPI dependency that requires an authenticated caller."""
    caller = resolve_caller(request)
    if caller is None:
        raise UnauthenticatedError("You must be logged in to perform this action.")
    return caller
