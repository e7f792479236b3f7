"""
HS256 JWT access tokens.

Accounts are issued by the account subsystem; this service only needs to
verify bearer tokens and, for tooling and tests, mint them with the shared
secret.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from redeem.config import get_settings


def create_access_token(user_id: int, expires_minutes: int | None = None) -> str:
    """
    Create a short-lived access token.

    Args:
        user_id: The user's database ID.
        expires_minutes: Override the configured lifetime.

    Returns:
        Encoded JWT string.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    lifetime = expires_minutes if expires_minutes is not None else settings.jwt_access_token_expire_minutes
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + timedelta(minutes=lifetime),
        "iss": settings.jwt_issuer,
        "type": "access",
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str, expected_type: str = "access") -> dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or wrong type.
    """
    settings = get_settings()
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.jwt_issuer,
        )
    except jwt.ExpiredSignatureError:
        msg = "Token has expired"
        raise jwt.InvalidTokenError(msg) from None

    if payload.get("type") != expected_type:
        msg = f"Expected token type '{expected_type}', got '{payload.get('type')}'"
        raise jwt.InvalidTokenError(msg)

    return payload
