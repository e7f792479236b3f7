"""Bearer-token resolution for the client API."""

from __future__ import annotations

import jwt
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from redeem.auth.jwt import verify_token
from redeem.database import get_session
from redeem.db.models import User

# Missing credentials are answered here with a proper 401 challenge
_bearer = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=401, detail=detail, headers={"WWW-Authenticate": "Bearer"})


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the access token to an active user (401 unauthenticated, 403 banned)."""
    if credentials is None:
        raise _unauthorized("Not authenticated")
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(str(e)) from e

    user = await db.get(User, int(payload["sub"]))
    if user is None:
        raise _unauthorized("User not found")
    if user.is_banned:
        raise HTTPException(status_code=403, detail="Account is banned")
    return user
