"""FastAPI authentication dependencies for route protection."""

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from trainfit.auth.jwt import decode_token
from trainfit.database import get_db
from trainfit.models.user import User

# Strict bearer — raises 403 automatically if no token provided
_bearer_scheme = HTTPBearer()


async def authenticate_token(db: AsyncSession, token: str) -> User | None:
    """Resolve an access token to an active user, or None if it doesn't check out.

    Shared by the bearer dependency and the WebSocket handshake.
    """
    try:
        payload = decode_token(token)
    except JWTError:
        return None

    # Only accept access tokens, not refresh tokens
    if payload.get("type") != "access":
        return None

    sub: str | None = payload.get("sub")
    if sub is None:
        return None

    try:
        user_id = uuid.UUID(sub)
    except ValueError:
        return None

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(_bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the Bearer token, then return the authenticated user.

    Raises:
        HTTPException 401: If the token is invalid, expired, wrong type, or user not found.
    """
    user = await authenticate_token(db, credentials.credentials)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_current_active_user(
    user: User = Depends(get_current_user),
) -> User:
    """Return the current user only if their account is active.

    Raises:
        HTTPException 403: If the user account is inactive.
    """
    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )
    return user


async def get_current_trainer(
    user: User = Depends(get_current_active_user),
) -> User:
    """Return the current user only if they are a trainer.

    Raises:
        HTTPException 403: For client accounts.
    """
    if not user.is_trainer:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only trainers can perform this action",
        )
    return user
