"""
Authentication Security Middleware
FastAPI dependencies that turn a bearer credential into the acting User
"""

import logging
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import User
from utils.credential_security import CredentialSecurity, TokenError
from utils.exception_handler import AuthError, ForbiddenError

logger = logging.getLogger(__name__)


def extract_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def _load_active_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if user is None:
        raise AuthError("Invalid token - user not found")
    if not user.is_active:
        raise AuthError("Account disabled")
    if user.is_blocked:
        raise AuthError("Account blocked")
    return user


async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> User:
    """
    Require a valid bearer token.

    Missing token, unknown user or disabled/blocked account -> 401.
    Tampered or expired token -> 403.
    """
    token = extract_bearer_token(request)
    if not token:
        raise AuthError("Access token required")

    try:
        claims = CredentialSecurity.verify_token(token)
    except TokenError as e:
        logger.warning(f"🔒 Rejected bearer token on {request.url.path}: {e.message}")
        raise ForbiddenError("Invalid or expired token")

    user = await _load_active_user(session, claims.user_id)
    request.state.user = user
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        logger.warning(f"🔒 User {user.id} denied admin-only access")
        raise ForbiddenError("Admin privileges required")
    return user


def ensure_self_or_admin(user: User, target_user_id: int):
    """Raise unless the acting user is the target or an admin"""
    if user.id != target_user_id and not user.is_admin:
        raise ForbiddenError("Not allowed to access another user's data")
