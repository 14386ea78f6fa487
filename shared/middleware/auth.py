"""
shared/middleware/auth.py
FastAPI dependency functions for authentication and authorization.
Every request re-resolves the caller from its JWT and the users table;
nothing about the caller is cached between requests.
"""

import uuid
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.exceptions import Forbidden, Unauthenticated
from shared.models.models import User, UserRole
from services.auth.identity import verify_assertion

security = HTTPBearer(auto_error=False)


class TokenData:
    """Claims of a verified access token, passed explicitly to handlers."""

    def __init__(self, payload: dict):
        self.subject_id: uuid.UUID = uuid.UUID(payload["sub"])
        self.role: UserRole = UserRole(payload["role"])
        self.email: str = payload["email"]
        self.jti: str = payload["jti"]
        self.payload = payload


async def get_token_data(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    redis=Depends(get_redis),
) -> TokenData:
    """
    Extract and validate JWT from Authorization header.
    Checks deny-list in Redis to handle revoked tokens (logout).
    """
    if not credentials:
        raise Unauthenticated("Authentication required")

    payload = verify_assertion(credentials.credentials)
    try:
        token_data = TokenData(payload)
    except ValueError:
        raise Unauthenticated("Invalid or expired token")

    if await RedisCache(redis).is_token_revoked(token_data.jti):
        raise Unauthenticated("Token has been revoked")

    return token_data


async def get_current_user(
    token_data: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load full User object from database using JWT sub claim."""
    result = await db.execute(select(User).where(User.id == token_data.subject_id))
    user = result.scalar_one_or_none()

    if not user or user.is_deleted:
        raise Unauthenticated("User not found")
    if not user.is_active:
        raise Unauthenticated("User account is disabled")
    if user.role != token_data.role:
        # Role changed since the token was issued
        raise Unauthenticated("Token role claim is stale, please sign in again")
    return user


class RoleRequired:
    """Dependency factory for role-based access control."""

    def __init__(self, *roles: UserRole):
        self.roles = roles

    async def __call__(
        self,
        current_user: User = Depends(get_current_user),
    ) -> User:
        if current_user.role not in self.roles:
            raise Forbidden(f"Required role: {[r.value for r in self.roles]}")
        return current_user


# Convenience role dependencies
require_patient = RoleRequired(UserRole.PATIENT)
require_doctor = RoleRequired(UserRole.DOCTOR)
require_admin = RoleRequired(UserRole.ADMIN, UserRole.SUPERADMIN)
require_superadmin = RoleRequired(UserRole.SUPERADMIN)
