"""
services/auth/router.py
Local email/password authentication.
Implements: Login → JWT issue → Logout (deny-list) → Me
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from services.auth import identity
from shared.middleware.auth import TokenData, get_current_user, get_token_data
from shared.models.models import User
from shared.schemas.schemas import LoginRequest, MessageResponse, UserResponse
from shared.utils.security import issue_access_token, remaining_lifetime

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Authentication"])


@router.post("/login", summary="Sign in with email and password")
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Returns a short-lived access token carrying the caller's role claim."""
    user = await identity.authenticate(db, body.email, body.password)
    user.last_login_at = datetime.now(timezone.utc)
    await db.flush()

    issued = issue_access_token(user.id, user.role.value, user.email)
    logger.info(f"User signed in: {user.email}")

    return {
        "message": "Login successful.",
        "success": True,
        "access_token": issued.token,
        "token_type": "bearer",
        "expires_in": issued.expires_in,
        "user": UserResponse.model_validate(user).model_dump(),
    }


@router.post("/logout", response_model=MessageResponse, summary="Logout user")
async def logout(
    token_data: TokenData = Depends(get_token_data),
    current_user: User = Depends(get_current_user),
    redis=Depends(get_redis),
):
    """Add the current access token to the Redis deny-list until it expires."""
    ttl = remaining_lifetime(token_data.payload)
    if ttl > 0:
        await RedisCache(redis).revoke_token(token_data.jti, ttl)
    logger.info(f"User signed out: {current_user.email}")
    return MessageResponse(message="Logged out successfully")


@router.get("/me", summary="Get current user")
async def get_me(current_user: User = Depends(get_current_user)):
    """Returns the authenticated user's profile."""
    return {
        "message": "Profile retrieved successfully.",
        "success": True,
        "user": UserResponse.model_validate(current_user).model_dump(),
    }
