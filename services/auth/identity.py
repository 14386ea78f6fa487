"""
services/auth/identity.py
Identity provider backed by the users table.

Every function takes the caller's session and only stages changes;
committing is up to the caller (usually through run_in_transaction),
so account, role claim and profile rows always land together.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from shared.exceptions import Unauthenticated, ValidationError
from shared.models.models import DoctorProfile, User, UserRole, UserStatus
from shared.utils.security import decode_access_token, hash_password, verify_and_upgrade

logger = logging.getLogger(__name__)


def verify_assertion(token: str) -> dict:
    """Verify a signed access token and return its claims."""
    try:
        return decode_access_token(token)
    except JWTError:
        raise Unauthenticated("Invalid or expired token")


def _check_password(password: str) -> None:
    if len(password) < settings.MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {settings.MIN_PASSWORD_LENGTH} characters long."
        )


async def lookup_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(
        select(User).where(User.email == email.lower(), User.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def create_user(
    db: AsyncSession,
    email: str,
    password: str,
    role: UserRole,
    full_name: Optional[str] = None,
) -> User:
    _check_password(password)
    email = email.lower()

    # Soft-deleted accounts keep their email reserved
    existing = await db.scalar(select(User.id).where(User.email == email))
    if existing:
        raise ValidationError("The email address is already in use by another account.")

    user = User(
        id=uuid.uuid4(),
        email=email,
        full_name=full_name,
        role=role,
        status=UserStatus.ACTIVE,
        password_hash=hash_password(password),
    )
    db.add(user)
    await db.flush()
    await set_role_claim(db, user, role)
    logger.info(f"Created {role.value} account {email}")
    return user


async def set_role_claim(db: AsyncSession, user: User, role: UserRole) -> None:
    """Set the role and make sure doctors always have a profile row."""
    user.role = role
    if role == UserRole.DOCTOR:
        profile_id = await db.scalar(
            select(DoctorProfile.id).where(DoctorProfile.user_id == user.id)
        )
        if profile_id is None:
            db.add(DoctorProfile(user_id=user.id))
    await db.flush()


async def set_disabled(db: AsyncSession, user: User, disabled: bool) -> None:
    user.status = UserStatus.INACTIVE if disabled else UserStatus.ACTIVE
    await db.flush()


async def update_credentials(
    db: AsyncSession,
    user: User,
    password: Optional[str] = None,
    full_name: Optional[str] = None,
) -> None:
    if password is not None:
        _check_password(password)
        user.password_hash = hash_password(password)
    if full_name is not None:
        user.full_name = full_name
    await db.flush()


async def delete_user(db: AsyncSession, user: User) -> None:
    """Soft delete: the account can no longer sign in. Owned records are kept."""
    user.status = UserStatus.INACTIVE
    user.deleted_at = datetime.now(timezone.utc)
    await db.flush()


async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    user = await lookup_by_email(db, email)
    if not user:
        raise Unauthenticated("Invalid email or password")
    valid, upgraded_hash = verify_and_upgrade(password, user.password_hash)
    if not valid:
        raise Unauthenticated("Invalid email or password")
    if not user.is_active:
        raise Unauthenticated("User account is disabled")
    if upgraded_hash:
        user.password_hash = upgraded_hash
        logger.info(f"Password hash upgraded for {user.email}")
    return user
