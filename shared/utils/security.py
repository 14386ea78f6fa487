"""
shared/utils/security.py
Access tokens and password hashes.

Tokens are HS256 JWTs carrying the caller's id, role claim and email plus a
jti for the logout deny-list. There are no refresh tokens: a client signs
in again once `expires_in` runs out.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import NamedTuple, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config.settings import settings

REQUIRED_CLAIMS = ("sub", "role", "email", "jti")

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)


class IssuedToken(NamedTuple):
    token: str
    jti: str
    expires_in: int


# ── JWT ───────────────────────────────────────────────────────

def issue_access_token(subject_id, role: str, email: str) -> IssuedToken:
    lifetime = timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    now = datetime.now(timezone.utc)
    jti = uuid.uuid4().hex
    claims = {
        "sub": str(subject_id),
        "role": role,
        "email": email,
        "jti": jti,
        "type": "access",
        "iat": now,
        "exp": now + lifetime,
    }
    token = jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return IssuedToken(token, jti, int(lifetime.total_seconds()))


def decode_access_token(token: str) -> dict:
    """
    Verify signature and expiry, then insist on an access-type token with
    every identity claim present. Raises JWTError otherwise.
    """
    claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    if claims.get("type") != "access":
        raise JWTError("Invalid token type")
    missing = [name for name in REQUIRED_CLAIMS if not claims.get(name)]
    if missing:
        raise JWTError(f"Missing claims: {', '.join(missing)}")
    return claims


def remaining_lifetime(claims: dict) -> int:
    """Whole seconds left before `exp`, never negative."""
    return max(0, int(claims.get("exp", 0) - datetime.now(timezone.utc).timestamp()))


# ── Password ──────────────────────────────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_and_upgrade(password: str, stored_hash: str) -> tuple[bool, Optional[str]]:
    """
    Returns (valid, new_hash). new_hash is set when the stored hash was made
    with other bcrypt rounds than BCRYPT_ROUNDS and should replace it.
    """
    return pwd_context.verify_and_update(password, stored_hash)
