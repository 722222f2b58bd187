from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import jwt

from ..config import settings
from .security import hash_password as legacy_sha256

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

LEGACY_PREFIX = "sha256$"


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode(), bcrypt.gensalt()).decode()


def make_legacy_hash(plain: str, salt: str) -> str:
    """Encode a salted SHA-256 hash as `sha256$<salt>$<hex>`."""
    return f"{LEGACY_PREFIX}{salt}${legacy_sha256(plain, salt)}"


def is_legacy_hash(hashed: str) -> bool:
    return hashed.startswith(LEGACY_PREFIX)


def verify_password(plain: str, hashed: str) -> bool:
    if is_legacy_hash(hashed):
        try:
            _, salt, digest = hashed.split("$", 2)
        except ValueError:
            return False
        return secrets.compare_digest(legacy_sha256(plain, salt), digest)
    try:
        return bcrypt.checkpw(plain.encode(), hashed.encode())
    except (ValueError, TypeError):
        return False


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

ALGORITHM = "HS256"


def create_access_token(
    subject: str,
    role: str,
    session_id: str,
    expires_minutes: int | None = None,
) -> str:
    minutes = expires_minutes or settings.jwt_expire_minutes
    expire = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    payload = {
        "sub": subject,          # user id
        "role": role,
        "sid": session_id,
        "exp": expire,
        "iat": datetime.now(timezone.utc),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.jwt_secret, algorithms=[ALGORITHM])


def generate_uid() -> str:
    return uuid.uuid4().hex
