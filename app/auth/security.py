"""
security.py — Login throttling, session timeout and one-time codes
=================================================================
Pure helpers over login attempts and admin sessions. They take plain
objects (ORM rows or anything with the same attribute names) so the
lockout and timeout rules can be checked without a database.

An attempt counts towards lockout when it came from the same IP, failed,
and is younger than the lockout duration. Reaching the maximum number of
such attempts both locks the IP out and asks for a CAPTCHA.
"""
from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Protocol

from ..config import settings


class AttemptLike(Protocol):
    ip: str
    success: bool
    timestamp: datetime


class SessionLike(Protocol):
    is_active: bool
    last_activity: datetime


def max_login_attempts() -> int:
    return settings.max_login_attempts


def lockout_duration() -> timedelta:
    return timedelta(minutes=settings.lockout_minutes)


def session_timeout() -> timedelta:
    return timedelta(minutes=settings.session_timeout_minutes)


def otp_expiry() -> timedelta:
    return timedelta(minutes=settings.otp_expiry_minutes)


def _as_utc(ts: datetime) -> datetime:
    """Stored timestamps are naive UTC; treat them as such."""
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _now(now: Optional[datetime]) -> datetime:
    return _as_utc(now) if now is not None else datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Random identifiers
# ---------------------------------------------------------------------------

def generate_session_id() -> str:
    return secrets.token_hex(32)


def generate_otp() -> str:
    """Six-digit numeric code in [100000, 999999]."""
    return str(100000 + secrets.randbelow(900000))


def generate_salt() -> str:
    return secrets.token_hex(16)


def hash_password(password: str, salt: str) -> str:
    """Legacy salted SHA-256. New accounts use bcrypt (see auth.core)."""
    return hashlib.sha256((password + salt).encode("utf-8")).hexdigest()


def hash_code(code: str) -> str:
    """Digest for short-lived codes (reset OTPs, backup codes)."""
    return hashlib.sha256(code.strip().upper().encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

def is_session_valid(session: SessionLike, now: Optional[datetime] = None) -> bool:
    expiry = _as_utc(session.last_activity) + session_timeout()
    return bool(session.is_active) and expiry > _now(now)


# ---------------------------------------------------------------------------
# Lockout / CAPTCHA
# ---------------------------------------------------------------------------

def recent_failures(
    attempts: Iterable[AttemptLike],
    ip: str,
    now: Optional[datetime] = None,
) -> list:
    """Failed attempts from *ip* still inside the lockout window."""
    current = _now(now)
    window = lockout_duration()
    return [
        a for a in attempts
        if a.ip == ip
        and not a.success
        and _as_utc(a.timestamp) + window > current
    ]


def should_show_captcha(
    attempts: Iterable[AttemptLike],
    ip: str,
    now: Optional[datetime] = None,
) -> bool:
    return len(recent_failures(attempts, ip, now)) >= max_login_attempts()


def is_account_locked(
    attempts: Iterable[AttemptLike],
    ip: str,
    now: Optional[datetime] = None,
) -> bool:
    return len(recent_failures(attempts, ip, now)) >= max_login_attempts()


def lockout_remaining_seconds(
    attempts: Iterable[AttemptLike],
    ip: str,
    now: Optional[datetime] = None,
) -> int:
    """Seconds until the lockout on *ip* lifts, 0 when not locked."""
    current = _now(now)
    failures = recent_failures(attempts, ip, current)
    limit = max_login_attempts()
    if len(failures) < limit:
        return 0
    # Lock lifts once enough of the oldest failures have aged out of the window.
    stamps = sorted(_as_utc(a.timestamp) for a in failures)
    release = stamps[len(stamps) - limit] + lockout_duration()
    return max(0, int((release - current).total_seconds()) + 1)
