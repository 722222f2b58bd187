from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select

from ..auth.security import lockout_duration
from ..database import db_session, utcnow
from ..models import LoginAttempt

logger = logging.getLogger("ecosystem.telemetry")
analytics_logger = logging.getLogger("ecosystem.analytics")


def record_login_attempt(
    ip: str,
    success: bool,
    email: Optional[str] = None,
    user_id: Optional[int] = None,
    user_agent: Optional[str] = None,
) -> None:
    """
    Persist a login attempt.

    Failed attempts feed the per-IP lockout and CAPTCHA checks; successful
    ones show up in the user's login history.
    """
    with db_session() as session:
        session.add(LoginAttempt(
            ip=ip,
            email=email,
            user_id=user_id,
            user_agent=(user_agent or "")[:512],
            success=success,
        ))
    logger.info(
        "Login %s",
        "succeeded" if success else "failed",
        extra={"ip": ip, "email": email, "user_id": user_id},
    )


def recent_attempts(ip: str) -> List[LoginAttempt]:
    """Attempts from *ip* inside the lockout window, oldest first."""
    cutoff = utcnow() - lockout_duration()
    with db_session() as session:
        rows = session.execute(
            select(LoginAttempt)
            .where(LoginAttempt.ip == ip)
            .where(LoginAttempt.timestamp >= cutoff)
            .order_by(LoginAttempt.timestamp.asc())
        ).scalars().all()
    return list(rows)


def log_analytics_event(event: Dict[str, Any]) -> None:
    """Emit a client analytics event as a structured log record."""
    analytics_logger.info("Analytics event", extra={"event": event})
