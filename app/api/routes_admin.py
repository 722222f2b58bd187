from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy import func, select

from ..auth.dependencies import require_admin
from ..database import db_session, utcnow
from ..models import AdminSession, Article, LoginAttempt, NFT, Project, User
from ..schemas import AdminStats

router = APIRouter(prefix="/admin", tags=["admin"])


def _count(session, model, *conditions) -> int:
    stmt = select(func.count()).select_from(model)
    for cond in conditions:
        stmt = stmt.where(cond)
    return session.execute(stmt).scalar_one() or 0


@router.get("/stats", response_model=AdminStats)
def get_stats(_user: User = Depends(require_admin)) -> AdminStats:
    """Headline counts for the admin dashboard."""
    since = utcnow() - timedelta(hours=24)
    with db_session() as session:
        return AdminStats(
            users=_count(session, User),
            active_users=_count(session, User, User.is_active == True),  # noqa: E712
            admins=_count(session, User, User.role.in_(("admin", "super_admin"))),
            projects=_count(session, Project),
            active_projects=_count(session, Project, Project.status == "active"),
            articles=_count(session, Article),
            published_articles=_count(session, Article, Article.published == True),  # noqa: E712
            nfts=_count(session, NFT),
            minted_nfts=_count(session, NFT, NFT.status == "minted"),
            failed_logins_24h=_count(
                session, LoginAttempt,
                LoginAttempt.success == False,  # noqa: E712
                LoginAttempt.timestamp >= since,
            ),
            active_sessions=_count(session, AdminSession, AdminSession.is_active == True),  # noqa: E712
        )
