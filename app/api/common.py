from __future__ import annotations

import json
import math
import re
from typing import Any, Iterable, List, Sequence, Tuple

from fastapi import HTTPException
from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session

from ..auth.permissions import get_permissions
from ..models import Article, NFT, Project, User
from ..schemas import ArticleRead, NFTRead, Pagination, ProjectRead, UserRead


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

MAX_ROW_ID = 2**63 - 1  # signed 64-bit INTEGER


def parse_id(raw: str, label: str) -> int:
    """Path ids arrive as strings so a malformed one is a 400, not a 422."""
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID")
    if value <= 0:
        raise HTTPException(status_code=400, detail=f"Invalid {label} ID")
    if value > MAX_ROW_ID:
        # No row can carry this id
        raise HTTPException(status_code=404, detail=f"{label[:1].upper()}{label[1:]} not found")
    return value


def search_clause(term: str, columns: Iterable[Any]):
    """Case-insensitive substring match across *columns*; % and _ match literally."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    pattern = f"%{escaped}%"
    return or_(*[col.ilike(pattern, escape="\\") for col in columns])


def paginate(
    session: Session,
    stmt: Select,
    page: int,
    limit: int,
) -> Tuple[Sequence[Any], Pagination]:
    """Run *stmt* for one page and count the full result set."""
    total = session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    rows = session.execute(
        stmt.offset((page - 1) * limit).limit(limit)
    ).scalars().all()
    pages = math.ceil(total / limit) if limit else 0
    return rows, Pagination(total=total, page=page, limit=limit, pages=pages)


def cache_key(resource: str, **params: Any) -> str:
    parts = [f"{k}={params[k]}" for k in sorted(params) if params[k] is not None]
    return f"{resource}:" + "&".join(parts)


_SLUG_STRIP = re.compile(r"[^a-z0-9\s-]")
_SLUG_DASH = re.compile(r"[\s_-]+")


def slugify(text: str) -> str:
    slug = _SLUG_STRIP.sub("", text.lower())
    slug = _SLUG_DASH.sub("-", slug).strip("-")
    return slug or "article"


# ---------------------------------------------------------------------------
# Row -> schema
# ---------------------------------------------------------------------------

def project_to_read(r: Project) -> ProjectRead:
    return ProjectRead.model_validate(r)


def article_to_read(r: Article) -> ArticleRead:
    return ArticleRead(
        id=r.id,
        title=r.title,
        slug=r.slug,
        content=r.content,
        excerpt=r.excerpt,
        author=r.author,
        category=r.category,
        tags=json.loads(r.tags or "[]"),
        image=r.image,
        published=r.published,
        published_at=r.published_at,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def nft_to_read(r: NFT) -> NFTRead:
    return NFTRead(
        id=r.id,
        token_id=r.token_id,
        name=r.name,
        description=r.description,
        image=r.image,
        category=r.category,
        rarity=r.rarity,
        project=r.project,
        owner=r.owner,
        owner_email=r.owner_email,
        mint_date=r.mint_date,
        status=r.status,
        metadata=json.loads(r.metadata_json or "{}"),
        contract_address=r.contract_address,
        transaction_hash=r.transaction_hash,
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


def user_to_read(u: User) -> UserRead:
    return UserRead(
        id=u.id,
        uid=u.uid,
        email=u.email,
        display_name=u.display_name,
        photo_url=u.photo_url,
        bio=u.bio,
        location=u.location,
        email_verified=bool(u.email_verified),
        role=u.role,
        permissions=get_permissions(u),
        is_active=bool(u.is_active),
        two_factor_enabled=bool(u.two_factor_enabled),
        created_at=u.created_at,
        updated_at=u.updated_at,
        last_login_at=u.last_login_at,
        login_count=u.login_count or 0,
    )


def dump(items: List[Any]) -> List[dict]:
    return [i.model_dump(mode="json") for i in items]
