from __future__ import annotations

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..auth.dependencies import require_permission
from ..cache import response_cache
from ..database import db_session, utcnow
from ..models import Article, User
from ..schemas import ArticleCreate, ArticleUpdate
from .common import article_to_read, cache_key, dump, paginate, parse_id, search_clause, slugify

logger = logging.getLogger("ecosystem.articles")

router = APIRouter(prefix="/articles", tags=["articles"])

CACHE_PREFIX = "articles:"
EXCERPT_LENGTH = 150


def _unique_slug(session: Session, title: str, exclude_id: Optional[int] = None) -> str:
    """Slug from the title; collisions with other articles get -1, -2, ... appended."""
    base = slugify(title)
    slug = base
    counter = 1
    while True:
        stmt = select(Article.id).where(Article.slug == slug)
        if exclude_id is not None:
            stmt = stmt.where(Article.id != exclude_id)
        if not session.execute(stmt).first():
            break
        slug = f"{base}-{counter}"
        counter += 1
    return slug


def _default_excerpt(content: str) -> str:
    return content[:EXCERPT_LENGTH] + "..."


def fetch_articles(
    page: int = 1,
    limit: int = 10,
    published: Optional[bool] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
) -> dict:
    with db_session() as session:
        stmt = select(Article).order_by(Article.created_at.desc(), Article.id.desc())
        if published is not None:
            stmt = stmt.where(Article.published == published)
        if category:
            stmt = stmt.where(Article.category == category)
        if search:
            stmt = stmt.where(search_clause(search, (Article.title, Article.content, Article.author)))
        rows, pagination = paginate(session, stmt, page, limit)
        return {
            "articles": dump([article_to_read(r) for r in rows]),
            "pagination": pagination.model_dump(),
        }


@router.get("")
def list_articles(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    published: Optional[bool] = Query(None, description="Filter by published flag"),
    category: Optional[str] = Query(None, description="Filter by category"),
    search: Optional[str] = Query(None, description="Search title, content and author"),
) -> dict:
    key = cache_key("articles", page=page, limit=limit, published=published, category=category, search=search)
    return response_cache.get_or_fetch(
        key, lambda: fetch_articles(page, limit, published, category, search),
    )


@router.get("/{article_id}")
def get_article(article_id: str) -> dict:
    aid = parse_id(article_id, "article")
    with db_session() as session:
        row = session.get(Article, aid)
        if not row:
            raise HTTPException(status_code=404, detail="Article not found")
        return article_to_read(row).model_dump(mode="json")


@router.post("", status_code=201)
def create_article(
    body: ArticleCreate,
    admin: User = Depends(require_permission("manage_settings")),
) -> dict:
    with db_session() as session:
        row = Article(
            title=body.title,
            slug=_unique_slug(session, body.title),
            content=body.content,
            excerpt=body.excerpt or _default_excerpt(body.content),
            author=body.author,
            category=body.category,
            tags=json.dumps(body.tags),
            image=body.image,
            published=body.published,
            published_at=utcnow() if body.published else None,
        )
        session.add(row)
        session.flush()
        session.refresh(row)
        created = article_to_read(row)

    response_cache.invalidate_prefix(CACHE_PREFIX)
    logger.info("Article %r created by %s", created.slug, admin.email)
    return {"message": "Article created successfully", "article": created.model_dump(mode="json")}


@router.put("/{article_id}")
def update_article(
    article_id: str,
    body: ArticleUpdate,
    admin: User = Depends(require_permission("manage_settings")),
) -> dict:
    aid = parse_id(article_id, "article")
    with db_session() as session:
        row = session.get(Article, aid)
        if not row:
            raise HTTPException(status_code=404, detail="Article not found")
        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        if "title" in changes and changes["title"] != row.title:
            changes["slug"] = _unique_slug(session, changes["title"], exclude_id=aid)
        if "tags" in changes:
            changes["tags"] = json.dumps(changes["tags"])
        for field, value in changes.items():
            setattr(row, field, value)
        if row.published and row.published_at is None:
            row.published_at = utcnow()
        row.updated_at = utcnow()
        session.flush()
        session.refresh(row)
        updated = article_to_read(row)

    response_cache.invalidate_prefix(CACHE_PREFIX)
    return {"message": "Article updated successfully", "article": updated.model_dump(mode="json")}


@router.delete("/{article_id}")
def delete_article(
    article_id: str,
    admin: User = Depends(require_permission("manage_settings")),
) -> dict:
    aid = parse_id(article_id, "article")
    with db_session() as session:
        row = session.get(Article, aid)
        if not row:
            raise HTTPException(status_code=404, detail="Article not found")
        session.delete(row)

    response_cache.invalidate_prefix(CACHE_PREFIX)
    return {"message": "Article deleted successfully"}
