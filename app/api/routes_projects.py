from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select

from ..auth.dependencies import require_permission
from ..cache import response_cache
from ..database import db_session, utcnow
from ..models import Project, User
from ..schemas import ProjectCreate, ProjectUpdate
from .common import cache_key, dump, paginate, parse_id, project_to_read, search_clause

logger = logging.getLogger("ecosystem.projects")

router = APIRouter(prefix="/projects", tags=["projects"])

CACHE_PREFIX = "projects:"


def fetch_projects(
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
    category: Optional[str] = None,
    search: Optional[str] = None,
) -> dict:
    with db_session() as session:
        stmt = select(Project).order_by(Project.created_at.desc(), Project.id.desc())
        if status:
            stmt = stmt.where(Project.status == status)
        if category:
            stmt = stmt.where(Project.category == category)
        if search:
            stmt = stmt.where(search_clause(search, (Project.name, Project.description, Project.location)))
        rows, pagination = paginate(session, stmt, page, limit)
        return {
            "projects": dump([project_to_read(r) for r in rows]),
            "pagination": pagination.model_dump(),
        }


@router.get("")
def list_projects(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None, description="Filter by status"),
    category: Optional[str] = Query(None, description="Filter by category"),
    search: Optional[str] = Query(None, description="Search name, description and location"),
) -> dict:
    """Public project listing, newest first. Served from the response cache."""
    key = cache_key("projects", page=page, limit=limit, status=status, category=category, search=search)
    return response_cache.get_or_fetch(
        key, lambda: fetch_projects(page, limit, status, category, search),
    )


@router.get("/{project_id}")
def get_project(project_id: str) -> dict:
    pid = parse_id(project_id, "project")
    with db_session() as session:
        row = session.get(Project, pid)
        if not row:
            raise HTTPException(status_code=404, detail="Project not found")
        return project_to_read(row).model_dump(mode="json")


@router.post("", status_code=201)
def create_project(
    body: ProjectCreate,
    admin: User = Depends(require_permission("manage_projects")),
) -> dict:
    with db_session() as session:
        row = Project(**body.model_dump())
        session.add(row)
        session.flush()
        session.refresh(row)
        created = project_to_read(row)

    response_cache.invalidate_prefix(CACHE_PREFIX)
    logger.info("Project %s created by %s", created.id, admin.email)
    return {"message": "Project created successfully", "project": created.model_dump(mode="json")}


@router.put("/{project_id}")
def update_project(
    project_id: str,
    body: ProjectUpdate,
    admin: User = Depends(require_permission("manage_projects")),
) -> dict:
    pid = parse_id(project_id, "project")
    with db_session() as session:
        row = session.get(Project, pid)
        if not row:
            raise HTTPException(status_code=404, detail="Project not found")
        for field, value in body.model_dump(exclude_unset=True, exclude_none=True).items():
            setattr(row, field, value)
        row.updated_at = utcnow()
        session.flush()
        session.refresh(row)
        updated = project_to_read(row)

    response_cache.invalidate_prefix(CACHE_PREFIX)
    return {"message": "Project updated successfully", "project": updated.model_dump(mode="json")}


@router.delete("/{project_id}")
def delete_project(
    project_id: str,
    admin: User = Depends(require_permission("manage_projects")),
) -> dict:
    pid = parse_id(project_id, "project")
    with db_session() as session:
        row = session.get(Project, pid)
        if not row:
            raise HTTPException(status_code=404, detail="Project not found")
        session.delete(row)

    response_cache.invalidate_prefix(CACHE_PREFIX)
    logger.info("Project %s deleted by %s", pid, admin.email)
    return {"message": "Project deleted successfully"}
