from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, update

from ..auth.dependencies import require_permission, require_super_admin
from ..auth.permissions import apply_role, check_admin_status, create_admin_user, has_permission
from ..database import db_session, utcnow
from ..models import AdminSession, User
from ..schemas import AdminStatus, PromoteRequest, UserUpdate
from .common import dump, paginate, parse_id, search_clause, user_to_read

logger = logging.getLogger("ecosystem.users")

router = APIRouter(prefix="/users", tags=["users"])


def _guard_privileged_target(target: User, actor: User) -> None:
    """Only holders of manage_admins may modify admin accounts."""
    if target.role != "user" and not has_permission(actor, "manage_admins"):
        raise HTTPException(status_code=403, detail="Missing permission: manage_admins.")


@router.get("")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    role: Optional[str] = Query(None, description="Filter by role"),
    status: Optional[str] = Query(None, pattern="^(active|inactive)$"),
    search: Optional[str] = Query(None, description="Search display name and email"),
    _admin: User = Depends(require_permission("read_users")),
) -> dict:
    with db_session() as session:
        stmt = select(User).order_by(User.created_at.desc(), User.id.desc())
        if role:
            stmt = stmt.where(User.role == role)
        if status:
            stmt = stmt.where(User.is_active == (status == "active"))
        if search:
            stmt = stmt.where(search_clause(search, (User.display_name, User.email)))
        rows, pagination = paginate(session, stmt, page, limit)
        return {
            "users": dump([user_to_read(u) for u in rows]),
            "pagination": pagination.model_dump(),
        }


@router.get("/{user_id}")
def get_user(
    user_id: str,
    _admin: User = Depends(require_permission("read_users")),
) -> dict:
    uid = parse_id(user_id, "user")
    with db_session() as session:
        row = session.get(User, uid)
        if not row:
            raise HTTPException(status_code=404, detail="User not found")
        return user_to_read(row).model_dump(mode="json")


@router.put("/{user_id}")
def update_user(
    user_id: str,
    body: UserUpdate,
    admin: User = Depends(require_permission("manage_users")),
) -> dict:
    uid = parse_id(user_id, "user")
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    new_role = changes.pop("role", None)
    if new_role is not None and not has_permission(admin, "manage_admins"):
        raise HTTPException(status_code=403, detail="Missing permission: manage_admins.")

    with db_session() as session:
        row = session.get(User, uid)
        if not row:
            raise HTTPException(status_code=404, detail="User not found")
        _guard_privileged_target(row, admin)
        for field, value in changes.items():
            setattr(row, field, value)
        if new_role is not None and new_role != row.role:
            apply_role(row, new_role)
        if changes.get("is_active") is False:
            session.execute(
                update(AdminSession).where(AdminSession.user_id == uid).values(is_active=False)
            )
        row.updated_at = utcnow()
        session.flush()
        session.refresh(row)
        updated = user_to_read(row)

    return {"message": "User updated successfully", "user": updated.model_dump(mode="json")}


@router.delete("/{user_id}")
def delete_user(
    user_id: str,
    admin: User = Depends(require_permission("manage_users")),
) -> dict:
    uid = parse_id(user_id, "user")
    if uid == admin.id:
        raise HTTPException(status_code=400, detail="You cannot delete your own account")
    with db_session() as session:
        row = session.get(User, uid)
        if not row:
            raise HTTPException(status_code=404, detail="User not found")
        _guard_privileged_target(row, admin)
        # Soft delete: the row stays for login history
        row.is_active = False
        row.updated_at = utcnow()
        session.execute(
            update(AdminSession).where(AdminSession.user_id == uid).values(is_active=False)
        )

    logger.info("User %s deactivated by %s", uid, admin.email)
    return {"message": "User deleted successfully"}


@router.post("/{user_id}/promote")
def promote_user(
    user_id: str,
    body: PromoteRequest,
    admin: User = Depends(require_super_admin),
) -> dict:
    uid = parse_id(user_id, "user")
    with db_session() as session:
        row = session.get(User, uid)
        if not row:
            raise HTTPException(status_code=404, detail="User not found")
        create_admin_user(row, role=body.role, created_by=admin.uid)
        session.flush()
        session.refresh(row)
        promoted = user_to_read(row)
        status = AdminStatus(**check_admin_status(row))

    return {
        "message": "User promoted successfully",
        "user": promoted.model_dump(mode="json"),
        "admin": status.model_dump(),
    }
