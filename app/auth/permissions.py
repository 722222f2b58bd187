"""
Role and permission model shared by auth routes, admin routes and seeding.

Roles: user | admin | super_admin. Admin roles carry an explicit permission
list stored on the user row; `user` has none.
"""
from __future__ import annotations

import logging
from typing import List

from ..database import utcnow
from ..models import User

logger = logging.getLogger("ecosystem.permissions")

ROLES = ("user", "admin", "super_admin")
ADMIN_ROLES = ("admin", "super_admin")

ADMIN_PERMISSIONS: List[str] = [
    "read_users",
    "manage_users",
    "read_projects",
    "manage_projects",
    "read_nfts",
    "manage_nfts",
    "read_analytics",
    "manage_settings",
]

SUPER_ADMIN_PERMISSIONS: List[str] = [
    *ADMIN_PERMISSIONS,
    "manage_admins",
    "system_settings",
    "delete_data",
    "export_data",
]


def permissions_for_role(role: str) -> List[str]:
    if role == "super_admin":
        return list(SUPER_ADMIN_PERMISSIONS)
    if role == "admin":
        return list(ADMIN_PERMISSIONS)
    return []


def get_permissions(user: User) -> List[str]:
    return [p for p in (user.permissions or "").split(",") if p]


def has_permission(user: User, permission: str) -> bool:
    return user.role in ADMIN_ROLES and permission in get_permissions(user)


def apply_role(user: User, role: str) -> None:
    """Set role and reset the permission list to the role's defaults."""
    if role not in ROLES:
        raise ValueError(f"Unknown role: {role!r}")
    user.role = role
    user.permissions = ",".join(permissions_for_role(role))


def create_admin_user(user: User, role: str = "admin", created_by: str = "system") -> User:
    """Promote *user* to an admin role. Caller owns the DB session."""
    if role not in ADMIN_ROLES:
        raise ValueError(f"Not an admin role: {role!r}")
    apply_role(user, role)
    user.is_active = True
    user.promoted_by = created_by
    user.promoted_at = utcnow()
    logger.info("User %s promoted to %s by %s", user.email, role, created_by)
    return user


def check_admin_status(user: User) -> dict:
    return {
        "is_admin": user.role in ADMIN_ROLES,
        "is_super_admin": user.role == "super_admin",
        "permissions": get_permissions(user),
        "is_active": bool(user.is_active),
    }
