from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError

from .core import decode_token
from .permissions import ADMIN_ROLES, has_permission
from .security import is_session_valid
from ..database import db_session, utcnow
from ..models import AdminSession, User

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class AuthContext:
    user: User
    session_id: str


# ---------------------------------------------------------------------------
# Resolve current user from JWT + server-side session
# ---------------------------------------------------------------------------

def get_auth_context(
    bearer: HTTPAuthorizationCredentials | None = Security(bearer_scheme),
) -> AuthContext:
    """
    Accepts `Authorization: Bearer <jwt>`.

    The token's `sid` must reference an active session whose last activity
    is within the session timeout; each accepted request refreshes it.
    An idle session is deactivated and the request rejected.
    """
    if not bearer or not bearer.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No credentials provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        payload = decode_token(bearer.credentials)
        user_id = int(payload.get("sub", ""))
        session_id: str = payload.get("sid", "")
    except (JWTError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Invalid or expired token.")

    with db_session() as session:
        row = session.get(AdminSession, session_id) if session_id else None
        if row is None or row.user_id != user_id:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                                detail="Session not found.")
        if not is_session_valid(row):
            row.is_active = False
            expired = True
        else:
            row.last_activity = utcnow()
            expired = False
        user = session.get(User, user_id)

    if expired:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Session expired.")
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="User not found or inactive.")
    return AuthContext(user=user, session_id=session_id)


def get_current_user(ctx: AuthContext = Depends(get_auth_context)) -> User:
    return ctx.user


# ---------------------------------------------------------------------------
# Role / permission guards
# ---------------------------------------------------------------------------

def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role not in ADMIN_ROLES:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Admin access required.")
    return current_user


def require_super_admin(current_user: User = Depends(get_current_user)) -> User:
    if current_user.role != "super_admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Super admin access required.")
    return current_user


def require_permission(permission: str):
    """Dependency factory: admin role *and* the named permission."""

    def _guard(current_user: User = Depends(get_current_user)) -> User:
        if not has_permission(current_user, permission):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                                detail=f"Missing permission: {permission}.")
        return current_user

    return _guard
