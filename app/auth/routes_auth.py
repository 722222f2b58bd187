import time
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy import select, update

from . import two_factor
from .core import (
    create_access_token, generate_uid, hash_password, is_legacy_hash, verify_password,
)
from .dependencies import AuthContext, get_auth_context, get_current_user
from .permissions import apply_role, check_admin_status
from .security import (
    generate_otp, generate_session_id, hash_code, is_account_locked,
    lockout_remaining_seconds, otp_expiry, should_show_captcha,
)
from ..api.common import user_to_read
from ..config import settings
from ..database import db_session, utcnow
from ..encryption import decrypt_value, encrypt_value
from ..mailer import send_reset_code
from ..models import AdminSession, LoginAttempt, PasswordReset, User
from ..rate_limit import AUTH_LIMIT, RateLimiter, client_ip, limiter
from ..schemas import AdminStatus, UserRead
from ..telemetry.logger import recent_attempts, record_login_attempt

router = APIRouter(prefix="/auth", tags=["auth"])

# Per-user throttle on two-factor code guessing
two_factor_limiter = RateLimiter(settings.two_factor_verify_limit, namespace="2fa")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    email: EmailStr
    password: str
    totp_code: Optional[str] = None
    backup_code: Optional[str] = None


class SignupRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8)
    display_name: str = Field(..., min_length=2, max_length=50)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: int
    email: str
    role: str
    display_name: Optional[str] = None
    expires_in: int


class MeResponse(UserRead):
    admin: AdminStatus


class LoginAttemptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ip: str
    user_agent: Optional[str] = None
    success: bool
    timestamp: datetime


class CaptchaStatus(BaseModel):
    captcha_required: bool
    locked: bool
    retry_after: int = 0


class TwoFactorSetupResponse(BaseModel):
    secret: str
    qr_code: str
    backup_codes: List[str]


class TwoFactorCode(BaseModel):
    code: str = Field(..., min_length=6, max_length=16)


class TwoFactorState(BaseModel):
    two_factor_enabled: bool


class SessionsInvalidated(BaseModel):
    invalidated: int


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=6, max_length=6)
    new_password: str = Field(..., min_length=8)


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _open_session(user: User, request: Request) -> TokenResponse:
    """Create a server-side session and the access token that references it."""
    sid = generate_session_id()
    with db_session() as session:
        session.add(AdminSession(
            session_id=sid,
            user_id=user.id,
            ip=client_ip(request),
            user_agent=request.headers.get("user-agent", "")[:512],
        ))
    token = create_access_token(subject=str(user.id), role=user.role, session_id=sid)
    return TokenResponse(
        access_token=token,
        user_id=user.id,
        email=user.email,
        role=user.role,
        display_name=user.display_name,
        expires_in=settings.jwt_expire_minutes * 60,
    )


def _reject_login(ip: str, email: str, user_id: Optional[int], ua: str, message: str) -> HTTPException:
    """Record the failure and build the 401 with the current CAPTCHA flag."""
    record_login_attempt(ip, False, email=email, user_id=user_id, user_agent=ua)
    captcha = should_show_captcha(recent_attempts(ip), ip)
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": message, "captcha_required": captcha},
    )


def _normalise_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Signup / login / logout
# ---------------------------------------------------------------------------

@router.post("/signup", response_model=TokenResponse, status_code=201)
@limiter.limit(AUTH_LIMIT)
def signup(request: Request, body: SignupRequest) -> TokenResponse:
    if not settings.registration_enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Public registration is disabled. Contact an administrator.",
        )
    email = _normalise_email(body.email)
    with db_session() as session:
        existing = session.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()
        if existing:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="An account with this email already exists.",
            )
        user = User(
            uid=generate_uid(),
            email=email,
            display_name=body.display_name,
            password_hash=hash_password(body.password),
            is_active=True,
        )
        apply_role(user, "user")
        session.add(user)
        session.flush()
        session.refresh(user)

    return _open_session(user, request)


@router.post("/login", response_model=TokenResponse)
@limiter.limit(AUTH_LIMIT)
def login(request: Request, body: LoginRequest) -> TokenResponse:
    ip = client_ip(request)
    ua = request.headers.get("user-agent", "")
    email = _normalise_email(body.email)

    attempts = recent_attempts(ip)
    if is_account_locked(attempts, ip):
        retry_after = lockout_remaining_seconds(attempts, ip)
        raise HTTPException(
            status_code=status.HTTP_423_LOCKED,
            detail={
                "message": "Too many failed login attempts. Try again later.",
                "captcha_required": True,
                "retry_after": retry_after,
            },
            headers={"Retry-After": str(retry_after)},
        )

    with db_session() as session:
        user = session.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()

    if not user or not user.is_active or not verify_password(body.password, user.password_hash):
        raise _reject_login(ip, email, user.id if user else None, ua, "Invalid credentials.")

    if user.two_factor_enabled:
        if not body.totp_code and not body.backup_code:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"message": "Two-factor code required.", "two_factor_required": True},
            )
        secret = decrypt_value(user.two_factor_secret or "")
        if not two_factor.verify_token(body.totp_code, secret):
            matched, remaining = two_factor.consume_backup_code(
                user.two_factor_backup_codes, body.backup_code,
            )
            if not matched:
                raise _reject_login(ip, email, user.id, ua, "Invalid two-factor code.")
            with db_session() as session:
                row = session.get(User, user.id)
                row.two_factor_backup_codes = remaining

    with db_session() as session:
        row = session.get(User, user.id)
        row.last_login_at = utcnow()
        row.login_count = (row.login_count or 0) + 1
        if is_legacy_hash(row.password_hash):
            row.password_hash = hash_password(body.password)

    record_login_attempt(ip, True, email=email, user_id=user.id, user_agent=ua)
    return _open_session(user, request)


@router.post("/logout", status_code=204)
def logout(ctx: AuthContext = Depends(get_auth_context)) -> Response:
    with db_session() as session:
        row = session.get(AdminSession, ctx.session_id)
        if row:
            row.is_active = False
    return Response(status_code=204)


@router.post("/sessions/invalidate-all", response_model=SessionsInvalidated)
def invalidate_all_sessions(current_user: User = Depends(get_current_user)) -> SessionsInvalidated:
    """Sign the caller out everywhere, including the current session."""
    with db_session() as session:
        result = session.execute(
            update(AdminSession)
            .where(AdminSession.user_id == current_user.id)
            .where(AdminSession.is_active == True)  # noqa: E712
            .values(is_active=False)
        )
        count = result.rowcount or 0
    return SessionsInvalidated(invalidated=count)


# ---------------------------------------------------------------------------
# Current user
# ---------------------------------------------------------------------------

@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    read = user_to_read(current_user)
    return MeResponse(**read.model_dump(), admin=AdminStatus(**check_admin_status(current_user)))


@router.get("/login-history", response_model=List[LoginAttemptRead])
def login_history(
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
) -> List[LoginAttemptRead]:
    """The caller's own login attempts, newest first."""
    with db_session() as session:
        rows = (
            session.execute(
                select(LoginAttempt)
                .where(
                    (LoginAttempt.user_id == current_user.id)
                    | (LoginAttempt.email == current_user.email)
                )
                .order_by(LoginAttempt.timestamp.desc(), LoginAttempt.id.desc())
                .limit(limit)
            )
            .scalars()
            .all()
        )
        return [LoginAttemptRead.model_validate(r) for r in rows]


@router.get("/captcha-status", response_model=CaptchaStatus)
def captcha_status(request: Request) -> CaptchaStatus:
    """Whether the login form should show a CAPTCHA for this client."""
    ip = client_ip(request)
    attempts = recent_attempts(ip)
    return CaptchaStatus(
        captcha_required=should_show_captcha(attempts, ip),
        locked=is_account_locked(attempts, ip),
        retry_after=lockout_remaining_seconds(attempts, ip),
    )


# ---------------------------------------------------------------------------
# Two-factor authentication
# ---------------------------------------------------------------------------

def _throttle_two_factor(user: User) -> None:
    result = two_factor_limiter.check(str(user.id))
    if not result.success:
        retry_after = max(1, int((result.reset_time or 0) - time.time()))
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many two-factor attempts. Try again later.",
            headers={"Retry-After": str(retry_after)},
        )


@router.post("/2fa/setup", response_model=TwoFactorSetupResponse)
def setup_two_factor(current_user: User = Depends(get_current_user)) -> TwoFactorSetupResponse:
    """
    Start enrolment. The secret is stored (encrypted) with 2FA still
    disabled; it becomes active once /2fa/verify accepts a code.
    """
    if current_user.two_factor_enabled:
        raise HTTPException(status_code=409, detail="Two-factor authentication is already enabled.")

    secret = two_factor.generate_secret()
    qr_code = two_factor.generate_qr_code(current_user.email, secret)
    backup_codes = two_factor.generate_backup_codes()

    with db_session() as session:
        row = session.get(User, current_user.id)
        row.two_factor_secret = encrypt_value(secret)
        row.two_factor_backup_codes = two_factor.hash_backup_codes(backup_codes)
        row.two_factor_enabled = False

    return TwoFactorSetupResponse(secret=secret, qr_code=qr_code, backup_codes=backup_codes)


@router.post("/2fa/verify", response_model=TwoFactorState)
def verify_two_factor(
    body: TwoFactorCode,
    current_user: User = Depends(get_current_user),
) -> TwoFactorState:
    _throttle_two_factor(current_user)
    if not current_user.two_factor_secret:
        raise HTTPException(status_code=400, detail="Two-factor setup has not been started.")

    secret = decrypt_value(current_user.two_factor_secret)
    if not two_factor.verify_token(body.code, secret):
        raise HTTPException(status_code=400, detail="Invalid two-factor code.")

    with db_session() as session:
        row = session.get(User, current_user.id)
        row.two_factor_enabled = True
    return TwoFactorState(two_factor_enabled=True)


@router.post("/2fa/disable", response_model=TwoFactorState)
def disable_two_factor(
    body: TwoFactorCode,
    current_user: User = Depends(get_current_user),
) -> TwoFactorState:
    """Turn 2FA off. Requires a current TOTP code or an unused backup code."""
    _throttle_two_factor(current_user)
    if not current_user.two_factor_enabled:
        raise HTTPException(status_code=400, detail="Two-factor authentication is not enabled.")

    secret = decrypt_value(current_user.two_factor_secret or "")
    matched = two_factor.verify_token(body.code, secret)
    if not matched:
        matched, _ = two_factor.consume_backup_code(current_user.two_factor_backup_codes, body.code)
    if not matched:
        raise HTTPException(status_code=400, detail="Invalid two-factor code.")

    with db_session() as session:
        row = session.get(User, current_user.id)
        row.two_factor_enabled = False
        row.two_factor_secret = None
        row.two_factor_backup_codes = None
    return TwoFactorState(two_factor_enabled=False)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

_RESET_ACCEPTED = "If an account exists for this email, a reset code has been sent."


@router.post("/forgot-password", response_model=MessageResponse, status_code=202)
@limiter.limit(AUTH_LIMIT)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    email = _normalise_email(body.email)
    with db_session() as session:
        user = session.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()
        if not user or not user.is_active:
            return MessageResponse(message=_RESET_ACCEPTED)

        # Only the newest code is valid
        session.execute(
            update(PasswordReset)
            .where(PasswordReset.user_id == user.id)
            .where(PasswordReset.used == False)  # noqa: E712
            .values(used=True)
        )
        code = generate_otp()
        session.add(PasswordReset(
            user_id=user.id,
            code_hash=hash_code(code),
            expires_at=utcnow() + otp_expiry(),
        ))

    send_reset_code(email, code)
    return MessageResponse(message=_RESET_ACCEPTED)


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(body: ResetPasswordRequest) -> MessageResponse:
    email = _normalise_email(body.email)
    invalid = HTTPException(status_code=400, detail="Invalid or expired reset code.")

    with db_session() as session:
        user = session.execute(
            select(User).where(User.email == email)
        ).scalar_one_or_none()
        if not user:
            raise invalid
        reset = session.execute(
            select(PasswordReset)
            .where(PasswordReset.user_id == user.id)
            .where(PasswordReset.used == False)  # noqa: E712
            .where(PasswordReset.code_hash == hash_code(body.code))
            .where(PasswordReset.expires_at > utcnow())
        ).scalar_one_or_none()
        if not reset:
            raise invalid

        reset.used = True
        user.password_hash = hash_password(body.new_password)
        session.execute(
            update(AdminSession)
            .where(AdminSession.user_id == user.id)
            .values(is_active=False)
        )

    return MessageResponse(message="Password updated. Please sign in again.")
