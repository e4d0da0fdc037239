"""
api/routes/v1/auth.py -- Account, session, and password REST endpoints.

Routes:
  POST   /api/v1/register                -- create account; sets session cookie (201)
  POST   /api/v1/login                   -- password login; sets session cookie
  GET    /api/v1/logout                  -- replaces the session cookie with an expired one
  POST   /api/v1/password/forgot         -- email a reset link
  PUT    /api/v1/password/reset/{token}  -- consume a reset token; sets session cookie
  GET    /api/v1/me                      -- current user (requires auth)
  PUT    /api/v1/password/update         -- change password (requires auth); new session cookie
  PUT    /api/v1/me/update               -- change name/email (requires auth)
  GET    /api/v1/admin/users             -- list users (admin only)
  GET    /api/v1/admin/user/{id}         -- one user (admin only)
  PUT    /api/v1/admin/user/{id}         -- change name/email/role (admin only)
  DELETE /api/v1/admin/user/{id}         -- delete user (admin only)

Failures are raised as core.errors.AppError subclasses and rendered by the
handler in api/main.py. Routes are plain `def` because the store is
synchronous; FastAPI runs them in its threadpool.

Security:
  POST /register, POST /login and POST /password/forgot are rate-limited per
  client IP.
  Cache-Control: no-store on every response that carries a session token.
  Admins cannot delete themselves or demote the last admin.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AdminUserPatch,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    ProfilePatch,
    RegisterRequest,
    ResetPasswordRequest,
    SessionResponse,
    UpdatePasswordRequest,
    UserEnvelope,
    UserListResponse,
    UserResponse,
)
from auth.dependencies import get_auth_service, get_current_user, require_admin
from auth.models import Role, SessionToken, User
from auth.service import AuthService
from auth.sessions import clear_session_cookie, set_session_cookie
from core.config import get_settings
from core.errors import ValidationError

_settings = get_settings()

router = APIRouter()


def _session_response(user: User, session: SessionToken, status_code: int = 200) -> JSONResponse:
    body = SessionResponse(
        token=session.token,
        expires_at=session.expires_at,
        user=UserResponse.from_user(user),
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    set_session_cookie(resp, session, secure=_settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.register_rate_limit)
@router.post("/register", response_model=SessionResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create an account and log it in.

    An uploaded avatar is removed again if the account cannot be created.
    """
    avatar_host = request.app.state.avatar_host
    avatar = avatar_host.upload(body.avatar) if body.avatar else avatar_host.default
    try:
        user, session = service.register(body.name, body.email, body.password, avatar)
    except Exception:
        avatar_host.delete(avatar)
        raise
    return _session_response(user, session, status_code=201)


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_model=SessionResponse)
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password get the same 401 so the response does
    not reveal which accounts exist.
    """
    user, session = service.login(body.email, body.password)
    return _session_response(user, session)


@router.get("/logout", response_model=MessageResponse)
def logout(service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    service.logout()
    resp = JSONResponse(content=MessageResponse(message="Logged Out Successfully").model_dump())
    clear_session_cookie(resp, secure=_settings.secure_cookies)
    return resp


@limiter.limit(_settings.password_reset_rate_limit)
@router.post("/password/forgot", response_model=MessageResponse)
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Email a single-use reset link valid for the configured TTL."""
    reset_url_base = f"{str(request.base_url).rstrip('/')}/api/v1/password/reset"
    recipient = service.forgot_password(body.email, reset_url_base)
    return MessageResponse(message=f"Email sent to {recipient} successfully")


@router.put("/password/reset/{token}", response_model=SessionResponse)
def reset_password(
    token: str,
    body: ResetPasswordRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    user, session = service.reset_password(token, body.password, body.confirmPassword)
    return _session_response(user, session)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/me", response_model=UserEnvelope)
def me(current_user: User = Depends(get_current_user)) -> UserEnvelope:
    return UserEnvelope(user=UserResponse.from_user(current_user))


@router.put("/password/update", response_model=SessionResponse)
def update_password(
    body: UpdatePasswordRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Change the password. Sessions issued before the change remain valid until they expire."""
    user, session = service.update_password(current_user.id, body.oldPassword, body.newPassword, body.confirmPassword)
    return _session_response(user, session)


@router.put("/me/update", response_model=UserEnvelope)
def update_profile(
    body: ProfilePatch,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> UserEnvelope:
    user = service.update_profile(current_user.id, name=body.name, email=body.email)
    return UserEnvelope(user=UserResponse.from_user(user))


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/admin/users", response_model=UserListResponse)
def list_users(
    current_user: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> UserListResponse:
    return UserListResponse(users=[UserResponse.from_user(u) for u in service.list_users()])


@router.get("/admin/user/{user_id}", response_model=UserEnvelope)
def get_user(
    user_id: str,
    current_user: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> UserEnvelope:
    return UserEnvelope(user=UserResponse.from_user(service.get_user(user_id)))


@router.put("/admin/user/{user_id}", response_model=UserEnvelope)
def update_user(
    user_id: str,
    body: AdminUserPatch,
    current_user: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> UserEnvelope:
    """Update a user's name, email, or role. Admin only.

    Demoting the last remaining admin is refused -- there would be no way
    back without database access.
    """
    if body.name is None and body.email is None and body.role is None:
        raise ValidationError("No fields to update.")

    target = service.get_user(user_id)
    if body.role == Role.user and target.role == Role.admin and service.store.count_admins() <= 1:
        raise ValidationError("Cannot demote the last admin account.")

    user = target
    if body.name is not None or body.email is not None:
        user = service.update_profile(user_id, name=body.name, email=body.email)
    if body.role is not None:
        user = service.set_role(user_id, body.role)
    return UserEnvelope(user=UserResponse.from_user(user))


@router.delete("/admin/user/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: str,
    current_user: User = Depends(require_admin),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    if user_id == current_user.id:
        raise ValidationError("You cannot delete your own account.")
    service.delete_user(user_id)
    return MessageResponse(message="User Deleted Successfully")
