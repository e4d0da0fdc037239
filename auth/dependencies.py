"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session token is read from, in priority order:
  1. the "token" cookie -- set by register/login/reset/update-password.
  2. Authorization: Bearer <token> -- API clients that keep the token themselves.

get_current_user() raises InvalidSession (401) when neither yields a valid
token for an existing user. require_admin() additionally raises
ForbiddenError (403) for non-admins. Both surface through the AppError
handler in api/main.py.

auth/dependencies.py may import from fastapi because this module is part of
the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import Role, User
from auth.service import AuthService
from auth.sessions import SESSION_COOKIE
from core.errors import ForbiddenError, InvalidSession


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _read_token(request: Request) -> str | None:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return None


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/me")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _read_token(request)
    if not token:
        raise InvalidSession()
    service = get_auth_service(request)
    user_id = service.sessions.verify(token)
    user = service.store.find_by_id(user_id)
    if user is None:
        # Token outlived its account (admin delete).
        raise InvalidSession()
    return user


def require_admin(request: Request) -> User:
    user = get_current_user(request)
    if user.role != Role.admin:
        raise ForbiddenError(f"Role: {user.role.value} is not allowed to access this resource")
    return user
