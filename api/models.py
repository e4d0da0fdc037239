"""
API request and response models for the account endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
domain representation. Route handlers map between the two.

Field-level checks here are limited to shape (types, max lengths). Business
rules -- name length window, email format, password minimum -- are enforced
by CredentialStore so every caller gets them, and surface as 400s.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import Role, User
from media.avatars import MAX_AVATAR_BYTES

# bcrypt only reads the first 72 bytes.
_PASSWORD_MAX = 72
# Base64 of the largest accepted image plus room for the data URI prefix.
_AVATAR_URI_MAX = 4 * ((MAX_AVATAR_BYTES + 2) // 3) + 64

# Passwords are never stripped: the hash must match what the user types.
StrippedStr = Annotated[str, StringConstraints(strip_whitespace=True, max_length=255)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/register.

    avatar is an optional base64 image data URI; accounts without one get a
    placeholder.
    """

    name: StrippedStr = ""
    email: StrippedStr = ""
    password: str = Field(default="", max_length=_PASSWORD_MAX)
    avatar: Optional[str] = Field(default=None, max_length=_AVATAR_URI_MAX)


class LoginRequest(BaseModel):
    # Empty fields are allowed through so the service can answer with its
    # own 400 message instead of a 422. No length cap on password: an
    # overlong one is just a wrong password.
    email: str = Field(default="", max_length=255)
    password: str = ""


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(default="", max_length=255)


class ResetPasswordRequest(BaseModel):
    password: str = Field(default="", max_length=_PASSWORD_MAX)
    confirmPassword: str = Field(default="", max_length=_PASSWORD_MAX)


class UpdatePasswordRequest(BaseModel):
    oldPassword: str = ""
    newPassword: str = Field(default="", max_length=_PASSWORD_MAX)
    confirmPassword: str = Field(default="", max_length=_PASSWORD_MAX)


class ProfilePatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)


class AdminUserPatch(ProfilePatch):
    role: Optional[Role] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AvatarOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    public_id: str
    url: str


class UserResponse(BaseModel):
    """Public view of a user. Never carries the password or reset token digest."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    role: Role
    avatar: AvatarOut
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            avatar=AvatarOut(public_id=user.avatar.id, url=user.avatar.url),
            created_at=user.created_at,
        )


class SessionResponse(BaseModel):
    """Returned by every operation that issues a session.

    The token is also set as an httpOnly cookie; the body copy is for API
    clients that send it back as a Bearer header.
    """

    model_config = ConfigDict(frozen=True)

    success: bool = True
    token: str
    expires_at: datetime
    user: UserResponse


class UserEnvelope(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    user: UserResponse


class UserListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    users: list[UserResponse]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
