"""
auth/models.py -- Domain dataclasses for account entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store and the service do the work.

Layer rule: no imports from api/, mail/, or media/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    user = "user"
    admin = "admin"


@dataclass(frozen=True)
class AvatarRef:
    """Opaque pointer to an externally hosted profile image."""

    id: str
    url: str


@dataclass
class User:
    """A storefront account.

    password_hash is None unless the read explicitly asked for it
    (CredentialStore.find_by_*(include_password=True)). Only verification
    paths should ever do that.

    reset_password_token_hash / reset_password_expire are set together by
    forgot-password and cleared together by reset-password or rollback.
    """

    id: str
    name: str
    email: str
    avatar: AvatarRef
    role: Role = Role.user
    password_hash: str | None = None
    reset_password_token_hash: str | None = None
    reset_password_expire: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class SessionToken:
    """A signed, time-limited session credential. Never stored server-side.

    token is the compact JWT; its signature covers user_id and both timestamps.
    """

    user_id: str
    issued_at: datetime
    expires_at: datetime
    token: str

    @property
    def max_age(self) -> int:
        """Seconds until expiry, used as the cookie max-age."""
        return max(0, int((self.expires_at - self.issued_at).total_seconds()))
