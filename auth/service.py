"""
auth/service.py -- Account and credential workflows.

AuthService is the only caller of CredentialStore's credential writes. It
looks users up, hands hashing and token work to PasswordHasher /
ResetTokenCodec, and asks SessionIssuer for a session on every successful
authentication.

Reset-token lifecycle, per user:

    Absent --forgot_password--> Issued --reset_password--> Absent (consumed)
                                   |--expiry passes------> unusable until replaced
                                   '--mail send fails----> Absent (cancelled)

A user holds at most one outstanding token: forgot_password overwrites any
previous digest.

Error policy: every step raises to the caller. The one local recovery is in
forgot_password, which clears the just-written token before reporting a mail
failure so a failed email never leaves a live token behind.

Layer rule: no imports from api/. The mailer is injected (mail.sender.Mailer).
"""

from __future__ import annotations

import logging
from datetime import timedelta

from auth.models import AvatarRef, Role, SessionToken, User
from auth.passwords import PasswordHasher
from auth.reset_tokens import ResetTokenCodec
from auth.sessions import SessionIssuer
from auth.store import CredentialStore
from core.clock import Clock, utc_now
from core.errors import (
    AuthenticationError,
    ExpiredOrInvalidToken,
    InternalError,
    NotFoundError,
    ValidationError,
)
from mail.sender import Mailer, MailMessage

logger = logging.getLogger("kindiyo.auth")

_DEFAULT_RESET_TTL = 15 * 60


class AuthService:
    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        codec: ResetTokenCodec,
        sessions: SessionIssuer,
        mailer: Mailer,
        clock: Clock = utc_now,
        reset_ttl_seconds: int = _DEFAULT_RESET_TTL,
        store_name: str = "Kindiyo",
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.codec = codec
        self.sessions = sessions
        self.mailer = mailer
        self.clock = clock
        self.reset_ttl = timedelta(seconds=reset_ttl_seconds)
        self.store_name = store_name

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str, avatar: AvatarRef) -> tuple[User, SessionToken]:
        user = self.store.create(name, email, password, avatar)
        logger.info("Registered user id=%s", user.id)
        return user, self.sessions.issue(user.id)

    def login(self, email: str, password: str) -> tuple[User, SessionToken]:
        """Verify email + password and issue a session.

        Unknown email and wrong password fail with the same error, and both
        run one bcrypt verify so response time does not reveal which it was.
        """
        if not email or not password:
            raise ValidationError("Please Enter Email and Password")

        user = self.store.find_by_email(email, include_password=True)
        if user is None:
            self.hasher.dummy_verify(password)
            logger.info("Login failed: unknown account")
            raise AuthenticationError("Invalid email or password")
        if not self.hasher.verify(password, user.password_hash):
            logger.info("Login failed: bad password for user id=%s", user.id)
            raise AuthenticationError("Invalid email or password")

        return _without_password(user), self.sessions.issue(user.id)

    def logout(self) -> None:
        """Nothing to do server-side: sessions are not tracked.

        The route replaces the session cookie with an expired one. A copy of
        the token held elsewhere stays valid until it expires.
        """

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str, reset_url_base: str) -> str:
        """Issue a reset token and email its link. Returns the recipient address.

        reset_url_base is the public URL prefix; the raw token is appended as
        the last path segment.
        """
        user = self.store.find_by_email(email)
        if user is None:
            raise NotFoundError("User not found")

        raw_token, token_digest = self.codec.generate()
        expiry = self.clock() + self.reset_ttl
        self.store.set_reset_token(user.id, token_digest, expiry)

        reset_url = f"{reset_url_base.rstrip('/')}/{raw_token}"
        message = MailMessage(
            to=user.email,
            subject=f"{self.store_name} Password Recovery",
            body=(
                f"Your password reset link is:\n\n{reset_url}\n\n"
                "If you have not requested this email, please ignore it."
            ),
        )
        try:
            self.mailer.send(message)
        except Exception as exc:
            self.store.clear_reset_token(user.id, token_digest)
            logger.warning("Reset email to user id=%s failed, token cancelled", user.id)
            raise InternalError(f"Reset email delivery failed: {exc}") from exc

        logger.info("Reset token issued for user id=%s (expires %s)", user.id, expiry.isoformat())
        return user.email

    def reset_password(self, raw_token: str, new_password: str, confirm_password: str) -> tuple[User, SessionToken]:
        now = self.clock()
        token_digest = self.codec.digest_of(raw_token or "")
        user = self.store.find_by_reset_token(token_digest, now)
        if user is None:
            raise ExpiredOrInvalidToken()

        if new_password != confirm_password:
            raise ValidationError("Passwords not matched")

        if not self.store.consume_reset_token(user.id, token_digest, new_password, now):
            # Another request consumed or replaced the token between the
            # lookup and the conditional update.
            raise ExpiredOrInvalidToken()

        logger.info("Reset token consumed for user id=%s", user.id)
        user.reset_password_token_hash = None
        user.reset_password_expire = None
        return user, self.sessions.issue(user.id)

    # ------------------------------------------------------------------
    # Authenticated self-service
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str) -> User:
        user = self.store.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def update_password(
        self, user_id: str, old_password: str, new_password: str, confirm_password: str
    ) -> tuple[User, SessionToken]:
        """Change the password after re-checking the old one. Existing sessions stay valid."""
        user = self.store.find_by_id(user_id, include_password=True)
        if user is None:
            raise NotFoundError("User not found")
        if not self.hasher.verify(old_password or "", user.password_hash):
            raise AuthenticationError("Old password is incorrect")
        if new_password != confirm_password:
            raise ValidationError("Password does not match")

        self.store.update_password(user_id, new_password)
        logger.info("Password updated for user id=%s", user_id)
        return _without_password(user), self.sessions.issue(user_id)

    def update_profile(self, user_id: str, name: str | None = None, email: str | None = None) -> User:
        return self.store.update_profile(user_id, name=name, email=email)

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def list_users(self) -> list[User]:
        return self.store.list_users()

    def get_user(self, user_id: str) -> User:
        user = self.store.find_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User does not exist with id: {user_id}")
        return user

    def set_role(self, user_id: str, role: Role) -> User:
        user = self.store.set_role(user_id, role)
        logger.info("Role of user id=%s set to %s", user_id, user.role.value)
        return user

    def delete_user(self, user_id: str) -> None:
        if not self.store.delete(user_id):
            raise NotFoundError(f"User does not exist with id: {user_id}")
        logger.info("Deleted user id=%s", user_id)


def _without_password(user: User) -> User:
    user.password_hash = None
    return user
