"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user is the mapper. Service and route code never touches SQL directly,
and nothing else writes the credential columns.

Password hashing is an explicit step in each write path that carries a new
plaintext password (create, consume_reset_token, update_password). There is
no save hook: a write that does not carry a password never touches
password_hash, so an existing digest is never re-hashed.

Reset token columns are only ever written together, in a single UPDATE, so
they are both NULL or both set.

consume_reset_token is one conditional UPDATE keyed on the stored digest and
expiry. When two requests present the same token, the database serializes the
UPDATEs and exactly one of them matches a row.

Security:
  All queries use bound parameters. No f-strings in SQL.
  password_hash is left out of every SELECT unless include_password=True.

Layer rule: no imports from api/, mail/, or media/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import Column, Float, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import AvatarRef, Role, User
from auth.passwords import PasswordHasher
from core.errors import InternalError, NotFoundError, ValidationError

logger = logging.getLogger("kindiyo.auth")

NAME_MIN_LENGTH = 4
NAME_MAX_LENGTH = 30
PASSWORD_MIN_LENGTH = 8
# bcrypt refuses anything longer.
PASSWORD_MAX_BYTES = 72

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("name", String(NAME_MAX_LENGTH), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(10), nullable=False, server_default=Role.user.value),
    Column("avatar_id", String(255), nullable=False),
    Column("avatar_url", Text, nullable=False),
    Column("reset_password_token_hash", String(64), index=True),
    Column("reset_password_expire", Float),  # epoch seconds, UTC
    Column("created_at", String(32), nullable=False),
)

# Every column except the password digest -- the default projection.
_public_columns = [c for c in _users.c if c.name != "password_hash"]


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind a writer."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _validate_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Please Enter your name")
    if len(name) > NAME_MAX_LENGTH:
        raise ValidationError(f"Name cannot exceed {NAME_MAX_LENGTH} characters")
    if len(name) < NAME_MIN_LENGTH:
        raise ValidationError(f"Name should be at least {NAME_MIN_LENGTH} characters")
    return name


def _validate_email(email: str | None) -> str:
    email = (email or "").strip()
    if not email:
        raise ValidationError("Please Enter your Email")
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError("Please Enter a valid email") from exc
    return email


def _validate_password(password: str | None) -> str:
    if not password:
        raise ValidationError("Please Enter your password")
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValidationError(f"Password should be at least {PASSWORD_MIN_LENGTH} characters")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise ValidationError(f"Password cannot exceed {PASSWORD_MAX_BYTES} bytes")
    return password


def _to_epoch(moment: datetime) -> float:
    return moment.timestamp()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User accounts and their credential fields.

    Usage:
        store = CredentialStore(PasswordHasher())
        user = store.create("Alice Wonder", "alice@example.com", "Secret123", avatar)
        same = store.find_by_email("alice@example.com", include_password=True)
        store.close()
    """

    def __init__(self, hasher: PasswordHasher, db_url: str = "sqlite:///:memory:") -> None:
        self._hasher = hasher
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    def _hash_new_password(self, plaintext: str) -> str:
        """Validate and hash a password that is about to replace the stored digest."""
        return self._hasher.hash(_validate_password(plaintext))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _select(self, include_password: bool):
        return select(_users) if include_password else select(*_public_columns)

    def find_by_email(self, email: str, include_password: bool = False) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(
                self._select(include_password).where(_users.c.email == (email or "").strip())
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str, include_password: bool = False) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(self._select(include_password).where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_reset_token(self, token_digest: str, now: datetime) -> User | None:
        """Return the user holding token_digest if its expiry is still after now."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(*_public_columns).where(
                    (_users.c.reset_password_token_hash == token_digest)
                    & (_users.c.reset_password_expire > _to_epoch(now))
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, oldest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(select(*_public_columns).order_by(_users.c.created_at, _users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def count_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.role == Role.admin.value)
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        name: str,
        email: str,
        plaintext_password: str,
        avatar: AvatarRef,
        role: Role = Role.user,
    ) -> User:
        """Insert a new user and return it (without the password digest).

        Raises ValidationError on any field constraint or a duplicate email.
        The unique index decides duplicates, so two concurrent registrations
        with one email cannot both succeed.
        """
        name = _validate_name(name)
        email = _validate_email(email)
        password_hash = self._hash_new_password(plaintext_password)
        user_id = uuid.uuid4().hex
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        name=name,
                        email=email,
                        password_hash=password_hash,
                        role=Role(role).value,
                        avatar_id=avatar.id,
                        avatar_url=avatar.url,
                        created_at=datetime.now(timezone.utc).isoformat(),
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise ValidationError("Email is already registered") from exc
        created = self.find_by_id(user_id)
        if created is None:
            raise InternalError("User not found after write.")
        return created

    def set_reset_token(self, user_id: str, token_digest: str, expiry: datetime) -> None:
        """Store an outstanding reset token digest and its expiry in one write.

        No entity validation runs here: an account whose other fields no
        longer pass validation must still be able to reset its password.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(reset_password_token_hash=token_digest, reset_password_expire=_to_epoch(expiry))
            )
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError("User not found")

    def clear_reset_token(self, user_id: str, token_digest: str | None = None) -> None:
        """Null both reset token columns.

        With token_digest, only clears if that digest is still the stored one,
        so cancelling a token never wipes a newer one issued meanwhile.
        """
        stmt = _users.update().where(_users.c.id == user_id)
        if token_digest is not None:
            stmt = stmt.where(_users.c.reset_password_token_hash == token_digest)
        with self.engine.connect() as conn:
            conn.execute(stmt.values(reset_password_token_hash=None, reset_password_expire=None))
            conn.commit()

    def consume_reset_token(self, user_id: str, token_digest: str, new_plaintext_password: str, now: datetime) -> bool:
        """Replace the password and clear the token, only if the token is still live.

        Returns True if this call consumed the token, False if it was already
        consumed, cancelled, replaced, or expired by the time the UPDATE ran.
        """
        password_hash = self._hash_new_password(new_plaintext_password)
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.reset_password_token_hash == token_digest)
                    & (_users.c.reset_password_expire > _to_epoch(now))
                )
                .values(
                    password_hash=password_hash,
                    reset_password_token_hash=None,
                    reset_password_expire=None,
                )
            )
            conn.commit()
        return result.rowcount == 1

    def update_password(self, user_id: str, new_plaintext_password: str) -> None:
        """Replace the password digest. Reset token columns are left as they are."""
        password_hash = self._hash_new_password(new_plaintext_password)
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError("User not found")

    def update_profile(self, user_id: str, name: str | None = None, email: str | None = None) -> User:
        """Change name and/or email. Validated like create(); credential columns untouched."""
        values: dict = {}
        if name is not None:
            values["name"] = _validate_name(name)
        if email is not None:
            values["email"] = _validate_email(email)
        if values:
            try:
                with self.engine.connect() as conn:
                    result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
                    conn.commit()
            except IntegrityError as exc:
                raise ValidationError("Email is already registered") from exc
            if result.rowcount == 0:
                raise NotFoundError("User not found")
        user = self.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def set_role(self, user_id: str, role: Role) -> User:
        try:
            role = Role(role)
        except ValueError as exc:
            raise ValidationError(f"Unknown role: {role!r}") from exc
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(role=role.value))
            conn.commit()
        if result.rowcount == 0:
            raise NotFoundError("User not found")
        user = self.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def delete(self, user_id: str) -> bool:
        """Permanently delete a user record. Returns True if deleted, False if not found."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    # password_hash is absent from rows fetched with the public projection.
    expire = row.reset_password_expire
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        role=Role(row.role),
        avatar=AvatarRef(id=row.avatar_id, url=row.avatar_url),
        password_hash=getattr(row, "password_hash", None),
        reset_password_token_hash=row.reset_password_token_hash,
        reset_password_expire=datetime.fromtimestamp(expire, tz=timezone.utc) if expire is not None else None,
        created_at=datetime.fromisoformat(row.created_at),
    )
