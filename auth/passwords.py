"""
auth/passwords.py -- One-way password hashing with bcrypt.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection builds a password longer than 72 bytes, which bcrypt 4.x rejects.

bcrypt.checkpw compares digests in constant time. Passwords longer than 72
bytes are truncated by bcrypt; the API layer caps password fields well below
that.
"""

from __future__ import annotations

import logging

import bcrypt

from core.errors import InternalError

logger = logging.getLogger("kindiyo.auth")

_DEFAULT_ROUNDS = 10


class PasswordHasher:
    """Salted bcrypt hash/verify with a fixed work factor."""

    def __init__(self, rounds: int = _DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Computed once so login can burn the same bcrypt cost for unknown
        # accounts as for real ones.
        self._dummy_hash = self.hash("kindiyo_timing_dummy")

    def hash(self, plaintext: str) -> str:
        try:
            return bcrypt.hashpw(plaintext.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        except (ValueError, TypeError) as exc:
            logger.error("bcrypt hashing failed: %s", type(exc).__name__)
            raise InternalError("Password hashing failed.") from exc

    def verify(self, plaintext: str, digest: str | None) -> bool:
        """Return True iff plaintext hashes to digest. Malformed digests return False."""
        if not digest:
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), digest.encode("utf-8"))
        except ValueError:
            return False

    def dummy_verify(self, plaintext: str) -> None:
        """Spend one verify's worth of time against a throwaway digest."""
        self.verify(plaintext, self._dummy_hash)
