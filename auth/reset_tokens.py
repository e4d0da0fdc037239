"""
auth/reset_tokens.py -- Password-reset token generation and digesting.

The raw token goes into the emailed reset link and is never persisted. The
store keeps only SHA-256(raw_token), so a leaked users table cannot be used
to forge a reset request.

SHA-256 rather than bcrypt: the raw token carries 160 bits of entropy, so a
fast deterministic digest is safe and lets the store look the user up by
digest directly.
"""

from __future__ import annotations

import hashlib
import secrets

_TOKEN_BYTES = 20


class ResetTokenCodec:
    def generate(self) -> tuple[str, str]:
        """Return (raw_token, token_digest): 40 hex chars and their 64-char SHA-256 hex digest."""
        raw_token = secrets.token_hex(_TOKEN_BYTES)
        return raw_token, self.digest_of(raw_token)

    def digest_of(self, raw_token: str) -> str:
        return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()
