"""
auth/sessions.py -- Signed session tokens and their cookie transport.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user id), iat, and exp. Any edit to the payload breaks the
       signature.

  Expiry: jose's own exp check reads the system clock, so it is disabled and
       exp is compared against the injected Clock instead. Tests can then move
       time forward without sleeping.

  Revocation: not supported. Logout discards the cookie client-side; a copied
       token stays valid until exp. A per-user generation counter in the
       payload, checked in verify(), is the place to add revocation later.

Layer rule: no imports from api/, mail/, or media/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import SessionToken
from core.clock import Clock, utc_now
from core.errors import InvalidSession

logger = logging.getLogger("kindiyo.auth")

_ALGORITHM = "HS256"

SESSION_COOKIE = "token"


class SessionIssuer:
    """Mints and validates HS256 session tokens."""

    def __init__(self, secret_key: str, ttl_seconds: int, clock: Clock = utc_now) -> None:
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def issue(self, user_id: str) -> SessionToken:
        # JWT NumericDate has one-second resolution; truncate so the returned
        # value matches what verify() will read back.
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + timedelta(seconds=self.ttl_seconds)
        payload = {
            "sub": user_id,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        return SessionToken(user_id=user_id, issued_at=issued_at, expires_at=expires_at, token=token)

    def verify(self, token: str) -> str:
        """Return the user id carried by a valid token. Raises InvalidSession otherwise."""
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[_ALGORITHM],
                options={"verify_exp": False, "verify_iat": False},
            )
        except JWTError as exc:
            raise InvalidSession() from exc

        user_id = payload.get("sub")
        exp = payload.get("exp")
        if not isinstance(user_id, str) or not isinstance(exp, (int, float)):
            raise InvalidSession()
        if self._clock() > datetime.fromtimestamp(exp, tz=timezone.utc):
            raise InvalidSession()
        return user_id


# ---------------------------------------------------------------------------
# Cookie transport
# ---------------------------------------------------------------------------


def set_session_cookie(response, session: SessionToken, secure: bool = False) -> None:
    """Write the session token as an httpOnly cookie expiring with the token.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST.
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=session.token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=session.max_age,
    )


def clear_session_cookie(response, secure: bool = False) -> None:
    """Replace the session cookie with an empty, already-expired one."""
    response.set_cookie(
        SESSION_COOKIE,
        value="",
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=0,
        expires=0,
    )
