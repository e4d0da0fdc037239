"""
tests/conftest.py -- Shared fixtures for the account service tests.

This module provides:
  - FakeClock / RecordingMailer / RecordingCodec: injectable collaborators
  - make_service(): builds an AuthService graph over a given SQLite URL
  - service: function-scoped AuthService over a private in-memory DB
  - api_client: module-scoped TestClient wired to an isolated shared-memory DB

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API client because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

Environment variables must be set before any api/ import: the routes module
reads get_settings() at import time, and the settings singleton refuses to
start without a SECRET_KEY unless DEBUG is on.
"""

from __future__ import annotations

import os
import re
import tempfile
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any api/ or core.config consumer is imported.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("PASSWORD_RESET_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "1000/minute")
# Served by the /media/avatars static mount built at api.main import time.
os.environ.setdefault("AVATAR_DIR", tempfile.mkdtemp(prefix="kindiyo-avatars-"))

import pytest

from auth.models import AvatarRef, Role
from auth.passwords import PasswordHasher
from auth.reset_tokens import ResetTokenCodec
from auth.service import AuthService
from auth.sessions import SessionIssuer
from auth.store import CredentialStore
from mail.sender import MailDeliveryError, MailMessage

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"
# Minimum bcrypt cost keeps the suite fast; the scheme is unchanged.
TEST_ROUNDS = 4

AVATAR = AvatarRef(id="avatars/test", url="https://cdn.example.com/avatars/test.png")

_RESET_LINK = re.compile(r"/password/reset/([0-9a-f]{40})")


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Mutable clock: tests move time with advance() instead of sleeping."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@dataclass
class RecordingMailer:
    """Records every message. Set fail=True to make send() raise."""

    fail: bool = False
    sent: list[MailMessage] = field(default_factory=list)

    def send(self, message: MailMessage) -> None:
        if self.fail:
            raise MailDeliveryError("SMTP relay unavailable")
        self.sent.append(message)

    def last_reset_token(self) -> str:
        match = _RESET_LINK.search(self.sent[-1].body)
        assert match is not None, self.sent[-1].body
        return match.group(1)


class RecordingCodec(ResetTokenCodec):
    """Remembers every raw token it generates, even ones never emailed."""

    def __init__(self) -> None:
        self.issued: list[str] = []

    def generate(self) -> tuple[str, str]:
        raw_token, token_digest = super().generate()
        self.issued.append(raw_token)
        return raw_token, token_digest


# ---------------------------------------------------------------------------
# Service graph
# ---------------------------------------------------------------------------


def make_service(db_url: str = "sqlite:///:memory:", clock: FakeClock | None = None) -> AuthService:
    clock = clock or FakeClock()
    hasher = PasswordHasher(rounds=TEST_ROUNDS)
    return AuthService(
        store=CredentialStore(hasher, db_url=db_url),
        hasher=hasher,
        codec=RecordingCodec(),
        sessions=SessionIssuer(TEST_SECRET, ttl_seconds=3600, clock=clock),
        mailer=RecordingMailer(),
        clock=clock,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(clock: FakeClock) -> Generator[AuthService, None, None]:
    svc = make_service(clock=clock)
    yield svc
    svc.store.close()


@pytest.fixture
def alice(service: AuthService):
    """A registered shopper account with a known password."""
    user, _session = service.register("Alice Wonder", "alice@example.com", "Secret123", AVATAR)
    return user


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return a lifespan that installs the test service instead of the real one."""
    from core.config import get_settings
    from media.avatars import LocalAvatarHost

    settings = get_settings()

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        app.state.avatar_host = LocalAvatarHost(settings.avatar_dir, settings.avatar_base_url)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple, None, None]:
    """Yield (client, admin_token, admin_id, service) for API integration tests.

    The admin account (admin@kindiyo.com / adminpass123) is created before
    the client starts. The service uses the real clock so issued cookies are
    valid for the TestClient.
    """
    from fastapi.testclient import TestClient

    from api.main import app
    from core.clock import utc_now

    # One named DB per test module so module-scoped clients never share rows.
    db_name = f"test_auth_{request.module.__name__.rsplit('.', 1)[-1]}"
    db_url = f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true"
    hasher = PasswordHasher(rounds=TEST_ROUNDS)
    svc = AuthService(
        store=CredentialStore(hasher, db_url=db_url),
        hasher=hasher,
        codec=RecordingCodec(),
        sessions=SessionIssuer(TEST_SECRET, ttl_seconds=3600, clock=utc_now),
        mailer=RecordingMailer(),
    )
    admin = svc.store.create("Store Admin", "admin@kindiyo.com", "adminpass123", AVATAR)
    svc.store.set_role(admin.id, Role.admin)
    token = svc.sessions.issue(admin.id).token

    app.router.lifespan_context = _patch_lifespan(svc)

    with TestClient(app, base_url="http://localhost", raise_server_exceptions=True) as client:
        yield client, token, admin.id, svc

    svc.store.close()
