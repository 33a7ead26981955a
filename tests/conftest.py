"""
tests/conftest.py -- Shared test fixtures for authcore.

This module provides:
  - FakeClock / clock: a controllable UTC clock injected into every component
  - config: an AuthConfig with fixed secrets and the cheapest bcrypt cost
  - engine: a file-backed SQLite engine under tmp_path, one per test
  - notifier: a RecordingNotifier that captures recovery secrets
  - service / make_user: a wired AuthService and a user factory
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: file-backed SQLite (not :memory:) is required because the
concurrency tests and TestClient run work in other threads. A plain
:memory: DB is per-connection and would present a blank schema to each
pooled connection; a file under tmp_path is shared and still isolated per
test.

DEBUG and the HTTP-binding settings must be set before any api/ import so
get_settings() auto-generates secrets in dev mode rather than raising
ValueError, and so TestClient's "testserver" host passes TrustedHost.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set these before any api/core import (get_settings() is cached).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from auth.config import AuthConfig
from auth.models import Purpose, User
from auth.notify import RecoveryPayload
from auth.schema import create_db_engine
from auth.service import AuthService

ACCESS_SECRET = "test-access-secret-0123456789abcdef0123456789"
REFRESH_SECRET = "test-refresh-secret-0123456789abcdef012345678"
PASSWORD = "correct horse battery"

# ---------------------------------------------------------------------------
# Collaborator doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when a test says so.

    Starts on a whole second so JWT iat/exp (integer seconds) line up
    exactly with the instants tests compute.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    """Captures every send() so tests can read the plaintext secret."""

    def __init__(self) -> None:
        self.sent: list[tuple[Purpose, str, RecoveryPayload]] = []

    def send(self, purpose: Purpose, email: str, payload: RecoveryPayload) -> None:
        self.sent.append((purpose, email, payload))

    def last_secret(self, purpose: Purpose) -> str:
        for sent_purpose, _email, payload in reversed(self.sent):
            if sent_purpose is purpose:
                return payload.secret
        raise AssertionError(f"no {purpose.value} message was sent")


class FailingNotifier:
    def send(self, purpose: Purpose, email: str, payload: RecoveryPayload) -> None:
        raise ConnectionError("smtp relay unreachable")


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> AuthConfig:
    return AuthConfig(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        max_sessions=5,
        bcrypt_rounds=4,
    )


@pytest.fixture
def engine(tmp_path) -> Generator[Engine, None, None]:
    eng = create_db_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(config: AuthConfig, engine: Engine, notifier: RecordingNotifier, clock: FakeClock) -> AuthService:
    return AuthService(config, engine, notifier=notifier, clock=clock)


@pytest.fixture
def make_user(service: AuthService) -> Callable[..., int]:
    """Return a factory that inserts a user with PASSWORD and returns its id."""

    def _make(email: str = "alice@example.com", password: str = PASSWORD, **fields) -> int:
        return service.users.create_user(User(email=email, hashed_password=service.hasher.hash(password), **fields))

    return _make


# ---------------------------------------------------------------------------
# HTTP binding
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test service into app.state so TestClient routes see
    the isolated test DB rather than the configured DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture
def api_client(
    config: AuthConfig, engine: Engine, notifier: RecordingNotifier
) -> Generator[tuple[TestClient, AuthService, RecordingNotifier], None, None]:
    """Yield (client, service, notifier) for API integration tests.

    The service uses the real clock: tokens cross the HTTP boundary and are
    verified against wall time. A user alice@example.com / PASSWORD exists.
    """
    from api.main import app

    api_service = AuthService(config, engine, notifier=notifier)
    api_service.users.create_user(User(email="alice@example.com", hashed_password=api_service.hasher.hash(PASSWORD)))

    app.router.lifespan_context = _patch_lifespan(api_service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, api_service, notifier
