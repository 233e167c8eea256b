"""
tests/conftest.py -- Shared test fixtures for the storefront auth tests.

This module provides:
  - RecordingNotifier / FailingNotifier: in-process stand-ins for email delivery
  - make_settings(): Settings with fast bcrypt and fixed, distinct secrets
  - store / service: a fresh in-memory AuthStore and AuthService per test
  - api_client: TestClient with a patched lifespan for API integration tests

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit-test stores run on one thread, so :memory: is fine there.

DEBUG and BCRYPT_ROUNDS must be set before any api/ import so get_settings()
auto-generates the signing secrets and hashes cheaply.
"""

from __future__ import annotations

import os
import re
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any api/ or core/ import (api.main reads settings at import).
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_auth_service
from auth.service import AuthService
from auth.store import AuthStore
from core.config import Settings

_TOKEN_RE = re.compile(r"token=([0-9a-f]{64})")


# ---------------------------------------------------------------------------
# Notifier stand-ins
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Collects (to, subject, html) tuples instead of sending mail."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send(self, to: str, subject: str, html: str) -> None:
        self.sent.append((to, subject, html))

    def last_token(self, to: str | None = None, subject_prefix: str = "") -> str:
        """Return the token embedded in the most recent matching message's link."""
        for recipient, subject, html in reversed(self.sent):
            if (to is None or recipient == to) and subject.startswith(subject_prefix):
                match = _TOKEN_RE.search(html)
                assert match, f"No token link in message {subject!r}"
                return match.group(1)
        raise AssertionError(f"No message sent to {to!r} with subject prefix {subject_prefix!r}")


class FailingNotifier:
    """Raises on every send, like an unreachable SMTP server."""

    def __init__(self) -> None:
        self.attempts = 0

    def send(self, to: str, subject: str, html: str) -> None:
        self.attempts += 1
        raise ConnectionRefusedError("SMTP server unreachable")


# ---------------------------------------------------------------------------
# Settings / store / service
# ---------------------------------------------------------------------------


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "bcrypt_rounds": 4,
        "jwt_secret": "access-secret-for-tests-0123456789abcdef",
        "jwt_refresh_secret": "refresh-secret-for-tests-0123456789abcdef",
        "frontend_url": "http://shop.test",
        "app_name": "Test Shop",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def settings_factory():
    """Return make_settings so a test can override individual fields."""
    return make_settings


@pytest.fixture
def store() -> Generator[AuthStore, None, None]:
    s = AuthStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def failing_notifier() -> FailingNotifier:
    return FailingNotifier()


@pytest.fixture
def service(store: AuthStore, notifier: RecordingNotifier, settings: Settings) -> AuthService:
    return build_auth_service(store, settings, notifier=notifier)


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(store: AuthStore, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-built test collaborators into app.state so routes see an
    isolated database and a recording notifier. No purge task is started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = store
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, RecordingNotifier], None, None]:
    """Yield (client, notifier) for API integration tests.

    One client per test module; tests use distinct emails so they do not
    collide in the shared database. Rate limiting is switched off so the
    login limit does not trip across many tests.
    """
    store = AuthStore("sqlite:///file:test_auth_api?mode=memory&cache=shared&uri=true")
    notifier = RecordingNotifier()
    service = build_auth_service(store, make_settings(), notifier=notifier)

    app.router.lifespan_context = _patch_lifespan(store, service)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, notifier

    limiter.enabled = True
    store.close()
