"""
tests/conftest.py -- Shared test fixtures for Seedgate.

This module provides:
  - FakeClock / clock: an adjustable UTC clock injected into every store, so
    expiry tests move time instead of sleeping
  - db + users/sessions/pending stores over a plain in-memory SQLite database
  - RecordingMailer: an EmailSender that records messages instead of sending
  - api: a TestClient over the real app with a patched lifespan, wired to an
    isolated named shared-memory database

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixture because TestClient runs route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Store-level fixtures run on one thread and use :memory:.

DEBUG and a low PBKDF2_ITERATIONS must be set before any auth/core import so
get_settings() accepts the reduced work factor.
"""

from __future__ import annotations

import asyncio
import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("PBKDF2_ITERATIONS", "1000")

import pytest
from fastapi.testclient import TestClient

from api.main import app, wire_services
from auth.database import Database
from auth.models import User
from auth.passwords import hash_new_password
from auth.pending import PendingStore
from auth.permissions import ADMIN_PRESET, ROOT, USER_PRESET
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings
from core.mailer import SendResult

TEST_ITERATIONS = 1000
DEFAULT_PASSWORD = "correct-horse-battery"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable returning a fixed UTC instant that tests can move forward."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db() -> Generator[Database, None, None]:
    database = Database("sqlite:///:memory:")
    yield database
    database.close()


@pytest.fixture
def users(db: Database, clock: FakeClock) -> UserStore:
    return UserStore(db, clock=clock)


@pytest.fixture
def sessions(db: Database, clock: FakeClock) -> SessionStore:
    return SessionStore(db, clock=clock)


@pytest.fixture
def pending(db: Database, clock: FakeClock) -> PendingStore:
    return PendingStore(db, clock=clock)


def make_user(
    store: UserStore,
    name: str,
    email: str | None = None,
    permissions: int = USER_PRESET,
    password: str = DEFAULT_PASSWORD,
) -> User:
    """Insert a user with a real (low work factor) credential and return it."""
    salt_hex, hash_hex = hash_new_password(password, TEST_ITERATIONS)
    user_id = store.create_user(
        User(
            name=name,
            email=email or f"{name}@example.com",
            password_salt=salt_hex,
            password_hash=hash_hex,
            permissions=permissions,
        )
    )
    return store.get_by_id(user_id)


# ---------------------------------------------------------------------------
# Mailer
# ---------------------------------------------------------------------------


@dataclass
class SentMessage:
    recipients: list[str]
    subject: str
    html: str


@dataclass
class RecordingMailer:
    """EmailSender double. fail=True makes every send report failure."""

    fail: bool = False
    sent: list[SentMessage] = field(default_factory=list)

    def send(self, recipients: list[str], subject: str, html: str) -> SendResult:
        if self.fail:
            return SendResult(success=False, error="simulated outage")
        self.sent.append(SentMessage(list(recipients), subject, html))
        return SendResult(success=True, message_id=f"msg-{len(self.sent)}")

    def last_token(self) -> str:
        """Extract the verification token from the most recent message."""
        match = re.search(r"token=([A-Za-z0-9_\-%]+)", self.sent[-1].html)
        assert match, f"No token in message: {self.sent[-1].html}"
        return match.group(1)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


@dataclass
class ApiHarness:
    client: TestClient
    mailer: RecordingMailer
    clock: FakeClock
    users: UserStore
    root: User
    admin: User
    member: User

    def login(self, identifier: str, password: str = DEFAULT_PASSWORD) -> str:
        """Log in through the API and return the session token.

        Cookies are cleared afterwards so each request states its credential
        explicitly through the Authorization header.
        """
        resp = self.client.post("/api/v1/auth/login", json={"identifier": identifier, "password": password})
        assert resp.status_code == 200, resp.text
        self.client.cookies.clear()
        return resp.json()["access_token"]

    @staticmethod
    def bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


def _patch_lifespan(db: Database, mailer: RecordingMailer, clock: FakeClock):
    """Return a lifespan that wires test doubles into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        wire_services(app, db, get_settings(), mailer, clock=clock)
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


@pytest.fixture
def api() -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness over a fresh database.

    Seeds three accounts: root (ROOT), admin (ADMIN_PRESET), member (USER_PRESET),
    all with DEFAULT_PASSWORD.
    """
    db = Database(f"sqlite:///file:seedgate_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    clock = FakeClock(datetime.now(timezone.utc))
    mailer = RecordingMailer()
    users = UserStore(db, clock=clock)
    root = make_user(users, "root", permissions=ROOT)
    admin = make_user(users, "admin", permissions=ADMIN_PRESET)
    member = make_user(users, "member")

    app.router.lifespan_context = _patch_lifespan(db, mailer, clock)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client, mailer, clock, users, root, admin, member)

    db.close()
