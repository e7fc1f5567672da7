"""
tests/conftest.py -- Shared test fixtures for farmer-auth.

This module provides:
  - ManualClock / clock: a controllable UTC clock, anchored at the real
    current time (whole seconds) so expiry is deterministic
  - codec, user_store, refresh_store, sessions: unit-test wiring over
    private in-memory SQLite databases
  - user: one registered user
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient over the real FastAPI app with isolated stores

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

DEBUG and friends must be set before any auth/api import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

# CRITICAL: set before any auth/core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver"]')
os.environ.setdefault("SIGNUP_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REFRESH_RATE_LIMIT", "1000/minute")
os.environ.setdefault("CLEANUP_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.sessions import SessionManager
from auth.store import RefreshTokenStore, UserStore
from auth.tokens import TokenCodec
from core.clock import utc_now

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
ACCESS_TTL = 15 * 60
REFRESH_TTL = 24 * 60 * 60


class ManualClock:
    """A clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **delta: float) -> datetime:
        self.current += timedelta(**delta)
        return self.current


# ---------------------------------------------------------------------------
# Unit-test wiring
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(utc_now().replace(microsecond=0))


@pytest.fixture
def codec(clock: ManualClock) -> TokenCodec:
    return TokenCodec(
        TEST_SECRET,
        access_ttl_seconds=ACCESS_TTL,
        refresh_ttl_seconds=REFRESH_TTL,
        clock=clock,
    )


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def refresh_store() -> Generator[RefreshTokenStore, None, None]:
    store = RefreshTokenStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def sessions(codec: TokenCodec, refresh_store: RefreshTokenStore, user_store: UserStore) -> SessionManager:
    return SessionManager(codec, refresh_store, user_store)


@pytest.fixture
def user(user_store: UserStore) -> User:
    user_id = user_store.create_user(User(phone="+919800000001", name="Asha Patil", city="Nashik"))
    return user_store.get_by_id(user_id)


# ---------------------------------------------------------------------------
# API wiring
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, refresh_store: RefreshTokenStore, sessions: SessionManager):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured database. No sweep task is
    started; sweeping is tested directly.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.refresh_store = refresh_store
        app.state.sessions = sessions
        app.state.sweep_task = None
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, SessionManager], None, None]:
    """Yield (client, sessions) for API integration tests.

    Each test module gets its own named in-memory database, so phone numbers
    only need to be unique within a module.
    """
    db_name = request.module.__name__.rsplit(".", 1)[-1]
    url = f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(url)
    refresh_store = RefreshTokenStore(url)
    sessions = SessionManager(
        TokenCodec(TEST_SECRET, access_ttl_seconds=ACCESS_TTL, refresh_ttl_seconds=REFRESH_TTL),
        refresh_store,
        user_store,
    )

    app.router.lifespan_context = _patch_lifespan(user_store, refresh_store, sessions)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, sessions

    refresh_store.close()
    user_store.close()
