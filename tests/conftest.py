"""
tests/conftest.py -- Shared test fixtures for Acorn unit and integration tests.

This module provides:
  - engine / account_store / broker / mod_store: isolated stores on a fresh
    SQLite file under tmp_path
  - FakeClock: a hand-cranked clock for the temp login broker
  - FakeResolver: an in-memory identity resolver (no network)
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient against the real app with isolated stores
  - stored_tokens / mods_by_author: read back what the stores wrote

Design: a named SQLite file (not :memory:) is required because TestClient runs
sync route handlers in a thread pool and the concurrency tests start their own
threads. Every connection must see the same database, and file databases get
a real connection pool plus WAL locking, the same way production does.

DEBUG and RATE_LIMIT_ENABLED must be set before any acorn module import so
get_settings() auto-generates SECRET_KEY and the shared limiter starts
disabled.
"""

from __future__ import annotations

import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any auth/core import -- get_settings() is cached on first call.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("TEMP_TOKEN_SWEEP_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from api.main import app
from auth.broker import TempLoginBroker
from auth.discord import InvalidCodeError, InvalidGrantError
from auth.models import Account, ExternalIdentity, ExternalTokens
from auth.store import AccountStore
from auth.tokens import issue_access_token
from core.database import create_db_engine, metadata
from mods.models import Mod
from mods.store import ModStore

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeResolver:
    """In-memory stand-in for DiscordIdentityResolver.

    codes maps an OAuth code to the Discord access token it exchanges for;
    identities maps a Discord access token to the identity behind it. Unknown
    values fail the same way Discord does (client-caused errors).
    """

    def __init__(self) -> None:
        self.codes: dict[str, str] = {}
        self.identities: dict[str, ExternalIdentity] = {}
        self.resolve_calls = 0

    def add_user(self, external_id: str, display_name: str, access_token: str, code: str | None = None) -> None:
        self.identities[access_token] = ExternalIdentity(external_id=external_id, display_name=display_name)
        if code is not None:
            self.codes[code] = access_token

    def authorize_url(self, state: str | None = None) -> str:
        return "https://discord.com/oauth2/authorize?client_id=test&response_type=code"

    def exchange(self, code: str) -> ExternalTokens:
        if code not in self.codes:
            raise InvalidCodeError("unknown code")
        return ExternalTokens(access_token=self.codes[code])

    def resolve(self, access_token: str) -> ExternalIdentity:
        self.resolve_calls += 1
        if access_token not in self.identities:
            raise InvalidGrantError("unknown token")
        return self.identities[access_token]


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'acorn-test.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def account_store(engine) -> AccountStore:
    return AccountStore(engine)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broker(engine, account_store, clock) -> TempLoginBroker:
    return TempLoginBroker(engine, clock=clock)


@pytest.fixture
def mod_store(engine, account_store) -> ModStore:
    # account_store first: mods.author references accounts.username.
    return ModStore(engine)


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(engine, account_store: AccountStore, broker: TempLoginBroker, mod_store: ModStore, resolver):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see the
    isolated test database and the fake identity resolver. No sweeper task is
    started; tests call broker.sweep_expired() directly.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.account_store = account_store
        app.state.broker = broker
        app.state.mod_store = mod_store
        app.state.identity_resolver = resolver
        yield

    return test_lifespan


@pytest.fixture
def api_client(engine, account_store, mod_store, resolver) -> Generator[TestClient, None, None]:
    """Yield a TestClient running the real app on the isolated test stores.

    The broker uses the real clock here; expiry is covered by the broker unit
    tests with FakeClock.
    """
    app.router.lifespan_context = _patch_lifespan(engine, account_store, TempLoginBroker(engine), mod_store, resolver)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def make_user(account_store) -> Callable[..., tuple[str, str]]:
    """Factory: register an account directly in the store and return (username, raw access token)."""

    def _make(username: str, external_id: str | None = None) -> tuple[str, str]:
        account_store.create_account(Account(username=username, external_id=external_id or f"ext-{username}"))
        return username, issue_access_token(account_store, username, {"os": "test"})

    return _make


# ---------------------------------------------------------------------------
# Raw table readers
#
# The stores expose only what the service needs; tests that check what was
# actually written read the tables directly.
# ---------------------------------------------------------------------------


@pytest.fixture
def stored_tokens(engine, account_store) -> Callable[..., list]:
    """Factory: return access_tokens rows as stored, optionally for one username."""
    table = metadata.tables["access_tokens"]

    def _rows(username: str | None = None) -> list:
        stmt = table.select().order_by(table.c.created_at)
        if username is not None:
            stmt = stmt.where(table.c.username == username)
        with engine.connect() as conn:
            return conn.execute(stmt).fetchall()

    return _rows


@pytest.fixture
def mods_by_author(engine, mod_store) -> Callable[[str], list[Mod]]:
    """Factory: return every mod by author (metadata only) via ModStore.get_mod."""
    table = metadata.tables["mods"]

    def _mods(author: str) -> list[Mod]:
        with engine.connect() as conn:
            ids = conn.execute(select(table.c.id).where(table.c.author == author)).scalars().all()
        return [mod_store.get_mod(mod_id) for mod_id in ids]

    return _mods
