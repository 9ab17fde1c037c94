"""
tests/conftest.py -- Shared test fixtures for the auth service.

This module provides:
  - FakeClock / clock: a settable clock for the codec and revocation registry
  - codec, registry: unit-level auth components driven by the fake clock
  - user_store: an isolated named shared-memory SQLite UserStore
  - client: TestClient over the real app with a patched lifespan, fresh DB,
    fresh revocation registry and an empty cookie jar per test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because the authenticator resolves users in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.

Environment variables must be set before any core/auth/api import so
get_settings() sees a valid JWT_SECRET, a host list that accepts TestClient's
"testserver", and a rate limit high enough not to trip during the suite.
"""

from __future__ import annotations

import base64
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: configure the environment before any app import.
TEST_SECRET = base64.b64encode(b"expense-tracker-test-signing-key-0123456789").decode()
os.environ.setdefault("JWT_SECRET", TEST_SECRET)
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi import APIRouter, Depends
from fastapi.testclient import TestClient

from api.main import app, build_auth_state
from auth.dependencies import require_principal
from auth.models import Principal
from auth.revocation import RevocationRegistry
from auth.store import UserStore
from auth.tokens import TokenCodec
from core.config import get_settings

LIFETIME = timedelta(milliseconds=86_400_000)

# ---------------------------------------------------------------------------
# A protected page route, standing in for the page layer that mounts onto the
# app in production. Lets tests observe the interactive (redirect) branch.
# ---------------------------------------------------------------------------

_pages = APIRouter()


@_pages.get("/dashboard")
async def _dashboard(principal: Principal = Depends(require_principal)) -> dict:
    return {"username": principal.username}


app.include_router(_pages)


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def signing_key() -> bytes:
    return base64.b64decode(TEST_SECRET)


@pytest.fixture
def codec(clock: FakeClock, signing_key: bytes) -> TokenCodec:
    return TokenCodec(signing_key, LIFETIME, clock=clock)


@pytest.fixture
def registry(clock: FakeClock) -> RevocationRegistry:
    return RevocationRegistry(clock=clock)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_store() -> UserStore:
    """Create an isolated named shared-memory SQLite store.

    Named URIs allow multiple connections (from different threads) to access
    the same in-memory database. The random suffix keeps tests isolated.
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = _make_test_store()
    yield store
    store.close()


def _patch_lifespan(user_store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store into app.state through the same build_auth_state()
    the real lifespan uses, so routes see a fresh revocation registry and an
    isolated database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_auth_state(app, get_settings(), user_store)
        yield

    return test_lifespan


@pytest.fixture
def client(user_store: UserStore) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with isolated auth state.

    follow_redirects=False is essential: tests assert on redirect locations
    for interactive requests, which are invisible once followed.
    """
    app.router.lifespan_context = _patch_lifespan(user_store)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as test_client:
        yield test_client
