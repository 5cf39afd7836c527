"""
tests/conftest.py -- Shared test fixtures for authkeep.

This module provides:
  - FakeClock: a controllable UTC clock injected into the signer and service
  - hasher: a low-cost PasswordHasher (bcrypt rounds=4) shared per session
  - db / service: an isolated in-memory database and AuthService per test
  - api_client: TestClient with a patched lifespan, one per test module

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
api_client because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit-level fixtures stay on one thread, so plain :memory: is
enough there.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates JWT secrets in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate secrets in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import Database
from auth.tokens import TokenSigner
from core.config import TokenConfig

ACCESS_SECRET = "test-access-secret-0123456789abcdef0123456789"
REFRESH_SECRET = "test-refresh-secret-fedcba9876543210fedcba987"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    """bcrypt at the minimum cost -- correctness does not depend on rounds."""
    return PasswordHasher(rounds=4)


@pytest.fixture
def token_config() -> TokenConfig:
    return TokenConfig(
        access_secret=ACCESS_SECRET,
        refresh_secret=REFRESH_SECRET,
        access_ttl=timedelta(minutes=15),
        refresh_ttl=timedelta(days=7),
    )


@pytest.fixture
def signer(token_config: TokenConfig, clock: FakeClock) -> TokenSigner:
    return TokenSigner(token_config, clock=clock)


@pytest.fixture
def db() -> Generator[Database, None, None]:
    database = Database("sqlite:///:memory:")
    yield database
    database.close()


@pytest.fixture
def service(db: Database, hasher: PasswordHasher, signer: TokenSigner, clock: FakeClock) -> AuthService:
    return AuthService(db, hasher=hasher, signer=signer, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test service into app.state so TestClient routes use
    an isolated in-memory database. No purge task is started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        app.state.signer = service.signer
        app.state.db = service.db
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(hasher: PasswordHasher) -> Generator[TestClient, None, None]:
    """Yield a TestClient backed by a fresh shared-memory database.

    Rate limiting is switched off: a module fires far more signups/signins
    than AUTH_RATE_LIMIT allows from the single TestClient address.
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    database = Database(db_url)
    config = TokenConfig(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET)
    service = AuthService(database, hasher=hasher, signer=TokenSigner(config))

    app.router.lifespan_context = _patch_lifespan(service)
    limiter.enabled = False

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    limiter.enabled = True
    database.close()
