"""
tests/conftest.py -- Shared fixtures for SessionGate unit and integration tests.

This module provides:
  - make_settings(): Settings with fixed secrets, no .env, low bcrypt cost
  - store: parametrized over MemoryCredentialStore and SQLCredentialStore so
    every store-facing test runs against both implementations
  - sessions / federation: managers wired exactly as create_app() wires them
  - api_client: TestClient over create_app() with an in-memory store

bcrypt_rounds=4 is the library minimum. It keeps the suite fast; the cost
factor does not change any behavior under test.
"""

from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import create_app
from auth.federation import FederationHandler
from auth.passwords import PasswordHasher
from auth.sessions import SessionManager
from auth.store import MemoryCredentialStore, SQLCredentialStore
from auth.tokens import TokenCodec
from core.config import Settings

ACCESS_SECRET = "a" * 48
REFRESH_SECRET = "r" * 48


def make_settings(**overrides) -> Settings:
    """Build Settings without touching .env; keyword overrides win."""
    values = {
        "debug": False,
        "access_token_secret": ACCESS_SECRET,
        "refresh_token_secret": REFRESH_SECRET,
        "session_secret": "s" * 48,
        "bcrypt_rounds": 4,
        "allowed_redirect_origins": "http://localhost:5173,https://app.example.com",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture
def codec(settings: Settings) -> TokenCodec:
    return TokenCodec(settings)


@pytest.fixture(params=["memory", "sql"])
def store(request) -> Generator:
    """Yield each CredentialStore implementation in turn.

    The SQL variant uses plain sqlite :memory:. Tests using this fixture stay
    on one thread, where SQLAlchemy hands back the same connection.
    """
    if request.param == "memory":
        s = MemoryCredentialStore()
    else:
        s = SQLCredentialStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def sessions(store, hasher: PasswordHasher, codec: TokenCodec) -> SessionManager:
    return SessionManager(store, hasher, codec)


@pytest.fixture
def federation(sessions: SessionManager) -> FederationHandler:
    return FederationHandler(sessions)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def api_client() -> Generator[TestClient, None, None]:
    """Yield a TestClient over a fresh app and in-memory store.

    Function-scoped so cookie jars and accounts never leak between tests.
    The shared limiter is reset so login tests in earlier modules cannot push
    later ones over the 10/minute limit. Google is "configured" so the OAuth
    routes are enabled; tests replace app.state.oauth with a mock registry.
    """
    limiter.reset()
    app = create_app(
        make_settings(google_client_id="test-client", google_client_secret="test-secret"),
        store=MemoryCredentialStore(),
    )
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client
