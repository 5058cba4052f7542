"""
tests/conftest.py -- Shared test fixtures for permgate tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for auth + catalog
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - make_user(): inserts a user in a named role and returns it
  - auth_store: a fresh AuthStore per test for unit tests
  - api_client: TestClient with an admin JWT for API integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any api/auth/core import because
get_settings() is cached on first use.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: set before any api/auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("WEBHOOK_SECRET", "test-webhook-secret")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.store import AuthStore
from auth.tokens import create_access_token, generate_public_id, hash_password
from catalog.store import ProductStore

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[AuthStore, ProductStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'scenarios').
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    catalog_url = f"sqlite:///file:test_catalog_{db_suffix}?mode=memory&cache=shared&uri=true"
    return AuthStore(db_url=auth_url), ProductStore(db_url=catalog_url)


def _patch_lifespan(auth_store: AuthStore, catalog: ProductStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = auth_store
        app.state.catalog = catalog
        yield

    return test_lifespan


def make_user(store: AuthStore, username: str, role_name: str = "user", password: str = "secret123") -> User:
    """Insert a user in the named seeded role and return it with its id set."""
    role = store.get_role_by_name(role_name)
    assert role is not None, f"seed role {role_name!r} missing"
    user = User(
        username=username,
        email=f"{username}@example.com",
        role_id=role.id,
        public_id=generate_public_id("user"),
        hashed_password=hash_password(password),
    )
    user.id = store.create_user(user)
    return user


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def token_for(user: User) -> str:
    return create_access_token(user.public_id, user.username, user.role_id, user.token_version)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_store() -> Generator[AuthStore, None, None]:
    """A seeded AuthStore on its own in-memory database."""
    store = AuthStore(db_url=f"sqlite:///file:unit_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield store
    store.close()


@pytest.fixture
def product_store() -> Generator[ProductStore, None, None]:
    store = ProductStore(db_url=f"sqlite:///file:unit_catalog_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield store
    store.close()


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    The admin user is created before the client starts.
    """
    auth_store, catalog = _make_test_stores(uuid.uuid4().hex)

    admin = make_user(auth_store, "testadmin", role_name="admin", password="testpass123")
    token = token_for(admin)

    app.router.lifespan_context = _patch_lifespan(auth_store, catalog)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin.id

    auth_store.close()
    catalog.close()
