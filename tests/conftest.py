"""
tests/conftest.py -- Shared test fixtures for Volcanion Auth.

This module provides:
  - FrozenClock / clock: a pinned, manually advanced time source
  - engine: in-memory SQLite auth schema for single-threaded unit tests
  - user_store, token_store, issuer, cache: the building blocks, all on `clock`
  - auth_service, user_service, role_service: services wired on top of them
  - make_user: create an account directly in the store (bypasses register)
  - grant: give a user a role holding a set of permissions
  - api_client: TestClient over the real app with a patched lifespan

Design: unit tests use plain sqlite:///:memory:, which SQLAlchemy pins to one
connection per thread -- fine while everything runs on the test thread. The
API client and the concurrent-rotation tests run work on other threads, so
they use a temp-file database instead.

Environment variables must be set before any project import: get_settings()
is cached on first call, auth.passwords computes its dummy hash at import,
and api.limiter reads the rate limit at import.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("PASSWORD_KDF_ROUNDS", "1")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, attach_services
from auth.models import Permission, Role, User
from auth.passwords import hash_password
from auth.roles import RoleService
from auth.schema import create_auth_engine
from auth.service import AuthService
from auth.store import UserStore
from auth.token_store import RefreshTokenStore
from auth.tokens import TokenIssuer
from auth.users import UserService
from cache.store import SessionCache
from core.config import get_settings

PASSWORD = "Passw0rd!"


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when

    def advance(self, **delta) -> None:
        self._now += timedelta(**delta)


# ---------------------------------------------------------------------------
# Core building blocks
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def engine():
    eng = create_auth_engine("sqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture
def user_store(engine, clock) -> UserStore:
    return UserStore(engine, clock=clock)


@pytest.fixture
def token_store(engine, clock) -> RefreshTokenStore:
    return RefreshTokenStore(engine, clock=clock)


@pytest.fixture
def issuer(clock) -> TokenIssuer:
    return TokenIssuer.from_settings(get_settings(), clock=clock)


@pytest.fixture
def cache(clock, tmp_path) -> Generator[SessionCache, None, None]:
    c = SessionCache(str(tmp_path / "cache.db"), clock=clock)
    yield c
    c.close()


@pytest.fixture
def auth_service(user_store, token_store, issuer, cache, clock) -> AuthService:
    return AuthService(user_store, token_store, issuer, cache=cache, clock=clock)


@pytest.fixture
def user_service(user_store, cache) -> UserService:
    return UserService(user_store, cache=cache)


@pytest.fixture
def role_service(user_store, cache) -> RoleService:
    return RoleService(user_store, cache=cache)


# ---------------------------------------------------------------------------
# Data helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def make_user(user_store) -> Callable[..., User]:
    """Return a factory that stores a user with password PASSWORD."""

    def _make(email: str = "alice@example.com", **overrides) -> User:
        fields = {
            "email": email,
            "password_hash": hash_password(PASSWORD),
            "first_name": "Alice",
            "last_name": "Nguyen",
        }
        fields.update(overrides)
        return user_store.create_user(User(**fields))

    return _make


@pytest.fixture
def grant(user_store) -> Callable[..., Role]:
    """Return a helper: grant(user_id, role_name, [permission names]) -> Role.

    Roles and permissions are created on first use and reused afterwards.
    Permission "users.read" maps to resource "users", action "read".
    """

    def _grant(user_id: str, role_name: str, permissions: tuple[str, ...] = ()) -> Role:
        role = user_store.get_role_by_name(role_name) or user_store.create_role(Role(name=role_name))
        for name in permissions:
            permission = user_store.get_permission_by_name(name)
            if permission is None:
                resource, _, action = name.partition(".")
                permission = user_store.create_permission(Permission(name=name, resource=resource, action=action))
            user_store.set_role_permission(role.id, permission.id)
        user_store.set_user_role(user_id, role.id)
        return role

    return _grant


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(engine, cache: SessionCache):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine and cache into app.state through the same
    attach_services() the real lifespan uses. The cleanup task is a
    long-sleeping coroutine so shutdown's cancel() has a real Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_services(app, engine, cache)
        app.state.cleanup_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.cleanup_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, admin_token, admin_id) for API integration tests.

    The admin account (admin@example.com / PASSWORD) holds the Admin role and
    is created before the client starts. The default "User" role exists so
    registrations pick it up.
    """
    tmp = tmp_path_factory.mktemp("api")
    engine = create_auth_engine(f"sqlite:///{tmp / 'auth.db'}")
    cache = SessionCache(str(tmp / "cache.db"))

    store = UserStore(engine)
    roles = RoleService(store)
    roles.ensure_role("User")
    roles.ensure_role("Admin")
    admin = store.create_user(
        User(
            email="admin@example.com",
            password_hash=hash_password(PASSWORD),
            first_name="Ada",
            last_name="Admin",
        )
    )
    roles.set_user_role(admin.id, "Admin")

    app.router.lifespan_context = _patch_lifespan(engine, cache)

    with TestClient(app, raise_server_exceptions=True) as client:
        resp = client.post(
            "/api/v1/auth/login",
            json={"email_or_phone": "admin@example.com", "password": PASSWORD, "device_id": "admin-console"},
        )
        assert resp.status_code == 200, resp.text
        yield client, resp.json()["access_token"], admin.id

    cache.close()
    engine.dispose()
