"""
tests/conftest.py -- Shared test fixtures for AuthGate integration tests.

This module provides:
  - _patch_lifespan(): wires a test UserStore into app.state, bypassing real startup
  - api_client: TestClient + admin and user credentials for API integration tests

Plain helpers (stores, clocks, interceptor contexts) live in tests/helpers.py.

DEBUG must be set before any auth/core import so get_settings() generates
JWT secrets in dev mode rather than raising. RATE_LIMIT_ENABLED is switched
off so the global tiers never throttle the suite.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app, configure_state
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import TokenIssuer
from core.config import get_settings
from tests.helpers import make_user, make_user_store

ADMIN_PASSWORD = "AdminPass1!"
USER_PASSWORD = "UserPass1!"


def _patch_lifespan(user_store: UserStore):
    """Return an async context manager that replaces the real lifespan.

    configure_state() builds fresh services, cache and pipeline, so every
    test module starts with zeroed metrics and a CLOSED breaker. The cleanup
    task is a long-sleeping coroutine so shutdown has a real task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        configure_state(app, get_settings(), user_store)
        app.state.cleanup_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.cleanup_task.cancel()

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    admin: User
    admin_token: str
    user: User
    user_token: str

    @staticmethod
    def auth(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers, middleware and interceptors but use an
    isolated in-memory store. An ADMIN and a USER account exist up front,
    each with an access token.
    """
    user_store = make_user_store(request.module.__name__.replace(".", "_"))
    admin = make_user(user_store, "admin@example.com", "admin", ADMIN_PASSWORD, Role.ADMIN)
    user = make_user(user_store, "user@example.com", "user", USER_PASSWORD)
    issuer = TokenIssuer(get_settings())

    app.router.lifespan_context = _patch_lifespan(user_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(
            client=client,
            admin=admin,
            admin_token=issuer.create_access_token(admin),
            user=user,
            user_token=issuer.create_access_token(user),
        )

    user_store.close()
