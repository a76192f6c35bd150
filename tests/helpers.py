"""
tests/helpers.py -- Plain helpers shared by test modules (not fixtures).

  - make_user_store(): isolated in-memory DB for auth entities
  - make_user(): insert a user with a real bcrypt hash
  - FakeClock / FakeMsClock: controllable clocks for time-based components
  - make_ctx(): a CallContext over a bare Starlette request for interceptor unit tests
  - run(): drive a coroutine from a synchronous test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient and asyncio.to_thread run store calls in worker threads.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone

from starlette.requests import Request
from starlette.responses import Response

from api.interceptors.base import CallContext
from auth.models import Role, User
from auth.store import UserStore
from auth.tokens import hash_password

# ---------------------------------------------------------------------------
# Clocks
# ---------------------------------------------------------------------------


class FakeClock:
    """Datetime clock for stores. Advance with clock.advance(timedelta)."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta) -> None:
        self.now += delta


class FakeMsClock:
    """Millisecond float clock for interceptors and the response cache."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_user_store(db_suffix: str | None = None, clock=None) -> UserStore:
    """Create an isolated named shared-memory SQLite UserStore."""
    suffix = db_suffix or uuid.uuid4().hex
    url = f"sqlite:///file:test_auth_{suffix}?mode=memory&cache=shared&uri=true"
    if clock is None:
        return UserStore(db_url=url)
    return UserStore(db_url=url, clock=clock)


def make_user(
    store: UserStore,
    email: str,
    username: str,
    password: str | None = None,
    role: Role = Role.USER,
) -> User:
    """Insert a user. Without a password a placeholder hash is stored (no bcrypt cost)."""
    return store.create_user(
        User(
            email=email,
            username=username,
            first_name="Test",
            last_name="User",
            hashed_password=hash_password(password) if password else "unused",
            role=role,
        )
    )


# ---------------------------------------------------------------------------
# Interceptor helpers
# ---------------------------------------------------------------------------


def make_ctx(
    method: str = "GET",
    path: str = "/api/v1/items",
    query: str = "",
    headers: dict[str, str] | None = None,
    route: str | None = None,
) -> CallContext:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    scope = {
        "type": "http",
        "method": method,
        "path": path,
        "query_string": query.encode(),
        "headers": raw_headers,
    }
    return CallContext(request=Request(scope), route=route or path)


def respond(status_code: int = 200, body: bytes = b"", media_type: str | None = None):
    """Build an async call_next that returns a fixed response and counts calls."""

    async def call_next() -> Response:
        call_next.calls += 1
        return Response(content=body, status_code=status_code, media_type=media_type)

    call_next.calls = 0
    return call_next


def fail(exc: BaseException):
    """Build an async call_next that raises exc and counts calls."""

    async def call_next() -> Response:
        call_next.calls += 1
        raise exc

    call_next.calls = 0
    return call_next


def run(coro):
    return asyncio.run(coro)
