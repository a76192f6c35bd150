"""
api/interceptors/base.py -- Interceptor contract, pipeline and route class.

Pattern: Chain of Responsibility around each route handler.

  Pipeline([a, b, c]) wraps a handler so that
      request phase:   a -> b -> c -> handler
      response phase:  handler -> c -> b -> a
  An interceptor may short-circuit (return without calling call_next), call
  call_next more than once (retry), or translate an exception raised further
  in. Exceptions that escape the pipeline reach the app's exception handlers.

InterceptedRoute is an APIRoute subclass that routes every request of a router
through app.state.pipeline. Routers opt in with `APIRouter(route_class=InterceptedRoute)`.
"""

from __future__ import annotations

import socket
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from fastapi import Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException

from core.errors import AppError, RequestTimeoutError

CallNext = Callable[[], Awaitable[Response]]

NETWORK_ERROR_CODES = frozenset({"ECONNRESET", "ECONNREFUSED", "ENOTFOUND"})


@dataclass
class CallContext:
    """Per-request data shared by every interceptor in the pipeline."""

    request: Request
    route: str
    started: float = field(default_factory=time.perf_counter)

    @property
    def method(self) -> str:
        return self.request.method.upper()

    @property
    def path(self) -> str:
        return self.request.url.path

    @property
    def request_id(self) -> str | None:
        return getattr(self.request.state, "request_id", None) or self.request.headers.get("X-Request-ID")

    @property
    def endpoint(self) -> str:
        return f"{self.method} {self.route}"


class Interceptor:
    """Base class. Subclasses override intercept()."""

    async def intercept(self, ctx: CallContext, call_next: CallNext) -> Response:
        return await call_next()


class Pipeline:
    def __init__(self, interceptors: Sequence[Interceptor]) -> None:
        self.interceptors = list(interceptors)

    async def run(self, ctx: CallContext, handler: CallNext) -> Response:
        async def dispatch(index: int) -> Response:
            if index == len(self.interceptors):
                return await handler()
            return await self.interceptors[index].intercept(ctx, lambda: dispatch(index + 1))

        return await dispatch(0)

    def get(self, kind: type) -> Interceptor | None:
        """Return the first interceptor of the given type, or None."""
        for interceptor in self.interceptors:
            if isinstance(interceptor, kind):
                return interceptor
        return None


class InterceptedRoute(APIRoute):
    def get_route_handler(self) -> Callable[[Request], Awaitable[Response]]:
        original = super().get_route_handler()
        route_path = self.path_format

        async def handler(request: Request) -> Response:
            pipeline: Pipeline | None = getattr(request.app.state, "pipeline", None)
            if pipeline is None:
                return await original(request)
            ctx = CallContext(request=request, route=route_path)
            return await pipeline.run(ctx, lambda: original(request))

        return handler


# ---------------------------------------------------------------------------
# Error classification shared by metrics, breaker and retry
# ---------------------------------------------------------------------------


def exception_status(exc: BaseException) -> int | None:
    """HTTP status an exception will be rendered with, or None if it carries none."""
    if isinstance(exc, AppError):
        return exc.status_code
    if isinstance(exc, HTTPException):
        return exc.status_code
    if isinstance(exc, RequestValidationError):
        return 400
    return None


def is_timeout_error(exc: BaseException) -> bool:
    return isinstance(exc, (RequestTimeoutError, TimeoutError))


def is_network_error(exc: BaseException) -> bool:
    if isinstance(exc, (ConnectionResetError, ConnectionRefusedError, socket.gaierror)):
        return True
    code = getattr(exc, "code", None) or getattr(exc, "errno", None)
    return isinstance(code, str) and code in NETWORK_ERROR_CODES
