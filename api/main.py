"""
api/main.py -- FastAPI application entry point for AuthGate.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost, see api/middleware.py):
  1. request context   -- X-Request-ID on request.state and on the response
  2. security headers  -- nosniff, frame DENY, HSTS, CSP, ...
  3. CORSMiddleware    -- CORS headers for allowed browser origins
  4. SlowAPIMiddleware -- global per-IP rate limit tiers
  5. GZipMiddleware    -- compress bodies >= 1 KB

Inside the routers every v1 route runs through the interceptor pipeline
(api/interceptors/chain.py): logging, validation, caching, metrics, circuit
breaker, retry, transform, timeout.

Lifespan handles startup (stores, services, pipeline, admin bootstrap, session
cleanup task) and shutdown (cancel the task, dispose the engine) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.interceptors.chain import build_pipeline
from api.interceptors.circuit_breaker import CircuitBreakerInterceptor
from api.interceptors.metrics import MetricsInterceptor
from api.limiter import limiter
from api.middleware import install_middleware
from api.models import ErrorDetail, ErrorResponse, FieldError, HealthResponse
from api.routes.v1 import admin as admin_routes
from api.routes.v1 import auth as auth_routes
from auth.dependencies import authorize
from auth.guards import PUBLIC, RouteTable
from auth.models import TokenPayload
from auth.service import AuthService
from auth.store import SessionStore, UserStore
from auth.tokens import TokenIssuer
from cache.store import ResponseCache
from core.config import Settings, get_settings
from core.errors import AppError

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authgate.api")

settings = get_settings()

# ---------------------------------------------------------------------------
# Application state wiring
# ---------------------------------------------------------------------------


def build_route_table() -> RouteTable:
    table = RouteTable({"health": PUBLIC})
    for routes in (auth_routes.ROUTES, admin_routes.ROUTES):
        for route_id, requirement in routes.items():
            table.register(route_id, requirement)
    return table


def configure_state(app: FastAPI, settings: Settings, user_store: UserStore) -> None:
    """Build every service the routes read from app.state.

    Shared by the real lifespan and by test lifespans that bring their own
    UserStore.
    """
    app.state.settings = settings
    app.state.user_store = user_store
    app.state.session_store = SessionStore(user_store.engine)
    app.state.token_issuer = TokenIssuer(settings)
    app.state.auth_service = AuthService(
        user_store,
        app.state.session_store,
        app.state.token_issuer,
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    app.state.route_table = build_route_table()
    app.state.response_cache = ResponseCache(
        default_ttl_ms=settings.cache_ttl_ms,
        cleanup_threshold=settings.cache_cleanup_threshold,
    )
    app.state.pipeline = build_pipeline(settings, app.state.response_cache)


# ---------------------------------------------------------------------------
# Background session cleanup
# ---------------------------------------------------------------------------


async def _cleanup_loop(app: FastAPI, interval_seconds: int) -> None:
    """Delete expired and long-revoked sessions every interval_seconds.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            deleted = await app.state.auth_service.cleanup_sessions()
            logger.info("Session cleanup removed %d sessions", deleted)
        except Exception:
            logger.exception("Session cleanup failed")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("AuthGate API starting up")
    configure_state(app, settings, UserStore(settings.database_url))
    if settings.admin_email and settings.admin_password:
        await app.state.auth_service.bootstrap_admin(
            settings.admin_email, settings.admin_username, settings.admin_password
        )
    app.state.cleanup_task = asyncio.create_task(_cleanup_loop(app, settings.session_cleanup_interval_seconds))
    logger.info("Auth initialized (pipeline: %s)", ", ".join(type(i).__name__ for i in app.state.pipeline.interceptors))

    yield

    app.state.cleanup_task.cancel()
    app.state.user_store.close()
    logger.info("AuthGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AuthGate API",
    description="User registration, JWT sessions with refresh rotation, and role-based access control.",
    version=VERSION,
    lifespan=lifespan,
)

install_middleware(app, settings)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_routes.router, prefix="/api/v1", tags=["Auth"])
app.include_router(admin_routes.router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def error_response(
    request: Request,
    status_code: int,
    message: str,
    code: str,
    details: Any = None,
    validation_errors: list[FieldError] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(
        status_code=status_code,
        message=message,
        error=ErrorDetail(
            code=code,
            details=details,
            validation_errors=validation_errors,
            request_id=getattr(request.state, "request_id", None),
        ),
        timestamp=datetime.now(timezone.utc),
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body.model_dump(by_alias=True, exclude_none=True)),
        headers=headers,
    )


def _field_errors(exc: RequestValidationError) -> list[FieldError]:
    """Collapse pydantic errors into one entry per field, every constraint listed.

    Values of password fields are never echoed back.
    """
    by_field: dict[str, FieldError] = {}
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header")]
        field = ".".join(loc) or "body"
        value = None if "password" in field.lower() else err.get("input")
        entry = by_field.get(field)
        if entry is None:
            by_field[field] = FieldError(field=field, value=value, constraints=[err.get("msg", "invalid")])
        else:
            entry.constraints.append(err.get("msg", "invalid"))
    return list(by_field.values())


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    headers = None
    if exc.status_code == 503 and isinstance(exc.details, dict) and "retryAfter" in exc.details:
        headers = {"Retry-After": str(exc.details["retryAfter"])}
    return error_response(request, exc.status_code, exc.message, exc.code, details=exc.details, headers=headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients how many seconds to wait before retrying.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    return error_response(
        request,
        429,
        "Too many requests.",
        "RATE_LIMITED",
        details=str(exc.detail),
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 listing every failing field, not only the first one."""
    return error_response(
        request,
        400,
        "Validation failed",
        "VALIDATION_ERROR",
        validation_errors=_field_errors(exc),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(
        request,
        exc.status_code,
        str(exc.detail),
        f"HTTP_{exc.status_code}",
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The stack trace is logged server-side only. The exception text reaches the
    client only when DEBUG is on.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return error_response(
        request,
        500,
        "An unexpected error occurred.",
        "INTERNAL_SERVER_ERROR",
        details=str(exc) if settings.debug else None,
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it stays outside the
# interceptor pipeline: never cached, never blocked by the breaker, and not
# counted in the metrics it reports. Exempt from rate limiting.
# ---------------------------------------------------------------------------


@limiter.exempt  # must be ABOVE @app.get so the registered endpoint stays a coroutine
@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
async def health(request: Request, _: TokenPayload | None = Depends(authorize("health"))) -> HealthResponse:
    """Return the metrics health verdict, database reachability and breaker state."""
    pipeline = request.app.state.pipeline
    metrics = pipeline.get(MetricsInterceptor)
    breaker = pipeline.get(CircuitBreakerInterceptor)

    try:
        await asyncio.to_thread(request.app.state.user_store.has_users)
        database = "ok"
    except Exception:
        logger.exception("Health check database probe failed")
        database = "error"

    status = metrics.health_status() if metrics is not None else "healthy"
    if database == "error":
        status = "unhealthy"
    return HealthResponse(
        status=status,
        version=VERSION,
        timestamp=datetime.now(timezone.utc),
        components={
            "app": "ok",
            "database": database,
            "circuitBreaker": breaker.state.value if breaker is not None else "disabled",
        },
    )
