"""
api/middleware.py -- HTTP-level middleware: request context, security headers,
CORS, compression and rate limiting.

install_middleware(app, settings) registers the whole stack. Starlette wraps
middleware in reverse registration order, so the LAST one added is the
OUTERMOST. Registration order below is therefore innermost first:

  GZip -> SlowAPI -> CORS -> security headers -> request context

and a request meets them as:

  request context -> security headers -> CORS -> SlowAPI -> GZip -> routes

Request context runs first so every later layer (and every log line) can
read request.state.request_id.
"""

from __future__ import annotations

import secrets
import string
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from core.config import Settings

CORS_METHODS = ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE", "OPTIONS"]
CORS_HEADERS = [
    "Origin",
    "X-Requested-With",
    "Content-Type",
    "Accept",
    "Authorization",
    "X-Request-ID",
    "X-API-Key",
]

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; script-src 'self'; "
        "img-src 'self' data: https:; object-src 'none'; frame-ancestors 'none'"
    ),
    "Cross-Origin-Opener-Policy": "same-origin-allow-popups",
    "Cross-Origin-Resource-Policy": "cross-origin",
    "X-DNS-Prefetch-Control": "off",
    "Origin-Agent-Cluster": "?1",
    "X-Permitted-Cross-Domain-Policies": "none",
}

_ID_ALPHABET = string.ascii_lowercase + string.digits


def _base36(value: int) -> str:
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_ID_ALPHABET[rem])
    return "".join(reversed(digits)) or "0"


def generate_request_id() -> str:
    """Return an id of the form req_<epoch ms, base36>_<7 random chars>."""
    random_part = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"req_{_base36(int(time.time() * 1000))}_{random_part}"


async def request_context(request: Request, call_next):
    """Attach a request id to request.state and echo it as X-Request-ID."""
    request_id = request.headers.get("X-Request-ID") or generate_request_id()
    request.state.request_id = request_id
    request.state.start_time = time.perf_counter()
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


def install_middleware(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(GZipMiddleware, minimum_size=1024, compresslevel=6)

    # SlowAPI looks for app.state.limiter by convention.
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    cors_kwargs: dict = {}
    if settings.debug:
        # Echo any origin back; "*" is not valid alongside credentials.
        cors_kwargs["allow_origin_regex"] = ".*"
    else:
        cors_kwargs["allow_origins"] = settings.allowed_origins
    app.add_middleware(
        CORSMiddleware,
        allow_methods=CORS_METHODS,
        allow_headers=CORS_HEADERS,
        allow_credentials=True,
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=86400,
        **cors_kwargs,
    )

    app.middleware("http")(security_headers)
    app.middleware("http")(request_context)
