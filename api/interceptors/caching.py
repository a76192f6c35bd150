"""
api/interceptors/caching.py -- Response caching for GET requests.

Key: "METHOD:path" plus "?k=v&..." with query params sorted by name, so
?b=2&a=1 and ?a=1&b=2 share an entry. Repeated names keep their order.
Requests with a valid access token add "#user=<id>:<role>", so every
caller has its own entries. The lookup runs before the route's authorize()
dependency; a request without a valid token can therefore only reach
anonymous entries, and protected routes never produce one (they answer 401).

Request directives:
  Cache-Control: no-cache   -> bypass the cache (no lookup, no store)
  Cache-Control: max-age=N  -> store with a TTL of N seconds

Only 2xx responses with a body are stored. Responses marked
`Cache-Control: no-store` or `private` by their route are never stored;
routes that answer per-user data mark themselves that way.

Responses carry X-Cache: HIT or MISS.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from fastapi import Request, Response

from api.interceptors.base import CallContext, CallNext, Interceptor
from auth.dependencies import try_get_current_user
from auth.models import TokenPayload
from cache.store import ResponseCache

logger = logging.getLogger("authgate.interceptors.caching")

_MAX_AGE_RE = re.compile(r"max-age=(\d+)")


@dataclass(frozen=True)
class CachedResponse:
    status_code: int
    body: bytes
    media_type: str | None


def cache_key(request: Request, principal: TokenPayload | None = None) -> str:
    key = f"{request.method.upper()}:{request.url.path}"
    items = sorted(request.query_params.multi_items(), key=lambda kv: kv[0])
    if items:
        key += "?" + "&".join(f"{k}={v}" for k, v in items)
    if principal is not None:
        key += f"#user={principal.sub}:{principal.role.value}"
    return key


class CachingInterceptor(Interceptor):
    def __init__(self, cache: ResponseCache) -> None:
        self.cache = cache

    async def intercept(self, ctx: CallContext, call_next: CallNext) -> Response:
        if ctx.method != "GET":
            return await call_next()

        directives = ctx.request.headers.get("Cache-Control", "").lower()
        if "no-cache" in directives:
            return await call_next()

        key = cache_key(ctx.request, try_get_current_user(ctx.request))
        cached: CachedResponse | None = self.cache.get(key)
        if cached is not None:
            logger.debug("Cache hit %s", key)
            return Response(
                content=cached.body,
                status_code=cached.status_code,
                media_type=cached.media_type,
                headers={"X-Cache": "HIT"},
            )

        response = await call_next()
        if self._storable(response):
            ttl_ms = None
            match = _MAX_AGE_RE.search(directives)
            if match:
                ttl_ms = int(match.group(1)) * 1000
            self.cache.set(
                key,
                CachedResponse(response.status_code, bytes(response.body), response.media_type),
                ttl_ms=ttl_ms,
            )
        response.headers["X-Cache"] = "MISS"
        return response

    @staticmethod
    def _storable(response: Response) -> bool:
        if not 200 <= response.status_code < 300:
            return False
        if not getattr(response, "body", None):
            return False
        response_directives = response.headers.get("Cache-Control", "").lower()
        return "no-store" not in response_directives and "private" not in response_directives

    def clear(self) -> None:
        self.cache.clear()
        logger.info("Response cache cleared")

    def stats(self) -> dict:
        return self.cache.stats()
