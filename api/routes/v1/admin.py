"""
api/routes/v1/admin.py -- Operational endpoints (ADMIN role only).

Routes:
  GET    /api/v1/admin/metrics                -- request metrics snapshot
  DELETE /api/v1/admin/metrics                -- reset metrics; 204
  GET    /api/v1/admin/circuit-breaker        -- breaker state, counters, config
  POST   /api/v1/admin/circuit-breaker/reset  -- back to CLOSED with zeroed counters
  GET    /api/v1/admin/cache                  -- response cache stats
  DELETE /api/v1/admin/cache                  -- drop every cached response; 204
  POST   /api/v1/admin/sessions/cleanup       -- delete expired / long-revoked sessions
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.interceptors.base import InterceptedRoute, Pipeline
from api.interceptors.caching import CachingInterceptor
from api.interceptors.circuit_breaker import CircuitBreakerInterceptor
from api.interceptors.metrics import MetricsInterceptor
from api.models import CleanupResponse
from auth.dependencies import authorize
from auth.guards import RouteRequirement, roles
from auth.models import Role, TokenPayload
from core.errors import NotFoundError

ADMIN_ONLY = roles(Role.ADMIN)

ROUTES: dict[str, RouteRequirement] = {
    "admin.metrics": ADMIN_ONLY,
    "admin.metrics_reset": ADMIN_ONLY,
    "admin.circuit_breaker": ADMIN_ONLY,
    "admin.circuit_breaker_reset": ADMIN_ONLY,
    "admin.cache": ADMIN_ONLY,
    "admin.cache_clear": ADMIN_ONLY,
    "admin.sessions_cleanup": ADMIN_ONLY,
}

router = APIRouter(route_class=InterceptedRoute)

_PRIVATE = "private, no-store"


def _interceptor(request: Request, kind: type, name: str):
    pipeline: Pipeline = request.app.state.pipeline
    interceptor = pipeline.get(kind)
    if interceptor is None:
        raise NotFoundError(f"{name} is disabled")
    return interceptor


@router.get("/admin/metrics")
async def get_metrics(
    request: Request,
    response: Response,
    _: TokenPayload = Depends(authorize("admin.metrics")),
) -> dict:
    metrics: MetricsInterceptor = _interceptor(request, MetricsInterceptor, "Metrics")
    response.headers["Cache-Control"] = _PRIVATE
    return {**metrics.snapshot(), "health": metrics.health_status()}


@router.delete("/admin/metrics", status_code=204)
async def reset_metrics(
    request: Request,
    _: TokenPayload = Depends(authorize("admin.metrics_reset")),
) -> None:
    metrics: MetricsInterceptor = _interceptor(request, MetricsInterceptor, "Metrics")
    metrics.reset()


@router.get("/admin/circuit-breaker")
async def get_circuit_breaker(
    request: Request,
    response: Response,
    _: TokenPayload = Depends(authorize("admin.circuit_breaker")),
) -> dict:
    breaker: CircuitBreakerInterceptor = _interceptor(request, CircuitBreakerInterceptor, "Circuit breaker")
    response.headers["Cache-Control"] = _PRIVATE
    return breaker.get_status()


@router.post("/admin/circuit-breaker/reset")
async def reset_circuit_breaker(
    request: Request,
    _: TokenPayload = Depends(authorize("admin.circuit_breaker_reset")),
) -> dict:
    breaker: CircuitBreakerInterceptor = _interceptor(request, CircuitBreakerInterceptor, "Circuit breaker")
    breaker.reset()
    return breaker.get_status()


@router.get("/admin/cache")
async def get_cache_stats(
    request: Request,
    response: Response,
    _: TokenPayload = Depends(authorize("admin.cache")),
) -> dict:
    caching: CachingInterceptor = _interceptor(request, CachingInterceptor, "Response cache")
    response.headers["Cache-Control"] = _PRIVATE
    return caching.stats()


@router.delete("/admin/cache", status_code=204)
async def clear_cache(
    request: Request,
    _: TokenPayload = Depends(authorize("admin.cache_clear")),
) -> None:
    caching: CachingInterceptor = _interceptor(request, CachingInterceptor, "Response cache")
    caching.clear()


@router.post("/admin/sessions/cleanup", response_model=CleanupResponse)
async def cleanup_sessions(
    request: Request,
    _: TokenPayload = Depends(authorize("admin.sessions_cleanup")),
) -> CleanupResponse:
    deleted = await request.app.state.auth_service.cleanup_sessions()
    return CleanupResponse(deleted=deleted)
