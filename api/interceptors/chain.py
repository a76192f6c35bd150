"""
api/interceptors/chain.py -- Default interceptor order.

Outermost first:
  1. RequestLoggingInterceptor
  2. ValidationInterceptor
  3. CachingInterceptor
  4. MetricsInterceptor
  5. CircuitBreakerInterceptor   (CIRCUIT_BREAKER_ENABLED)
  6. RetryInterceptor            (RETRY_ENABLED)
  7. TransformInterceptor
  8. TimeoutInterceptor

Retry sits inside the breaker so a request that exhausts its retries counts
as one breaker outcome. Timeout sits innermost so each retry attempt gets its
own time budget.
"""

from __future__ import annotations

from api.interceptors.base import Interceptor, Pipeline
from api.interceptors.caching import CachingInterceptor
from api.interceptors.circuit_breaker import CircuitBreakerConfig, CircuitBreakerInterceptor
from api.interceptors.metrics import MetricsInterceptor
from api.interceptors.request_logging import RequestLoggingInterceptor
from api.interceptors.retry import RetryInterceptor
from api.interceptors.timeout import TimeoutInterceptor
from api.interceptors.transform import TransformInterceptor
from api.interceptors.validation import ValidationInterceptor
from cache.store import ResponseCache
from core.config import Settings

# Operators must be able to inspect and reset the breaker while it is open.
ADMIN_PREFIXES = ("/api/v1/admin",)


def build_pipeline(settings: Settings, cache: ResponseCache | None = None) -> Pipeline:
    if cache is None:
        cache = ResponseCache(
            default_ttl_ms=settings.cache_ttl_ms,
            cleanup_threshold=settings.cache_cleanup_threshold,
        )
    interceptors: list[Interceptor] = [
        RequestLoggingInterceptor(),
        ValidationInterceptor(max_request_size_bytes=settings.max_request_size_bytes),
        CachingInterceptor(cache),
        MetricsInterceptor(
            slow_request_threshold_ms=settings.slow_request_threshold_ms,
            log_interval=settings.metrics_log_interval,
        ),
    ]
    if settings.circuit_breaker_enabled:
        interceptors.append(
            CircuitBreakerInterceptor(
                CircuitBreakerConfig(
                    failure_threshold=settings.circuit_breaker_failure_threshold,
                    recovery_timeout_ms=settings.circuit_breaker_recovery_timeout_ms,
                    half_open_max_calls=settings.circuit_breaker_half_open_max_calls,
                ),
                exempt_prefixes=ADMIN_PREFIXES,
            )
        )
    if settings.retry_enabled:
        interceptors.append(
            RetryInterceptor(
                max_retries=settings.retry_max_retries,
                base_delay_ms=settings.retry_base_delay_ms,
                max_delay_ms=settings.retry_max_delay_ms,
            )
        )
    interceptors += [
        TransformInterceptor(),
        TimeoutInterceptor(timeout_ms=settings.request_timeout_ms),
    ]
    return Pipeline(interceptors)
