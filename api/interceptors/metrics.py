"""
api/interceptors/metrics.py -- Request metrics per endpoint and globally.

For every request: count, duration (total / avg / min / max, in ms), success
and error counts and a status-code histogram. Keys are "METHOD /route/template"
so path parameters do not explode the key space.

A response with status >= 400, or any exception reaching this interceptor, is
an error. Exceptions carry their rendered status when they have one, else 500.

Logging:
  - WARNING for any request slower than slow_request_threshold_ms
  - INFO summary (totals and top status codes) every log_interval requests

Health verdict (health_status()):
  unhealthy  error rate > 10 %  or avg > slow_request_threshold_ms
  degraded   error rate >  5 %  or avg > 2000 ms
  healthy    otherwise, including when no request has been seen yet
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field

from fastapi import Response

from api.interceptors.base import CallContext, CallNext, Interceptor, exception_status

logger = logging.getLogger("authgate.interceptors.metrics")

DEGRADED_RESPONSE_TIME_MS = 2000
UNHEALTHY_ERROR_RATE = 10.0
DEGRADED_ERROR_RATE = 5.0
TOP_STATUS_CODES_LIMIT = 5


def _perf_ms() -> float:
    return time.perf_counter() * 1000


@dataclass
class EndpointMetrics:
    count: int = 0
    total_ms: float = 0.0
    min_ms: float | None = None
    max_ms: float = 0.0
    successes: int = 0
    errors: int = 0
    status_codes: Counter = field(default_factory=Counter)

    @property
    def avg_ms(self) -> float:
        return self.total_ms / self.count if self.count else 0.0

    @property
    def error_rate(self) -> float:
        return self.errors / self.count * 100 if self.count else 0.0

    def record(self, duration_ms: float, status: int, error: bool) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)
        if error:
            self.errors += 1
        else:
            self.successes += 1
        self.status_codes[status] += 1

    def to_dict(self) -> dict:
        return {
            "count": self.count,
            "totalResponseTime": round(self.total_ms, 3),
            "averageResponseTime": round(self.avg_ms, 3),
            "minResponseTime": round(self.min_ms or 0.0, 3),
            "maxResponseTime": round(self.max_ms, 3),
            "successCount": self.successes,
            "errorCount": self.errors,
            "errorRate": round(self.error_rate, 2),
            "statusCodes": {str(k): v for k, v in sorted(self.status_codes.items())},
        }


class MetricsInterceptor(Interceptor):
    def __init__(
        self,
        slow_request_threshold_ms: int = 5000,
        log_interval: int = 100,
        clock: Callable[[], float] = _perf_ms,
    ) -> None:
        self.slow_request_threshold_ms = slow_request_threshold_ms
        self.log_interval = log_interval
        self._clock = clock
        self._global = EndpointMetrics()
        self._endpoints: dict[str, EndpointMetrics] = {}

    async def intercept(self, ctx: CallContext, call_next: CallNext) -> Response:
        start = self._clock()
        try:
            response = await call_next()
        except Exception as exc:
            status = exception_status(exc) or 500
            self._record(ctx, self._clock() - start, status, error=True)
            raise
        self._record(ctx, self._clock() - start, response.status_code, error=response.status_code >= 400)
        return response

    def _record(self, ctx: CallContext, duration_ms: float, status: int, error: bool) -> None:
        endpoint = self._endpoints.setdefault(ctx.endpoint, EndpointMetrics())
        endpoint.record(duration_ms, status, error)
        self._global.record(duration_ms, status, error)

        if duration_ms > self.slow_request_threshold_ms:
            logger.warning("Slow request %s took %.0fms (status %d)", ctx.endpoint, duration_ms, status)

        if self.log_interval and self._global.count % self.log_interval == 0:
            top = self._global.status_codes.most_common(TOP_STATUS_CODES_LIMIT)
            logger.info(
                "Metrics: %d requests, %.2f%% errors, avg %.1fms, top status codes %s",
                self._global.count,
                self._global.error_rate,
                self._global.avg_ms,
                ", ".join(f"{code}={n}" for code, n in top),
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        return {
            "totalRequests": self._global.count,
            "totalErrors": self._global.errors,
            "errorRate": round(self._global.error_rate, 2),
            "averageResponseTime": round(self._global.avg_ms, 3),
            "statusCodes": self._global.to_dict()["statusCodes"],
            "endpoints": {key: m.to_dict() for key, m in sorted(self._endpoints.items())},
        }

    def endpoint(self, key: str) -> EndpointMetrics | None:
        return self._endpoints.get(key)

    def reset(self) -> None:
        self._global = EndpointMetrics()
        self._endpoints.clear()
        logger.info("Metrics reset")

    def health_status(self) -> str:
        if self._global.count == 0:
            return "healthy"
        error_rate = self._global.error_rate
        avg = self._global.avg_ms
        if error_rate > UNHEALTHY_ERROR_RATE or avg > self.slow_request_threshold_ms:
            return "unhealthy"
        if error_rate > DEGRADED_ERROR_RATE or avg > DEGRADED_RESPONSE_TIME_MS:
            return "degraded"
        return "healthy"
