"""
api/interceptors/circuit_breaker.py -- Circuit breaker around route handlers.

States:
  CLOSED    -- requests flow; consecutive qualifying failures are counted.
               Reaching failure_threshold opens the circuit. Any success
               resets the consecutive count.
  OPEN      -- requests are rejected with 503 CIRCUIT_BREAKER_OPEN until
               recovery_timeout has elapsed since the circuit opened.
  HALF_OPEN -- entered lazily by the first request after recovery_timeout.
               At most half_open_max_calls trial requests are admitted;
               once that many succeed the circuit closes. Any qualifying
               failure re-opens it.

Qualifying failures: 5xx statuses, exceptions carrying no status (rendered
as 500), timeouts and network errors. 4xx errors are the caller's fault and
never move the breaker; in HALF_OPEN they release their trial slot, as
does a trial call that is cancelled before it produces an outcome.

Routes under exempt_prefixes bypass the breaker entirely.

State is per instance. All mutation happens on the event loop.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from enum import Enum

from fastapi import Response

from api.interceptors.base import (
    CallContext,
    CallNext,
    Interceptor,
    exception_status,
    is_network_error,
    is_timeout_error,
)
from core.errors import ServiceUnavailableError

logger = logging.getLogger("authgate.interceptors.circuit_breaker")


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitMetrics:
    failures: int = 0
    successes: int = 0
    total_calls: int = 0
    consecutive_failures: int = 0
    last_failure_time: float = 0.0
    half_open_calls: int = 0
    half_open_successes: int = 0


@dataclass(frozen=True)
class CircuitBreakerConfig:
    failure_threshold: int = 5
    recovery_timeout_ms: int = 60_000
    half_open_max_calls: int = 3


def _now_ms() -> float:
    return time.monotonic() * 1000


def is_breaker_failure(exc: BaseException) -> bool:
    if is_timeout_error(exc) or is_network_error(exc):
        return True
    status = exception_status(exc)
    # No status: the app renders it as 500.
    return status is None or status >= 500


class CircuitBreakerInterceptor(Interceptor):
    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = _now_ms,
        exempt_prefixes: tuple[str, ...] = (),
    ) -> None:
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self.exempt_prefixes = exempt_prefixes
        self.state = CircuitState.CLOSED
        self.metrics = CircuitMetrics()
        self._opened_at = 0.0

    async def intercept(self, ctx: CallContext, call_next: CallNext) -> Response:
        if ctx.route.startswith(self.exempt_prefixes):
            return await call_next()
        self._admit(ctx)
        self.metrics.total_calls += 1
        try:
            response = await call_next()
        except Exception as exc:
            if is_breaker_failure(exc):
                self._on_failure(ctx)
            else:
                self._on_neutral()
            raise
        except BaseException:
            # Cancelled (client disconnect, shutdown): no outcome, free the trial slot.
            self._on_neutral()
            raise
        if response.status_code >= 500:
            self._on_failure(ctx)
        else:
            self._on_success(ctx)
        return response

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _admit(self, ctx: CallContext) -> None:
        """Raise ServiceUnavailableError if the request must be blocked."""
        if self.state is CircuitState.OPEN:
            if self._clock() - self._opened_at >= self.config.recovery_timeout_ms:
                self._to_half_open()
            else:
                self._reject(ctx)
        if self.state is CircuitState.HALF_OPEN:
            if self.metrics.half_open_calls >= self.config.half_open_max_calls:
                self._reject(ctx)
            self.metrics.half_open_calls += 1

    def _reject(self, ctx: CallContext) -> None:
        logger.warning("Circuit breaker %s - blocking request to %s", self.state.value, ctx.endpoint)
        retry_after = self.retry_after()
        raise ServiceUnavailableError(
            "Service temporarily unavailable due to circuit breaker",
            code="CIRCUIT_BREAKER_OPEN",
            details={"state": self.state.value, "retryAfter": retry_after},
        )

    def _on_success(self, ctx: CallContext) -> None:
        self.metrics.successes += 1
        self.metrics.consecutive_failures = 0
        if self.state is CircuitState.HALF_OPEN:
            self.metrics.half_open_successes += 1
            if self.metrics.half_open_successes >= self.config.half_open_max_calls:
                self._to_closed()
                logger.info("Circuit breaker CLOSED - service recovered for %s", ctx.endpoint)

    def _on_failure(self, ctx: CallContext) -> None:
        self.metrics.failures += 1
        self.metrics.consecutive_failures += 1
        self.metrics.last_failure_time = self._clock()
        if self.state is CircuitState.HALF_OPEN:
            self._to_open()
            logger.warning("Circuit breaker OPEN - service still failing for %s", ctx.endpoint)
        elif (
            self.state is CircuitState.CLOSED
            and self.metrics.consecutive_failures >= self.config.failure_threshold
        ):
            self._to_open()
            logger.warning(
                "Circuit breaker OPEN - failure threshold exceeded for %s (consecutive=%d threshold=%d)",
                ctx.endpoint,
                self.metrics.consecutive_failures,
                self.config.failure_threshold,
            )

    def _on_neutral(self) -> None:
        if self.state is CircuitState.HALF_OPEN and self.metrics.half_open_calls > 0:
            self.metrics.half_open_calls -= 1

    def _to_open(self) -> None:
        self.state = CircuitState.OPEN
        self._opened_at = self._clock()
        self.metrics.half_open_calls = 0
        self.metrics.half_open_successes = 0

    def _to_half_open(self) -> None:
        self.state = CircuitState.HALF_OPEN
        self.metrics.half_open_calls = 0
        self.metrics.half_open_successes = 0
        logger.info("Circuit breaker HALF_OPEN - attempting service recovery")

    def _to_closed(self) -> None:
        self.state = CircuitState.CLOSED
        self.metrics.consecutive_failures = 0
        self.metrics.half_open_calls = 0
        self.metrics.half_open_successes = 0

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def retry_after(self) -> int:
        """Seconds until the next recovery attempt, rounded up, never negative."""
        remaining = self.config.recovery_timeout_ms - (self._clock() - self._opened_at)
        return max(0, math.ceil(remaining / 1000))

    def get_status(self) -> dict:
        return {
            "state": self.state.value,
            "metrics": asdict(self.metrics),
            "config": asdict(self.config),
            "retryAfter": self.retry_after() if self.state is CircuitState.OPEN else 0,
        }

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.metrics = CircuitMetrics()
        self._opened_at = 0.0
        logger.info("Circuit breaker reset to initial state")

    def force_open(self) -> None:
        self._to_open()
        logger.warning("Circuit breaker forced to OPEN state")

    def force_closed(self) -> None:
        self._to_closed()
        logger.info("Circuit breaker forced to CLOSED state")
