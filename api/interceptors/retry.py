"""
api/interceptors/retry.py -- Retry with exponential backoff and jitter.

Only idempotent methods (GET, HEAD, OPTIONS) are retried. A request is
retried when the downstream call fails with a network error or a timeout,
or answers with a retryable status (408, 429, 500, 502, 503, 504). Anything
else propagates on the first failure. Once retries run out, the last
response is returned or the last exception re-raised.

Delay before retry n (1-based):
    min(max_delay, base_delay * 2**(n-1) * (1 + random() * 0.1))

The loop itself is tenacity's AsyncRetrying; sleep and random source are
injectable so tests run without real delays.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

from fastapi import Response
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
)

from api.interceptors.base import (
    CallContext,
    CallNext,
    Interceptor,
    exception_status,
    is_network_error,
    is_timeout_error,
)

logger = logging.getLogger("authgate.interceptors.retry")

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def is_retryable(exc: BaseException) -> bool:
    if is_network_error(exc) or is_timeout_error(exc):
        return True
    return exception_status(exc) in RETRYABLE_STATUSES


def _is_retryable_response(response: Response) -> bool:
    return response.status_code in RETRYABLE_STATUSES


def _last_outcome(state: RetryCallState) -> Response:
    # Raises the last exception, or hands back the last response.
    return state.outcome.result()


class RetryInterceptor(Interceptor):
    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 10_000,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
    ) -> None:
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self._sleep = sleep
        self._rand = rand

    def delay_ms(self, attempt: int) -> float:
        jitter = 1 + self._rand() * 0.1
        return min(self.max_delay_ms, self.base_delay_ms * 2 ** (attempt - 1) * jitter)

    def _wait(self, state: RetryCallState) -> float:
        return self.delay_ms(state.attempt_number) / 1000

    def _log_retry(self, ctx: CallContext) -> Callable[[RetryCallState], None]:
        def before_sleep(state: RetryCallState) -> None:
            outcome = state.outcome
            if outcome.failed:
                reason = type(outcome.exception()).__name__
            else:
                reason = f"status {outcome.result().status_code}"
            logger.warning(
                "Retrying %s (attempt %d/%d) after %.0fms: %s",
                ctx.endpoint,
                state.attempt_number,
                self.max_retries,
                state.next_action.sleep * 1000,
                reason,
            )

        return before_sleep

    async def intercept(self, ctx: CallContext, call_next: CallNext) -> Response:
        if ctx.method not in SAFE_METHODS:
            return await call_next()

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(is_retryable) | retry_if_result(_is_retryable_response),
            sleep=self._sleep,
            before_sleep=self._log_retry(ctx),
            retry_error_callback=_last_outcome,
        )
        return await retrying(call_next)
