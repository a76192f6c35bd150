"""
api/interceptors/timeout.py -- Upper bound on handler run time.

The handler is awaited with asyncio.wait_for. On expiry the awaiting
coroutine is cancelled and RequestTimeoutError (408 REQUEST_TIMEOUT) is
raised. Work already handed to a worker thread keeps running to completion;
threads cannot be cancelled.
"""

from __future__ import annotations

import asyncio

from fastapi import Response

from api.interceptors.base import CallContext, CallNext, Interceptor
from core.errors import RequestTimeoutError


class TimeoutInterceptor(Interceptor):
    def __init__(self, timeout_ms: int = 30_000) -> None:
        self.timeout_ms = timeout_ms

    async def intercept(self, ctx: CallContext, call_next: CallNext) -> Response:
        try:
            return await asyncio.wait_for(call_next(), timeout=self.timeout_ms / 1000)
        except asyncio.TimeoutError as exc:
            raise RequestTimeoutError(f"Request timed out after {self.timeout_ms}ms") from exc
