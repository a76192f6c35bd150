"""
api/interceptors/request_logging.py -- Per-request incoming / outgoing / error log lines.

Every line carries the request id (set by the request-context middleware)
and the elapsed time. Error lines are logged at ERROR for 5xx and at WARNING
for 4xx; the exception is re-raised unchanged.
"""

from __future__ import annotations

import logging
import time

from fastapi import Response

from api.interceptors.base import CallContext, CallNext, Interceptor, exception_status

logger = logging.getLogger("authgate.interceptors.logging")


def format_bytes(size: int) -> str:
    if size <= 0:
        return "0 bytes"
    units = ("bytes", "KB", "MB", "GB")
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


class RequestLoggingInterceptor(Interceptor):
    async def intercept(self, ctx: CallContext, call_next: CallNext) -> Response:
        request = ctx.request
        start = time.perf_counter()
        logger.info(
            "Incoming request %s %s request_id=%s ip=%s user_agent=%s",
            ctx.method,
            ctx.path,
            ctx.request_id,
            request.client.host if request.client else "unknown",
            request.headers.get("user-agent", "unknown"),
        )
        try:
            response = await call_next()
        except Exception as exc:
            ms = (time.perf_counter() - start) * 1000
            status = exception_status(exc) or 500
            level = logging.ERROR if status >= 500 else logging.WARNING
            logger.log(
                level,
                "Error response %s %s - %d [%.1fms] request_id=%s error=%s",
                ctx.method,
                ctx.path,
                status,
                ms,
                ctx.request_id,
                exc,
            )
            raise
        ms = (time.perf_counter() - start) * 1000
        body = getattr(response, "body", b"") or b""
        logger.info(
            "Outgoing response %s %s - %d [%.1fms] size=%s request_id=%s",
            ctx.method,
            ctx.path,
            response.status_code,
            ms,
            format_bytes(len(body)),
            ctx.request_id,
        )
        return response
