"""
api/interceptors/transform.py -- Wrap JSON success bodies in the standard envelope.

    {"success": true, "statusCode": 200, "message": "...", "data": ...,
     "timestamp": "...", "path": "/api/v1/..."}

Bodies that already have a "success" key pass through untouched. A body of
the form {"data": [...], "meta": {...}} is treated as a page: "data" is
unwrapped and "meta" is carried next to it. Non-JSON and empty responses
(e.g. 204) pass through.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from fastapi import Response
from fastapi.responses import JSONResponse

from api.interceptors.base import CallContext, CallNext, Interceptor

_SUCCESS_MESSAGES = {
    "GET": "Data retrieved successfully",
    "POST": "Resource created successfully",
    "PUT": "Resource updated successfully",
    "PATCH": "Resource updated successfully",
    "DELETE": "Resource deleted successfully",
}
_DEFAULT_MESSAGE = "Operation completed successfully"

# Recomputed by JSONResponse; must not be copied from the original response.
_DROPPED_HEADERS = {"content-length", "content-type"}


def success_message(method: str) -> str:
    return _SUCCESS_MESSAGES.get(method.upper(), _DEFAULT_MESSAGE)


def build_envelope(data, status_code: int, method: str, path: str) -> dict:
    if isinstance(data, dict) and "success" in data:
        return data
    envelope = {
        "success": True,
        "statusCode": status_code,
        "message": success_message(method),
        "data": data,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": path,
    }
    if isinstance(data, dict) and "data" in data and "meta" in data:
        envelope["data"] = data["data"]
        if data["meta"]:
            envelope["meta"] = data["meta"]
    return envelope


class TransformInterceptor(Interceptor):
    async def intercept(self, ctx: CallContext, call_next: CallNext) -> Response:
        response = await call_next()
        if not 200 <= response.status_code < 300:
            return response
        if response.media_type != "application/json" or not getattr(response, "body", None):
            return response

        data = json.loads(response.body)
        if isinstance(data, dict) and "success" in data:
            return response

        headers = {k: v for k, v in response.headers.items() if k.lower() not in _DROPPED_HEADERS}
        return JSONResponse(
            content=build_envelope(data, response.status_code, ctx.method, ctx.path),
            status_code=response.status_code,
            headers=headers,
            background=response.background,
        )
