"""
api/interceptors/validation.py -- Request sanity checks and response leak detection.

Request phase (each failure is a 4xx before the handler runs):
  - Content-Length above max_request_size_bytes      -> 413 PAYLOAD_TOO_LARGE
  - POST/PUT/PATCH carrying a body without a
    Content-Type                                     -> 400 MISSING_CONTENT_TYPE
  - Content-Type other than JSON, form or multipart  -> 400 INVALID_CONTENT_TYPE
  - page < 1 or not an integer                       -> 400 INVALID_PAGE
  - limit outside 1..100                             -> 400 INVALID_LIMIT
  - sort not "field" / "field:asc" / "field:desc"    -> 400 INVALID_SORT_FORMAT
  - search shorter than 2 or longer than 100 chars   -> 400 SEARCH_TOO_SHORT / SEARCH_TOO_LONG
  - missing User-Agent only logs a warning

Response phase: JSON bodies are scanned for keys that look like secrets
(password, token, secret, apiKey, privateKey, ssn, creditCard). A hit is
logged at ERROR level; the response is not altered.
"""

from __future__ import annotations

import json
import logging
import re

from fastapi import Request, Response

from api.interceptors.base import CallContext, CallNext, Interceptor
from core.errors import BadRequestError, PayloadTooLargeError

logger = logging.getLogger("authgate.interceptors.validation")

BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})
ALLOWED_CONTENT_TYPES = (
    "application/json",
    "application/x-www-form-urlencoded",
    "multipart/form-data",
)
SENSITIVE_KEYS = frozenset(k.lower() for k in ("password", "token", "secret", "apiKey", "privateKey", "ssn", "creditCard"))

_SORT_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(:asc|:desc)?$")


def _has_body(request: Request) -> bool:
    if "transfer-encoding" in request.headers:
        return True
    try:
        return int(request.headers.get("content-length", "0")) > 0
    except ValueError:
        return False


def _parse_int(value: str) -> int | None:
    try:
        return int(value)
    except ValueError:
        return None


def find_sensitive_keys(data) -> set[str]:
    """Return the sensitive key names present anywhere in a decoded JSON value."""
    found: set[str] = set()
    if isinstance(data, dict):
        for key, value in data.items():
            if str(key).lower() in SENSITIVE_KEYS:
                found.add(str(key))
            found |= find_sensitive_keys(value)
    elif isinstance(data, list):
        for item in data:
            found |= find_sensitive_keys(item)
    return found


class ValidationInterceptor(Interceptor):
    def __init__(self, max_request_size_bytes: int = 10 * 1024 * 1024) -> None:
        self.max_request_size_bytes = max_request_size_bytes

    async def intercept(self, ctx: CallContext, call_next: CallNext) -> Response:
        self.validate_request(ctx.request)
        response = await call_next()
        self._check_sensitive_data(ctx, response)
        return response

    # ------------------------------------------------------------------
    # Request checks
    # ------------------------------------------------------------------

    def validate_request(self, request: Request) -> None:
        self._check_size(request)
        self._check_content_type(request)
        if not request.headers.get("user-agent"):
            logger.warning("Missing required header: user-agent (%s %s)", request.method, request.url.path)
        self._check_query(request)

    def _check_size(self, request: Request) -> None:
        size = _parse_int(request.headers.get("content-length", "0"))
        if size is not None and size > self.max_request_size_bytes:
            raise PayloadTooLargeError(
                "Request payload too large",
                details={"maxSize": f"{self.max_request_size_bytes} bytes", "receivedSize": f"{size} bytes"},
            )

    def _check_content_type(self, request: Request) -> None:
        if request.method.upper() not in BODY_METHODS or not _has_body(request):
            return
        content_type = request.headers.get("content-type")
        if not content_type:
            raise BadRequestError("Content-Type header is required", code="MISSING_CONTENT_TYPE")
        if not any(t in content_type.lower() for t in ALLOWED_CONTENT_TYPES):
            raise BadRequestError(
                "Invalid Content-Type",
                code="INVALID_CONTENT_TYPE",
                details={"allowedTypes": list(ALLOWED_CONTENT_TYPES), "receivedType": content_type},
            )

    def _check_query(self, request: Request) -> None:
        query = request.query_params

        if "page" in query:
            page = _parse_int(query["page"])
            if page is None or page < 1:
                raise BadRequestError(
                    "Invalid page parameter", code="INVALID_PAGE", details="Page must be a positive integer"
                )

        if "limit" in query:
            limit = _parse_int(query["limit"])
            if limit is None or not 1 <= limit <= 100:
                raise BadRequestError(
                    "Invalid limit parameter", code="INVALID_LIMIT", details="Limit must be between 1 and 100"
                )

        if "sort" in query and not _SORT_RE.match(query["sort"]):
            raise BadRequestError(
                "Invalid sort parameter format",
                code="INVALID_SORT_FORMAT",
                details="Sort must be in format: field or field:asc/desc",
            )

        if "search" in query:
            search = query["search"]
            if len(search) < 2:
                raise BadRequestError(
                    "Search query too short",
                    code="SEARCH_TOO_SHORT",
                    details="Search query must be at least 2 characters long",
                )
            if len(search) > 100:
                raise BadRequestError(
                    "Search query too long",
                    code="SEARCH_TOO_LONG",
                    details="Search query must be at most 100 characters long",
                )

    # ------------------------------------------------------------------
    # Response checks
    # ------------------------------------------------------------------

    def _check_sensitive_data(self, ctx: CallContext, response: Response) -> None:
        if response.media_type != "application/json" or not getattr(response, "body", None):
            return
        try:
            data = json.loads(response.body)
        except ValueError:
            return
        for key in sorted(find_sensitive_keys(data)):
            logger.error("Potential sensitive data leak in response: %s (%s)", key, ctx.endpoint)
