"""
core/errors.py -- Application error taxonomy.

Every error raised on purpose by the service layer or an interceptor is an
AppError subclass. Each carries an HTTP status, a machine-readable code and
optional details. api/main.py renders all of them through a single exception
handler into the standard error envelope.

Layer rule: core/ is the kernel. No imports from api/, auth/, or cache/.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500
    default_code: str = "INTERNAL_SERVER_ERROR"

    def __init__(self, message: str, code: str | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details


class BadRequestError(AppError):
    status_code = 400
    default_code = "BAD_REQUEST"


class UnauthorizedError(AppError):
    status_code = 401
    default_code = "UNAUTHORIZED"


class ForbiddenError(AppError):
    status_code = 403
    default_code = "FORBIDDEN"


class NotFoundError(AppError):
    status_code = 404
    default_code = "NOT_FOUND"


class RequestTimeoutError(AppError):
    status_code = 408
    default_code = "REQUEST_TIMEOUT"


class ConflictError(AppError):
    status_code = 409
    default_code = "CONFLICT"


class PayloadTooLargeError(AppError):
    status_code = 413
    default_code = "PAYLOAD_TOO_LARGE"


class ServiceUnavailableError(AppError):
    status_code = 503
    default_code = "SERVICE_UNAVAILABLE"
