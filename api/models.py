"""
API request and response models for AuthGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Wire format is camelCase (firstName, refreshToken, ...). Every model uses the
to_camel alias generator; populate_by_name lets Python code construct models
with snake_case names.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from auth.models import Role, User
from auth.tokens import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[a-zA-Z0-9_-]+$"
PASSWORD_SPECIALS = "@$!%*?&"

# Characters. Multi-byte text is also held to MAX_PASSWORD_BYTES.
_PASSWORD_MAX = 64


def _check_password_strength(value: str) -> str:
    """Require a lowercase letter, an uppercase letter, a digit and a special character.

    Also rejects passwords longer than bcrypt's 72-byte input limit once
    UTF-8 encoded.
    """
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must not exceed {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded")
    if not (
        re.search(r"[a-z]", value)
        and re.search(r"[A-Z]", value)
        and re.search(r"\d", value)
        and any(c in PASSWORD_SPECIALS for c in value)
    ):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, "
            f"one number, and one special character ({PASSWORD_SPECIALS})"
        )
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(_CamelModel):
    """Request body for POST /api/v1/auth/register.

    firstName / lastName are optional; when sent they must be 2-50 chars.
    """

    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    username: str = Field(min_length=1, max_length=20, pattern=USERNAME_PATTERN)
    first_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    last_name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    password: str = Field(min_length=8, max_length=_PASSWORD_MAX)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginRequest(_CamelModel):
    email: str = Field(pattern=EMAIL_PATTERN, max_length=255)
    password: str = Field(min_length=6, max_length=_PASSWORD_MAX)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class RefreshTokenRequest(_CamelModel):
    refresh_token: str = Field(min_length=1)


class ChangePasswordRequest(_CamelModel):
    current_password: str = Field(min_length=1, max_length=_PASSWORD_MAX)
    new_password: str = Field(min_length=8, max_length=_PASSWORD_MAX)

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(_CamelModel):
    id: str
    email: str
    username: str
    first_name: str
    last_name: str
    role: Role
    is_active: bool
    email_verified: bool
    last_login_at: Optional[datetime] = None
    password_changed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> UserResponse:
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            first_name=user.first_name,
            last_name=user.last_name,
            role=user.role,
            is_active=user.is_active,
            email_verified=user.email_verified,
            last_login_at=user.last_login_at,
            password_changed_at=user.password_changed_at,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class TokenResponse(_CamelModel):
    access_token: str
    refresh_token: str


class AuthResponse(_CamelModel):
    access_token: str
    refresh_token: str
    user: UserResponse


class SessionStatsResponse(_CamelModel):
    active: int
    total: int
    expired: int
    revoked: int


class CleanupResponse(_CamelModel):
    deleted: int


class HealthResponse(_CamelModel):
    """Response body for GET /api/v1/health.

    status is the metrics verdict: healthy, degraded or unhealthy.
    components maps each subsystem to "ok" / "error" (database) or its
    state (circuitBreaker).
    """

    status: str = "healthy"
    version: str
    timestamp: datetime
    components: dict[str, str]


# ---------------------------------------------------------------------------
# Error envelope
# ---------------------------------------------------------------------------


class FieldError(BaseModel):
    field: str
    value: Any = None
    constraints: list[str]


class ErrorDetail(_CamelModel):
    code: str
    details: Any = None
    validation_errors: Optional[list[FieldError]] = None
    request_id: Optional[str] = None


class ErrorResponse(_CamelModel):
    """Standard error envelope returned by every exception handler."""

    success: bool = False
    status_code: int
    message: str
    error: ErrorDetail
    timestamp: datetime
    path: str
