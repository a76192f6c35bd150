"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for AuthGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_access_secret -> JWT_ACCESS_SECRET).

  @model_validator(mode="after"): Cross-field validation after all fields are
      resolved. Dev mode generates missing JWT secrets with a warning,
      production mode refuses to start without them.

Security notes:
  Access and refresh tokens are signed with two different secrets. A refresh
  token must never verify as an access token, so equal secrets are rejected.

  Secrets shorter than 32 chars are rejected outright.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

from __future__ import annotations

import logging
import re
import secrets
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authgate.config")

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: str | int) -> int:
    """Convert a duration such as "15m", "7d", "12h", "30s" or "3600" to seconds.

    Raises ValueError on anything else.
    """
    if isinstance(value, int):
        return value
    match = _DURATION_RE.match(value)
    if match is None:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit]


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file (DEBUG=true supplies the secrets).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = "sqlite:///./authgate.db"

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured".
    jwt_access_secret: str = ""
    jwt_refresh_secret: str = ""
    jwt_access_expires_in: str = "15m"
    jwt_refresh_expires_in: str = "7d"
    bcrypt_rounds: int = 12

    # First-run admin. Created at startup only when the users table is empty
    # and both email and password are set.
    admin_email: str = ""
    admin_username: str = "admin"
    admin_password: str = ""

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    # Comma-separated list. Ignored when debug is on (every origin allowed).
    cors_origins: str = "http://localhost:3000"
    max_request_size_bytes: int = 10 * 1024 * 1024

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    # Semicolon-separated slowapi limit strings, applied together per client IP.
    rate_limit_tiers: str = "10/minute;50/5 minutes;100/15 minutes"
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Interceptors
    # ------------------------------------------------------------------

    request_timeout_ms: int = 30_000
    cache_ttl_ms: int = 300_000
    cache_cleanup_threshold: int = 1000

    circuit_breaker_enabled: bool = True
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_recovery_timeout_ms: int = 60_000
    circuit_breaker_half_open_max_calls: int = 3

    retry_enabled: bool = False
    retry_max_retries: int = 3
    retry_base_delay_ms: int = 1000
    retry_max_delay_ms: int = 10_000

    slow_request_threshold_ms: int = 5000
    metrics_log_interval: int = 100

    # ------------------------------------------------------------------
    # Background jobs
    # ------------------------------------------------------------------

    session_cleanup_interval_seconds: int = 6 * 60 * 60

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_access_expires_in", "jwt_refresh_expires_in")
    @classmethod
    def validate_duration(cls, value: str) -> str:
        parse_duration(value)
        return value

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        if value < 12 or value > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 12 and 31.")
        return value

    @model_validator(mode="after")
    def validate_jwt_secrets(self) -> "Settings":
        """Enforce the JWT secret policy.

        Dev mode (DEBUG=true): auto-generate missing secrets with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode: refuse to start if either secret is missing.

        Both modes: reject secrets shorter than 32 characters and reject an
            access secret equal to the refresh secret.
        """
        for field in ("jwt_access_secret", "jwt_refresh_secret"):
            if getattr(self, field):
                continue
            name = field.upper()
            if not self.debug:
                raise ValueError(
                    f"{name} is required in production mode. "
                    f"Set {name} in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, field, secrets.token_hex(32))
            logger.warning("Using auto-generated %s. Tokens will not persist across restarts.", name)
        if len(self.jwt_access_secret) < 32 or len(self.jwt_refresh_secret) < 32:
            raise ValueError("JWT secrets must be at least 32 characters.")
        if self.jwt_access_secret == self.jwt_refresh_secret:
            raise ValueError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ.")
        return self

    # ------------------------------------------------------------------
    # Derived values
    # ------------------------------------------------------------------

    @property
    def access_token_ttl(self) -> int:
        return parse_duration(self.jwt_access_expires_in)

    @property
    def refresh_token_ttl(self) -> int:
        return parse_duration(self.jwt_refresh_expires_in)

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def rate_limits(self) -> list[str]:
        return [t.strip() for t in self.rate_limit_tiers.split(";") if t.strip()]


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
