"""Unit tests for core/config.py.

Covers:
- duration parsing ("15m", "7d", plain seconds)
- JWT secret policy: generated in debug, required in production,
  minimum length, access and refresh secrets must differ
- bcrypt work factor bounds
- derived list settings (CORS origins, rate limit tiers)
"""

import pytest

from core.config import Settings, parse_duration

ACCESS = "a" * 32
REFRESH = "r" * 32


def _settings(**overrides) -> Settings:
    values = {"debug": False, "jwt_access_secret": ACCESS, "jwt_refresh_secret": REFRESH}
    values.update(overrides)
    return Settings(_env_file=None, **values)


class TestParseDuration:
    @pytest.mark.parametrize(
        "value, seconds",
        [("30s", 30), ("15m", 900), ("12h", 43_200), ("7d", 604_800), ("3600", 3600), (60, 60)],
    )
    def test_valid(self, value, seconds):
        assert parse_duration(value) == seconds

    @pytest.mark.parametrize("value", ["", "15x", "m15", "1.5h"])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_duration(value)

    def test_invalid_expiry_setting_rejected(self):
        with pytest.raises(ValueError):
            _settings(jwt_access_expires_in="soon")


class TestJwtSecrets:
    def test_production_requires_secrets(self):
        with pytest.raises(ValueError, match="JWT_ACCESS_SECRET is required"):
            _settings(jwt_access_secret="")

    def test_debug_generates_distinct_secrets(self):
        settings = _settings(debug=True, jwt_access_secret="", jwt_refresh_secret="")
        assert len(settings.jwt_access_secret) >= 32
        assert settings.jwt_access_secret != settings.jwt_refresh_secret

    def test_short_secret_rejected(self):
        with pytest.raises(ValueError, match="at least 32 characters"):
            _settings(jwt_refresh_secret="short")

    def test_equal_secrets_rejected(self):
        with pytest.raises(ValueError, match="must differ"):
            _settings(jwt_refresh_secret=ACCESS)

    def test_token_lifetimes(self):
        settings = _settings()
        assert settings.access_token_ttl == 900
        assert settings.refresh_token_ttl == 604_800


class TestOtherSettings:
    @pytest.mark.parametrize("rounds", [4, 11, 32])
    def test_bcrypt_rounds_bounds(self, rounds):
        with pytest.raises(ValueError):
            _settings(bcrypt_rounds=rounds)

    def test_bcrypt_rounds_default(self):
        assert _settings().bcrypt_rounds == 12

    def test_allowed_origins(self):
        settings = _settings(cors_origins="https://a.example, https://b.example,")
        assert settings.allowed_origins == ["https://a.example", "https://b.example"]

    def test_rate_limit_tiers(self):
        assert _settings().rate_limits == ["10/minute", "50/5 minutes", "100/15 minutes"]

    def test_interceptor_defaults(self):
        settings = _settings()
        assert settings.request_timeout_ms == 30_000
        assert settings.cache_ttl_ms == 300_000
        assert settings.circuit_breaker_failure_threshold == 5
        assert settings.circuit_breaker_recovery_timeout_ms == 60_000
        assert settings.retry_enabled is False
