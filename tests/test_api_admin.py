"""
tests/test_api_admin.py -- Integration tests for /api/v1/admin/* and the HTTP middleware.

Covers:
  - admin routes: 401 anonymous, 403 for USER, 200/204 for ADMIN
  - metrics, circuit breaker and cache inspection / reset
  - admin routes stay reachable while the breaker is open
  - session cleanup endpoint
  - X-Request-ID generation and echo, security headers, CORS, gzip
  - unknown routes rendered in the error envelope

Fixtures used (from conftest.py):
  api_client -- ApiContext with a TestClient, an ADMIN and a USER account
"""

from __future__ import annotations

import re

from api.interceptors.circuit_breaker import CircuitBreakerInterceptor

METRICS = "/api/v1/admin/metrics"
BREAKER = "/api/v1/admin/circuit-breaker"
CACHE = "/api/v1/admin/cache"
CLEANUP = "/api/v1/admin/sessions/cleanup"

REQUEST_ID_RE = re.compile(r"^req_[0-9a-z]+_[0-9a-z]{7}$")


def _admin(api_client):
    return api_client.auth(api_client.admin_token)


# ---------------------------------------------------------------------------
# Access control
# ---------------------------------------------------------------------------


class TestAdminAccess:
    def test_anonymous_is_401(self, api_client):
        assert api_client.client.get(METRICS).status_code == 401

    def test_user_role_is_403(self, api_client):
        resp = api_client.client.get(METRICS, headers=api_client.auth(api_client.user_token))
        assert resp.status_code == 403
        body = resp.json()
        assert body["message"] == "Access denied. Required roles: ADMIN"
        assert body["error"]["code"] == "FORBIDDEN"

    def test_admin_is_allowed(self, api_client):
        resp = api_client.client.get(METRICS, headers=_admin(api_client))
        assert resp.status_code == 200
        data = resp.json()["data"]
        assert "totalRequests" in data
        assert data["health"] in ("healthy", "degraded", "unhealthy")


# ---------------------------------------------------------------------------
# Operational endpoints
# ---------------------------------------------------------------------------


class TestMetricsEndpoints:
    def test_metrics_track_endpoints(self, api_client):
        client = api_client.client
        client.get("/api/v1/auth/profile", headers=api_client.auth(api_client.user_token))
        data = client.get(METRICS, headers=_admin(api_client)).json()["data"]
        assert "GET /api/v1/auth/profile" in data["endpoints"]

    def test_reset_metrics(self, api_client):
        client = api_client.client
        assert client.delete(METRICS, headers=_admin(api_client)).status_code == 204
        data = client.get(METRICS, headers=_admin(api_client)).json()["data"]
        # The DELETE is recorded after its own reset ran.
        assert data["totalRequests"] <= 1


class TestCircuitBreakerEndpoints:
    def test_status(self, api_client):
        data = api_client.client.get(BREAKER, headers=_admin(api_client)).json()["data"]
        assert data["state"] == "CLOSED"
        assert data["config"]["failure_threshold"] == 5

    def test_admin_reachable_while_open_and_reset_closes(self, api_client):
        client = api_client.client
        breaker = client.app.state.pipeline.get(CircuitBreakerInterceptor)
        breaker.force_open()
        try:
            blocked = client.get("/api/v1/auth/profile", headers=api_client.auth(api_client.user_token))
            assert blocked.status_code == 503
            assert blocked.json()["error"]["code"] == "CIRCUIT_BREAKER_OPEN"
            assert "Retry-After" in blocked.headers

            status = client.get(BREAKER, headers=_admin(api_client))
            assert status.status_code == 200
            assert status.json()["data"]["state"] == "OPEN"

            reset = client.post(f"{BREAKER}/reset", headers=_admin(api_client))
            assert reset.status_code == 200
            assert reset.json()["data"]["state"] == "CLOSED"
        finally:
            breaker.reset()

        assert client.get("/api/v1/auth/profile", headers=api_client.auth(api_client.user_token)).status_code == 200


class TestCacheAndSessionEndpoints:
    def test_cache_stats_and_clear(self, api_client):
        client = api_client.client
        stats = client.get(CACHE, headers=_admin(api_client)).json()["data"]
        assert set(stats) == {"size", "hits", "misses", "keys"}
        assert client.delete(CACHE, headers=_admin(api_client)).status_code == 204
        assert client.get(CACHE, headers=_admin(api_client)).json()["data"]["size"] == 0

    def test_sessions_cleanup(self, api_client):
        resp = api_client.client.post(CLEANUP, headers=_admin(api_client))
        assert resp.status_code == 200
        assert resp.json()["data"]["deleted"] >= 0


# ---------------------------------------------------------------------------
# HTTP middleware
# ---------------------------------------------------------------------------


class TestMiddleware:
    def test_request_id_generated(self, api_client):
        resp = api_client.client.get("/api/v1/health")
        assert REQUEST_ID_RE.match(resp.headers["X-Request-ID"])

    def test_request_id_echoed_and_reported_in_errors(self, api_client):
        resp = api_client.client.get("/api/v1/auth/profile", headers={"X-Request-ID": "req_test_1234567"})
        assert resp.headers["X-Request-ID"] == "req_test_1234567"
        assert resp.json()["error"]["requestId"] == "req_test_1234567"

    def test_security_headers_on_success_and_error(self, api_client):
        for resp in (api_client.client.get("/api/v1/health"), api_client.client.get("/api/v1/auth/profile")):
            assert resp.headers["X-Content-Type-Options"] == "nosniff"
            assert resp.headers["X-Frame-Options"] == "DENY"
            assert resp.headers["Strict-Transport-Security"].startswith("max-age=31536000")
            assert "default-src 'self'" in resp.headers["Content-Security-Policy"]

    def test_cors_preflight(self, api_client):
        resp = api_client.client.options(
            "/api/v1/auth/login",
            headers={
                "Origin": "http://app.example",
                "Access-Control-Request-Method": "POST",
                "Access-Control-Request-Headers": "Content-Type",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["Access-Control-Allow-Origin"] == "http://app.example"
        assert resp.headers["Access-Control-Allow-Credentials"] == "true"
        assert resp.headers["Access-Control-Max-Age"] == "86400"

    def test_cors_exposes_request_id(self, api_client):
        resp = api_client.client.get("/api/v1/health", headers={"Origin": "http://app.example"})
        assert resp.headers["Access-Control-Allow-Origin"] == "http://app.example"
        assert "x-request-id" in resp.headers["Access-Control-Expose-Headers"].lower()

    def test_large_responses_are_gzipped(self, api_client):
        resp = api_client.client.get("/openapi.json", headers={"Accept-Encoding": "gzip"})
        assert resp.status_code == 200
        assert resp.headers["Content-Encoding"] == "gzip"
        assert resp.json()["info"]["title"] == "AuthGate API"

    def test_unknown_route_uses_error_envelope(self, api_client):
        resp = api_client.client.get("/api/v1/nope")
        assert resp.status_code == 404
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["code"] == "HTTP_404"
        assert body["path"] == "/api/v1/nope"
