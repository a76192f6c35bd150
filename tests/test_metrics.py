"""Unit tests for api/interceptors/metrics.py.

Covers:
- per-endpoint and global counters, keyed by route template
- status >= 400 and raised exceptions count as errors
- slow-request warning and periodic summary logging
- health verdict thresholds
- reset()
"""

import logging

import pytest

from api.interceptors.metrics import MetricsInterceptor
from core.errors import NotFoundError
from tests.helpers import FakeMsClock, fail, make_ctx, respond, run


def _slow(clock: FakeMsClock, ms: float, status_code: int = 200):
    async def call_next():
        clock.advance(ms)
        return await respond(status_code)()

    return call_next


@pytest.fixture
def clock():
    return FakeMsClock()


@pytest.fixture
def metrics(clock):
    return MetricsInterceptor(slow_request_threshold_ms=5000, log_interval=100, clock=clock)


class TestRecording:
    def test_endpoint_keyed_by_route_template(self, metrics, clock):
        ctx = make_ctx(path="/api/v1/users/42", route="/api/v1/users/{user_id}")
        run(metrics.intercept(ctx, _slow(clock, 10)))
        run(metrics.intercept(make_ctx(path="/api/v1/users/7", route="/api/v1/users/{user_id}"), _slow(clock, 30)))

        endpoint = metrics.endpoint("GET /api/v1/users/{user_id}")
        assert endpoint.count == 2
        assert endpoint.avg_ms == 20
        assert endpoint.min_ms == 10
        assert endpoint.max_ms == 30

    def test_error_statuses_and_exceptions(self, metrics):
        run(metrics.intercept(make_ctx(), respond(200)))
        run(metrics.intercept(make_ctx(), respond(401)))
        with pytest.raises(NotFoundError):
            run(metrics.intercept(make_ctx(), fail(NotFoundError("missing"))))
        with pytest.raises(RuntimeError):
            run(metrics.intercept(make_ctx(), fail(RuntimeError("boom"))))

        snapshot = metrics.snapshot()
        assert snapshot["totalRequests"] == 4
        assert snapshot["totalErrors"] == 3
        assert snapshot["statusCodes"] == {"200": 1, "401": 1, "404": 1, "500": 1}
        assert snapshot["errorRate"] == 75.0

    def test_snapshot_endpoint_shape(self, metrics, clock):
        run(metrics.intercept(make_ctx(), _slow(clock, 12)))
        entry = metrics.snapshot()["endpoints"]["GET /api/v1/items"]
        assert entry["count"] == 1
        assert entry["averageResponseTime"] == 12
        assert entry["successCount"] == 1
        assert entry["errorCount"] == 0

    def test_reset(self, metrics):
        run(metrics.intercept(make_ctx(), respond(500)))
        metrics.reset()
        assert metrics.snapshot()["totalRequests"] == 0
        assert metrics.snapshot()["endpoints"] == {}


class TestLogging:
    def test_slow_request_warning(self, metrics, clock, caplog):
        with caplog.at_level(logging.WARNING, logger="authgate.interceptors.metrics"):
            run(metrics.intercept(make_ctx(), _slow(clock, 6000)))
        assert any("Slow request GET /api/v1/items" in r.getMessage() for r in caplog.records)

    def test_summary_every_interval(self, clock, caplog):
        metrics = MetricsInterceptor(log_interval=3, clock=clock)
        with caplog.at_level(logging.INFO, logger="authgate.interceptors.metrics"):
            for _ in range(3):
                run(metrics.intercept(make_ctx(), respond(200)))
        summaries = [r for r in caplog.records if r.getMessage().startswith("Metrics: 3 requests")]
        assert len(summaries) == 1
        assert "200=3" in summaries[0].getMessage()


class TestHealthVerdict:
    def test_healthy_with_no_traffic(self, metrics):
        assert metrics.health_status() == "healthy"

    def test_degraded_above_five_percent_errors(self, metrics):
        for _ in range(16):
            run(metrics.intercept(make_ctx(), respond(200)))
        run(metrics.intercept(make_ctx(), respond(500)))
        assert metrics.health_status() == "degraded"

    def test_unhealthy_above_ten_percent_errors(self, metrics):
        for _ in range(8):
            run(metrics.intercept(make_ctx(), respond(200)))
        for _ in range(2):
            run(metrics.intercept(make_ctx(), respond(500)))
        assert metrics.health_status() == "unhealthy"

    def test_degraded_when_slow(self, metrics, clock):
        run(metrics.intercept(make_ctx(), _slow(clock, 2500)))
        assert metrics.health_status() == "degraded"

    def test_unhealthy_when_very_slow(self, metrics, clock):
        run(metrics.intercept(make_ctx(), _slow(clock, 5001)))
        assert metrics.health_status() == "unhealthy"
