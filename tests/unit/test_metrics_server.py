"""
Unit tests for MetricsServer HTTP endpoints.

Uses ``aiohttp.test_utils`` to drive the server's aiohttp application
without opening real sockets, so the tests work with ``--disable-socket``.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiohttp.test_utils import TestClient, TestServer

from secret_syncer.observability.health import HealthCheckResult
from secret_syncer.observability.metrics import MetricsServer


def result(name: str, status: str) -> HealthCheckResult:
    return HealthCheckResult(name=name, status=status, message=status)


@pytest.fixture
def metrics_server():
    """Create a fresh MetricsServer instance per test."""
    return MetricsServer(port=0)


@pytest.fixture
def enable_socket(socket_enabled):
    """Enable sockets for aiohttp server tests."""
    pass


@pytest.fixture
async def client(metrics_server, enable_socket):
    """Create an aiohttp TestClient from the MetricsServer app."""
    server = TestServer(metrics_server.app)
    async with TestClient(server) as cli:
        yield cli


# ---------------------------------------------------------------------------
# /metrics endpoint
# ---------------------------------------------------------------------------
class TestMetricsEndpoint:
    """Tests for ``GET /metrics``."""

    @pytest.mark.asyncio
    async def test_metrics_returns_200(self, client):
        """Prometheus scrape endpoint exposes the syncer metrics."""
        resp = await client.get("/metrics")
        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/plain")
        assert "charset=utf-8" in resp.headers["Content-Type"]
        body = await resp.text()
        assert "secret_syncer_" in body

    @pytest.mark.asyncio
    async def test_metrics_error_returns_500(self, client):
        """When generate_latest raises, the handler returns 500."""
        with patch(
            "secret_syncer.observability.metrics.generate_latest",
            side_effect=RuntimeError("boom"),
        ):
            resp = await client.get("/metrics")
        assert resp.status == 500
        body = await resp.text()
        assert "RuntimeError" in body


class TestHealthzEndpoint:
    """Tests for ``GET /healthz`` (K8s liveness probe)."""

    @pytest.mark.asyncio
    async def test_healthz_returns_200_ok(self, client):
        resp = await client.get("/healthz")
        assert resp.status == 200
        assert await resp.text() == "ok"


# ---------------------------------------------------------------------------
# /health endpoint
# ---------------------------------------------------------------------------
class TestHealthEndpoint:
    """Tests for ``GET /health``."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,expected", [("healthy", 200), ("degraded", 200), ("unhealthy", 503)]
    )
    async def test_health_status_codes(self, client, status, expected):
        mock_checker = MagicMock()
        mock_checker.check_all = AsyncMock(return_value={})
        mock_checker.to_dict.return_value = {"status": status, "checks": {}}

        with patch(
            "secret_syncer.observability.health.HealthChecker",
            return_value=mock_checker,
        ):
            resp = await client.get("/health")
        assert resp.status == expected
        data = await resp.json()
        assert data["status"] == status

    @pytest.mark.asyncio
    async def test_health_exception_returns_500(self, client):
        """When HealthChecker raises, return 500 with error info."""
        with patch(
            "secret_syncer.observability.health.HealthChecker",
            side_effect=RuntimeError("kaboom"),
        ):
            resp = await client.get("/health")
        assert resp.status == 500
        data = await resp.json()
        assert data["status"] == "unhealthy"
        assert "RuntimeError" in data["error"]

    @pytest.mark.asyncio
    async def test_injected_checker_is_used(self, enable_socket):
        mock_checker = MagicMock()
        mock_checker.check_all = AsyncMock(return_value={})
        mock_checker.to_dict.return_value = {"status": "healthy", "checks": {}}
        server = MetricsServer(port=0, health_checker=mock_checker)

        async with TestClient(TestServer(server.app)) as cli:
            resp = await cli.get("/health")

        assert resp.status == 200
        mock_checker.check_all.assert_awaited_once()


# ---------------------------------------------------------------------------
# /ready endpoint
# ---------------------------------------------------------------------------
class TestReadyEndpoint:
    """Tests for ``GET /ready``."""

    @staticmethod
    def checker(api_status: str, cache_status: str) -> MagicMock:
        mock_checker = MagicMock()
        mock_checker.check_kubernetes_api = AsyncMock(
            return_value=result("kubernetes_api", api_status)
        )
        mock_checker.check_secret_cache = AsyncMock(
            return_value=result("secret_cache", cache_status)
        )
        return mock_checker

    @pytest.mark.asyncio
    async def test_ready_all_healthy_returns_200(self, client):
        with patch(
            "secret_syncer.observability.health.HealthChecker",
            return_value=self.checker("healthy", "healthy"),
        ):
            resp = await client.get("/ready")
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "ready"
        assert data["checks"] == {"kubernetes_api": "healthy", "secret_cache": "healthy"}

    @pytest.mark.asyncio
    async def test_stale_cache_is_still_ready(self, client):
        """A degraded cache keeps serving, so the pod stays ready."""
        with patch(
            "secret_syncer.observability.health.HealthChecker",
            return_value=self.checker("healthy", "degraded"),
        ):
            resp = await client.get("/ready")
        assert resp.status == 200

    @pytest.mark.asyncio
    async def test_ready_k8s_unhealthy_returns_503(self, client):
        with patch(
            "secret_syncer.observability.health.HealthChecker",
            return_value=self.checker("unhealthy", "healthy"),
        ):
            resp = await client.get("/ready")
        assert resp.status == 503
        data = await resp.json()
        assert data["status"] == "not_ready"

    @pytest.mark.asyncio
    async def test_ready_exception_returns_503(self, client):
        with patch(
            "secret_syncer.observability.health.HealthChecker",
            side_effect=RuntimeError("nope"),
        ):
            resp = await client.get("/ready")
        assert resp.status == 503
        data = await resp.json()
        assert data["status"] == "not_ready"
        assert "RuntimeError" in data["error"]
