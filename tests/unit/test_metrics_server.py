"""
Unit tests for MetricsServer HTTP endpoints.

Uses ``aiohttp.test_utils`` to drive the server's aiohttp application
without binding the configured port.
"""

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from helm_release_operator.observability.metrics import MetricsServer, metrics


@pytest.fixture
def metrics_server():
    """Create a fresh MetricsServer instance per test."""
    return MetricsServer(port=0)


@pytest_asyncio.fixture
async def client(metrics_server):
    """Create an aiohttp TestClient from the MetricsServer app."""
    server = TestServer(metrics_server.app)
    async with TestClient(server) as cli:
        yield cli


class TestMetricsEndpoint:
    """Tests for ``GET /metrics``."""

    @pytest.mark.asyncio
    async def test_metrics_returns_operator_series(self, client):
        metrics.record_step("InstallRelease", "Complete", "SUCCESS")

        resp = await client.get("/metrics")

        assert resp.status == 200
        body = await resp.text()
        assert "helm_release_operator_step_total" in body


class TestHealthzEndpoint:
    """Tests for ``GET /healthz``."""

    @pytest.mark.asyncio
    async def test_healthz_returns_200_ok(self, client):
        resp = await client.get("/healthz")
        assert resp.status == 200
        assert await resp.text() == "ok"


class TestServerLifecycle:
    """Start and stop bookkeeping."""

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, metrics_server):
        await metrics_server.stop()
        assert metrics_server.runner is None

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        server = MetricsServer(port=0, host="127.0.0.1")
        await server.start()
        assert server.site is not None
        await server.stop()
        assert server.runner is None
        assert server.site is None
