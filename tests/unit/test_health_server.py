"""Unit tests for the health check HTTP endpoints."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from aiohttp.test_utils import TestClient, TestServer

from app.services.indexing.health import HealthStatus, SystemHealthStatus
from jobs.health import create_health_app


def make_monitor(*issues: tuple[HealthStatus, str]) -> MagicMock:
    report = SystemHealthStatus(timestamp="2026-10-18T00:00:00+00:00")
    for severity, message in issues:
        report.add_issue(severity, message)
    monitor = MagicMock()
    monitor.get_system_health = AsyncMock(return_value=report)
    monitor.critical_alerts = AsyncMock(
        return_value=[m for s, m in issues if s == HealthStatus.UNHEALTHY]
    )
    return monitor


@pytest_asyncio.fixture
async def client_for():
    clients = []

    async def _make(monitor, scheduler=None) -> TestClient:
        client = TestClient(TestServer(create_health_app(monitor, scheduler)))
        await client.start_server()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        await client.close()


class TestHealthEndpoint:
    """Tests for /health."""

    @pytest.mark.asyncio
    async def test_healthy(self, client_for):
        client = await client_for(make_monitor())

        response = await client.get("/health")

        assert response.status == 200
        data = await response.json()
        assert data["status"] == "healthy"
        assert data["issues"] == []

    @pytest.mark.asyncio
    async def test_degraded_still_serves(self, client_for):
        client = await client_for(
            make_monitor((HealthStatus.DEGRADED, "No contracts are being indexed"))
        )

        response = await client.get("/health")

        assert response.status == 200
        assert (await response.json())["status"] == "degraded"

    @pytest.mark.asyncio
    async def test_unhealthy_is_503(self, client_for):
        client = await client_for(
            make_monitor((HealthStatus.UNHEALTHY, "Blockchain connection failed: down"))
        )

        response = await client.get("/health")

        assert response.status == 503
        assert (await response.json())["issues"] == ["Blockchain connection failed: down"]


class TestAlertsEndpoint:
    @pytest.mark.asyncio
    async def test_lists_critical_alerts(self, client_for):
        client = await client_for(
            make_monitor(
                (HealthStatus.DEGRADED, "High number of failed events: 150"),
                (HealthStatus.UNHEALTHY, "Work queue is unhealthy"),
            )
        )

        data = await (await client.get("/health/alerts")).json()

        assert data == {
            "alerts": ["Work queue is unhealthy"],
            "count": 1,
            "requires_attention": True,
        }


class TestReadinessAndLiveness:
    """Tests for readiness and liveness."""

    @pytest.mark.asyncio
    async def test_ready(self, client_for):
        client = await client_for(make_monitor(), MagicMock(running=True))

        response = await client.get("/readiness")

        assert response.status == 200
        assert (await response.json())["ready"] is True

    @pytest.mark.asyncio
    async def test_not_ready_without_scheduler(self, client_for):
        monitor = make_monitor()
        client = await client_for(monitor, MagicMock(running=False))

        response = await client.get("/readiness")

        assert response.status == 503
        monitor.get_system_health.assert_not_called()

    @pytest.mark.asyncio
    async def test_not_ready_when_unhealthy(self, client_for):
        client = await client_for(
            make_monitor((HealthStatus.UNHEALTHY, "Database connection failed: gone"))
        )

        response = await client.get("/readiness")

        assert response.status == 503
        assert (await response.json())["issues"] == ["Database connection failed: gone"]

    @pytest.mark.asyncio
    async def test_liveness(self, client_for):
        client = await client_for(make_monitor())

        response = await client.get("/liveness")

        assert response.status == 200
        assert (await response.json())["alive"] is True
