"""Integration tests for the health monitor."""

import pytest

from app.models.enums import SyncState
from app.repositories.indexing_progress_repository import IndexingProgressRepository
from app.services.indexing.event_applier import EventApplier
from app.services.indexing.health import HealthMonitor, HealthStatus
from app.utils.exceptions import ConnectivityError
from tests.fakes import CHAIN_ID, OTHER_TOKEN_ADDRESS, TOKEN_ADDRESS, make_event


async def seed(session_maker, address, *, is_syncing, state, last=999):
    async with session_maker() as session:
        repo = IndexingProgressRepository(session)
        await repo.create_progress(address, CHAIN_ID, last + 1)
        await repo.set_syncing(address, CHAIN_ID, is_syncing, state)
        await session.commit()


@pytest.fixture
def monitor(session_maker, ledger, work_queue, registry):
    return HealthMonitor(session_maker, ledger, work_queue, registry)


class TestSystemHealth:
    """Tests for health classification."""

    @pytest.mark.asyncio
    async def test_healthy(self, monitor, session_maker):
        await seed(session_maker, TOKEN_ADDRESS, is_syncing=True, state=SyncState.SYNCING)

        report = await monitor.get_system_health()

        assert report.status == HealthStatus.HEALTHY
        assert report.issues == []
        assert report.blockchain.connected
        assert report.blockchain.latest_block == 1050
        assert report.database.connected
        assert report.queue.healthy
        assert report.indexing.configured_contracts == 2
        assert report.indexing.actively_indexing == 1
        assert report.indexing.sync_lag == {f"{TOKEN_ADDRESS}:{CHAIN_ID}": 51}

    @pytest.mark.asyncio
    async def test_caught_up_contract_counts_as_active(self, monitor, session_maker):
        await seed(
            session_maker, TOKEN_ADDRESS, is_syncing=False, state=SyncState.CAUGHT_UP, last=1049
        )

        report = await monitor.get_system_health()

        assert report.status == HealthStatus.HEALTHY

    @pytest.mark.asyncio
    async def test_nothing_indexing_is_degraded(self, monitor, session_maker):
        await seed(session_maker, TOKEN_ADDRESS, is_syncing=False, state=SyncState.STOPPED)

        report = await monitor.get_system_health()

        assert report.status == HealthStatus.DEGRADED
        assert "No contracts are being indexed" in report.issues

    @pytest.mark.asyncio
    async def test_high_sync_lag_is_degraded(self, session_maker, ledger, work_queue, registry):
        await seed(session_maker, TOKEN_ADDRESS, is_syncing=True, state=SyncState.SYNCING)
        await seed(session_maker, OTHER_TOKEN_ADDRESS, is_syncing=True, state=SyncState.SYNCING, last=1045)
        monitor = HealthMonitor(session_maker, ledger, work_queue, registry, max_sync_lag=10)

        report = await monitor.get_system_health()

        assert report.status == HealthStatus.DEGRADED
        assert report.indexing.max_sync_lag == 51
        assert any(
            issue.startswith("High sync lag: 51 blocks behind") and TOKEN_ADDRESS in issue
            and OTHER_TOKEN_ADDRESS not in issue
            for issue in report.issues
        )

    @pytest.mark.asyncio
    async def test_failed_events_above_threshold(self, session_maker, ledger, work_queue, registry):
        await seed(session_maker, TOKEN_ADDRESS, is_syncing=True, state=SyncState.SYNCING)
        async with session_maker() as session:
            await EventApplier(session, ledger).store_failed_event(
                make_event(1001), CHAIN_ID, RuntimeError("boom")
            )
        monitor = HealthMonitor(session_maker, ledger, work_queue, registry, max_failed_events=0)

        report = await monitor.get_system_health()

        assert report.status == HealthStatus.DEGRADED
        assert report.database.failed_events == 1
        assert "High number of failed events: 1" in report.issues

    @pytest.mark.asyncio
    async def test_ledger_unreachable_is_unhealthy(self, monitor, ledger, session_maker):
        await seed(session_maker, TOKEN_ADDRESS, is_syncing=True, state=SyncState.SYNCING)
        ledger.height_error = ConnectivityError("rpc down")

        report = await monitor.get_system_health()

        assert report.status == HealthStatus.UNHEALTHY
        assert not report.blockchain.connected
        assert any(i.startswith("Blockchain connection failed") for i in report.issues)
        assert report.indexing.sync_lag == {}

    @pytest.mark.asyncio
    async def test_storage_unreachable_is_unhealthy(self, ledger, work_queue, registry):
        def broken_session_maker():
            raise RuntimeError("database gone")

        monitor = HealthMonitor(broken_session_maker, ledger, work_queue, registry)

        report = await monitor.get_system_health()

        assert report.status == HealthStatus.UNHEALTHY
        assert not report.database.connected
        assert any(i.startswith("Database connection failed") for i in report.issues)

    @pytest.mark.asyncio
    async def test_closed_queue_is_unhealthy(self, monitor, work_queue, session_maker):
        await seed(session_maker, TOKEN_ADDRESS, is_syncing=True, state=SyncState.SYNCING)
        work_queue.close()

        report = await monitor.get_system_health()

        assert report.status == HealthStatus.UNHEALTHY
        assert "Work queue is unhealthy" in report.issues

    @pytest.mark.asyncio
    async def test_queue_check_failure_is_unhealthy(self, session_maker, ledger, registry):
        class ExplodingQueue:
            closed = False

            def active_count(self):
                raise RuntimeError("boom")

        monitor = HealthMonitor(session_maker, ledger, ExplodingQueue(), registry)

        report = await monitor.get_system_health()

        assert report.status == HealthStatus.UNHEALTHY
        assert not report.queue.healthy

    @pytest.mark.asyncio
    async def test_report_serializes(self, monitor, session_maker):
        await seed(session_maker, TOKEN_ADDRESS, is_syncing=True, state=SyncState.SYNCING)

        data = (await monitor.get_system_health()).to_dict()

        assert data["status"] == "healthy"
        assert set(data) >= {"blockchain", "indexing", "database", "queue", "issues", "timestamp"}
        assert data["blockchain"]["rpc_url"] == "http://localhost:8545/***"


class TestAlerts:
    @pytest.mark.asyncio
    async def test_requires_attention_when_degraded(self, monitor):
        # No progress rows: nothing is being indexed
        assert await monitor.requires_attention() is True
        assert await monitor.critical_alerts() == []

    @pytest.mark.asyncio
    async def test_critical_alerts_lists_unhealthy_issues(self, monitor, ledger):
        ledger.height_error = ConnectivityError("rpc down")

        alerts = await monitor.critical_alerts()

        assert len(alerts) == 1
        assert alerts[0].startswith("Blockchain connection failed")
