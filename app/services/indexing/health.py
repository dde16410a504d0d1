"""
Health monitor.

Read-only aggregation of ledger connectivity, indexing progress, storage
and queue state into a healthy/degraded/unhealthy classification.
Never raises: an internal error yields an unhealthy report.
"""

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.contracts import ContractRegistry, get_contract_registry
from app.config.settings import settings
from app.repositories.failed_event_repository import FailedEventRepository
from app.repositories.indexing_progress_repository import IndexingProgressRepository
from app.utils.datetime_utils import ensure_aware, utc_now


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_SEVERITY = {HealthStatus.HEALTHY: 0, HealthStatus.DEGRADED: 1, HealthStatus.UNHEALTHY: 2}


@dataclass
class BlockchainHealth:
    connected: bool = False
    latest_block: int | None = None
    rpc_url: str = "Unknown"


@dataclass
class IndexingHealth:
    configured_contracts: int = 0
    actively_indexing: int = 0
    sync_lag: dict[str, int] = field(default_factory=dict)
    max_sync_lag: int = 0
    average_update_age_seconds: float | None = None


@dataclass
class DatabaseHealth:
    connected: bool = False
    total_events: int = 0
    failed_events: int = 0


@dataclass
class QueueHealth:
    healthy: bool = False
    active_jobs: int = 0


@dataclass
class HealthIssue:
    severity: HealthStatus
    message: str


@dataclass
class SystemHealthStatus:
    """Health report."""

    status: HealthStatus = HealthStatus.HEALTHY
    blockchain: BlockchainHealth = field(default_factory=BlockchainHealth)
    indexing: IndexingHealth = field(default_factory=IndexingHealth)
    database: DatabaseHealth = field(default_factory=DatabaseHealth)
    queue: QueueHealth = field(default_factory=QueueHealth)
    uptime_seconds: float = 0.0
    timestamp: str = ""
    issue_details: list[HealthIssue] = field(default_factory=list)

    @property
    def issues(self) -> list[str]:
        return [issue.message for issue in self.issue_details]

    def add_issue(self, severity: HealthStatus, message: str) -> None:
        """Record an issue; the worst severity wins."""
        self.issue_details.append(HealthIssue(severity, message))
        if _SEVERITY[severity] > _SEVERITY[self.status]:
            self.status = severity

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "blockchain": asdict(self.blockchain),
            "indexing": asdict(self.indexing),
            "database": asdict(self.database),
            "queue": asdict(self.queue),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "timestamp": self.timestamp,
            "issues": self.issues,
        }


class HealthMonitor:
    """Derives system health from the other components' observable state."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        ledger,
        work_queue,
        registry: ContractRegistry | None = None,
        started_at=None,
        max_sync_lag: int | None = None,
        max_failed_events: int | None = None,
    ) -> None:
        self.session_maker = session_maker
        self.ledger = ledger
        self.work_queue = work_queue
        self.registry = get_contract_registry() if registry is None else registry
        self.started_at = started_at or utc_now()
        self.max_sync_lag = (
            settings.health_max_sync_lag if max_sync_lag is None else max_sync_lag
        )
        self.max_failed_events = (
            settings.health_max_failed_events
            if max_failed_events is None
            else max_failed_events
        )

    async def get_system_health(self) -> SystemHealthStatus:
        """
        Build the health report.

        Returns:
            SystemHealthStatus; unhealthy with an explanatory issue if
            the check itself failed
        """
        now = utc_now()
        report = SystemHealthStatus(
            timestamp=now.isoformat(),
            uptime_seconds=(now - self.started_at).total_seconds(),
        )
        try:
            await self._check_blockchain(report)
            await self._check_storage(report, now)
            self._check_queue(report)
        except Exception as e:
            logger.error(f"[Health] Health check failed: {e}")
            report.add_issue(HealthStatus.UNHEALTHY, "System health check failed")
        return report

    async def _check_blockchain(self, report: SystemHealthStatus) -> None:
        report.blockchain.rpc_url = getattr(self.ledger, "masked_rpc_url", "Unknown")
        try:
            report.blockchain.latest_block = await self.ledger.get_current_block_number()
            report.blockchain.connected = True
        except Exception as e:
            logger.warning(f"[Health] Ledger unreachable: {e}")
            report.add_issue(
                HealthStatus.UNHEALTHY, f"Blockchain connection failed: {e}"
            )

    async def _check_storage(self, report: SystemHealthStatus, now) -> None:
        indexing = report.indexing
        indexing.configured_contracts = len(self.registry.enabled())

        try:
            async with self.session_maker() as session:
                await session.execute(text("SELECT 1"))
                progress_repo = IndexingProgressRepository(session)
                failed_repo = FailedEventRepository(session)
                rows = await progress_repo.find_all()
                indexing.actively_indexing = await progress_repo.count_active()
                report.database.total_events = await progress_repo.total_events()
                report.database.failed_events = await failed_repo.count_unresolved()
            report.database.connected = True
        except Exception as e:
            logger.warning(f"[Health] Database unreachable: {e}")
            report.add_issue(HealthStatus.UNHEALTHY, f"Database connection failed: {e}")
            return

        latest = report.blockchain.latest_block
        if latest is not None:
            indexing.sync_lag = {
                f"{row.contract_address}:{row.chain_id}": max(
                    0, latest - row.last_processed_block
                )
                for row in rows
            }
        indexing.max_sync_lag = max(indexing.sync_lag.values(), default=0)

        ages = [
            (now - ensure_aware(row.updated_at)).total_seconds()
            for row in rows
            if row.updated_at is not None
        ]
        indexing.average_update_age_seconds = (
            round(sum(ages) / len(ages), 1) if ages else None
        )

        if indexing.configured_contracts > 0 and indexing.actively_indexing == 0:
            report.add_issue(HealthStatus.DEGRADED, "No contracts are being indexed")
        if indexing.max_sync_lag > self.max_sync_lag:
            lagging = sorted(
                key for key, lag in indexing.sync_lag.items() if lag > self.max_sync_lag
            )
            report.add_issue(
                HealthStatus.DEGRADED,
                f"High sync lag: {indexing.max_sync_lag} blocks behind "
                f"({', '.join(lagging)})",
            )
        if report.database.failed_events > self.max_failed_events:
            report.add_issue(
                HealthStatus.DEGRADED,
                f"High number of failed events: {report.database.failed_events}",
            )

    def _check_queue(self, report: SystemHealthStatus) -> None:
        try:
            report.queue.active_jobs = self.work_queue.active_count()
            report.queue.healthy = not getattr(self.work_queue, "closed", False)
        except Exception as e:
            logger.warning(f"[Health] Work queue check failed: {e}")
            report.queue.healthy = False
        if not report.queue.healthy:
            report.add_issue(HealthStatus.UNHEALTHY, "Work queue is unhealthy")

    async def requires_attention(self) -> bool:
        """True unless the system is healthy."""
        report = await self.get_system_health()
        return report.status != HealthStatus.HEALTHY

    async def critical_alerts(self) -> list[str]:
        """Issues that make the system unhealthy."""
        report = await self.get_system_health()
        return [
            issue.message
            for issue in report.issue_details
            if issue.severity == HealthStatus.UNHEALTHY
        ]
