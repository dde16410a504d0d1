"""
Lifecycle manager.

Startup recovery and shutdown drain, called explicitly by the worker
entry point: recovery after the components are initialized, drain
before the process exits.
"""

import asyncio
import time
from datetime import datetime

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config.contracts import ContractRegistry, get_contract_registry
from app.config.settings import settings
from app.models.enums import SyncState
from app.repositories.indexing_progress_repository import IndexingProgressRepository
from app.services.indexing.sync_coordinator import SyncCoordinator
from app.utils.datetime_utils import utc_now
from app.utils.exceptions import IndexerError
from app.utils.security import mask_address


class LifecycleManager:
    """Crash repair on startup, bounded drain on shutdown."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        ledger,
        work_queue,
        registry: ContractRegistry | None = None,
        started_at: datetime | None = None,
    ) -> None:
        """
        Initialize lifecycle manager.

        Args:
            session_maker: Factory for database sessions
            ledger: Ledger client
            work_queue: Work queue (drained and closed on shutdown)
            registry: Tracked contracts (default: from settings)
            started_at: Process start time
        """
        self.session_maker = session_maker
        self.ledger = ledger
        self.work_queue = work_queue
        self.registry = get_contract_registry() if registry is None else registry
        self.started_at = started_at or utc_now()

    async def run_recovery(self, grace_seconds: float | None = None) -> dict:
        """
        Repair state left by an unclean shutdown and resume indexing.

        Waits for the grace delay, clears every stuck is_syncing flag,
        then starts every enabled configured contract that already has a
        progress row.

        Returns:
            Dict with reset count and resume results
        """
        grace = settings.recovery_grace_seconds if grace_seconds is None else grace_seconds
        if grace > 0:
            logger.info(f"[Lifecycle] Recovery starts in {grace:.0f}s")
            await asyncio.sleep(grace)

        reset = await self.reset_stuck_syncing()
        resumed = await self.resume_all()
        logger.success(
            f"[Lifecycle] Recovery complete: {reset} stuck flags reset, "
            f"{len(resumed['resumed'])} contracts resumed"
        )
        return {"reset": reset, **resumed}

    async def reset_stuck_syncing(self) -> int:
        """
        Clear is_syncing on every row that has it set.

        A running process cannot tell a crashed sync from a live one, so
        this only runs while no run of this process exists.

        Returns:
            Number of rows reset
        """
        async with self.session_maker() as session:
            repo = IndexingProgressRepository(session)
            reset = await repo.reset_all_syncing(SyncState.STOPPED)
            await session.commit()
        if reset:
            logger.warning(f"[Lifecycle] Reset {reset} stuck syncing flags")
        return reset

    async def resume_all(self) -> dict[str, list[str]]:
        """
        Start every enabled configured contract with a progress row.

        Contracts never indexed are left alone. One contract failing to
        start does not prevent the others.

        Returns:
            Dict of address lists: resumed, not_indexed, failed
        """
        result: dict[str, list[str]] = {"resumed": [], "not_indexed": [], "failed": []}

        async with self.session_maker() as session:
            coordinator = SyncCoordinator(
                session, self.ledger, self.work_queue, self.registry
            )
            for contract in self.registry.enabled():
                progress = await coordinator.get_indexing_status(
                    contract.address, contract.chain_id
                )
                if progress is None:
                    result["not_indexed"].append(contract.address)
                    continue
                try:
                    await coordinator.start_indexing(contract.address)
                    result["resumed"].append(contract.address)
                except IndexerError as e:
                    await session.rollback()
                    logger.error(
                        f"[Lifecycle] Failed to resume {mask_address(contract.address)}: {e}"
                    )
                    result["failed"].append(contract.address)

        logger.info(
            f"[Lifecycle] Resume: {len(result['resumed'])} resumed, "
            f"{len(result['not_indexed'])} not yet indexed, "
            f"{len(result['failed'])} failed"
        )
        return result

    async def recovery_status(self) -> dict:
        """
        Counts for operational visibility.

        Returns:
            Dict with configured_count, resumed_count (enabled configured
            contracts with a progress row), stuck_count (rows with the
            flag set) and last_restart
        """
        enabled = {
            (contract.address, contract.chain_id) for contract in self.registry.enabled()
        }
        async with self.session_maker() as session:
            repo = IndexingProgressRepository(session)
            rows = await repo.find_all()
            stuck = await repo.count_syncing()
        indexed = sum(
            1 for row in rows if (row.contract_address, row.chain_id) in enabled
        )
        return {
            "configured_count": len(enabled),
            "resumed_count": indexed,
            "stuck_count": stuck,
            "last_restart": self.started_at.isoformat(),
        }

    async def drain(
        self,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ) -> dict:
        """
        Stop issuing work, wait for in-flight units, close the queue.

        Bounded: after timeout the queue is closed even if units are
        still running.

        Returns:
            Dict with reset count, remaining active units, timed_out
        """
        if timeout is None:
            timeout = settings.drain_timeout_seconds
        if poll_interval is None:
            poll_interval = settings.drain_poll_interval_seconds
        logger.info("[Lifecycle] Draining work queue...")

        reset = 0
        try:
            async with self.session_maker() as session:
                repo = IndexingProgressRepository(session)
                reset = await repo.reset_all_syncing(
                    SyncState.STOPPED, include_monitoring=True
                )
                await session.commit()
            logger.info(f"[Lifecycle] Marked {reset} contracts as not syncing")
        except Exception as e:
            logger.error(f"[Lifecycle] Failed to reset syncing flags: {e}")

        deadline = time.monotonic() + timeout
        active = self.work_queue.active_count()
        while active > 0 and time.monotonic() < deadline:
            logger.info(f"[Lifecycle] Waiting for {active} active units...")
            await asyncio.sleep(poll_interval)
            active = self.work_queue.active_count()

        timed_out = active > 0
        if timed_out:
            logger.warning(
                f"[Lifecycle] Drain timed out after {timeout:.0f}s "
                f"with {active} units still active"
            )

        self.work_queue.close()
        logger.info("[Lifecycle] Work queue closed")
        return {"reset": reset, "remaining": active, "timed_out": timed_out}
