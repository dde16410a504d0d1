"""
Sync coordinator.

Owns the per-contract synchronization state machine:

    uninitialized -> starting -> syncing -> caught_up -> syncing ...
                         |          |           |
                         +----------+-----------+--> stopped | errored

is_syncing is the authoritative flag. Every run re-reads it before doing
work and the scheduler re-reads it before every sub-range, so stop is
cooperative and lands at batch boundaries. A caught-up contract keeps
polling at the monitoring cadence with the flag cleared.
"""

from dataclasses import dataclass
from enum import StrEnum

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.constants import START_INDEXING
from app.config.contracts import ContractRegistry, get_contract_registry
from app.config.settings import settings
from app.models.enums import SyncState
from app.models.indexing_progress import IndexingProgress
from app.models.token_transfer import TokenTransfer
from app.repositories.indexing_progress_repository import IndexingProgressRepository
from app.repositories.token_transfer_repository import TokenTransferRepository
from app.services.indexing.batch_scheduler import BatchScheduler
from app.utils.db_decorators import with_rollback_on_error
from app.utils.exceptions import ConfigurationError, NotFoundError, ValidationError
from app.utils.security import mask_address
from app.utils.validation import validate_chain_id, validate_contract_address


class RunOutcome(StrEnum):
    """What one start_indexing run did."""

    SKIPPED = "skipped"  # flag cleared or row missing
    SCHEDULED = "scheduled"  # sub-ranges submitted, run re-armed
    WAITING = "waiting"  # earlier sub-ranges still pending, run re-armed
    HALTED = "halted"  # stop observed while scheduling
    CAUGHT_UP = "caught_up"  # monitoring poll armed


@dataclass
class RunReport:
    outcome: RunOutcome
    from_block: int | None = None
    to_block: int | None = None
    ranges_submitted: int = 0
    current_height: int | None = None


class SyncCoordinator:
    """Start/stop/run state machine for tracked contracts."""

    def __init__(
        self,
        session: AsyncSession,
        ledger,
        work_queue,
        registry: ContractRegistry | None = None,
        batch_size: int | None = None,
    ) -> None:
        """
        Initialize coordinator.

        Args:
            session: Database session
            ledger: Ledger client
            work_queue: Work queue for start_indexing runs and sub-ranges
            registry: Tracked contracts (default: from settings)
            batch_size: Blocks per sub-range (default: settings)
        """
        self.session = session
        self.ledger = ledger
        self.work_queue = work_queue
        self.registry = get_contract_registry() if registry is None else registry
        self.batch_size = batch_size
        self.progress_repo = IndexingProgressRepository(session)
        self.transfer_repo = TokenTransferRepository(session)

    @with_rollback_on_error
    async def start_indexing(self, contract_address: str) -> IndexingProgress:
        """
        Start (or resume) indexing of a configured contract.

        First start creates the progress row at the configured start
        block, or the current height for "latest". A restart sets the
        flag on the existing row. Either way pending work for the
        contract is cancelled and exactly one run is enqueued, so a
        repeated start is a re-arm.

        Args:
            contract_address: Contract address

        Returns:
            Progress row after the start

        Raises:
            ConfigurationError: Contract unknown or disabled
            ValidationError: Malformed address, chain mismatch or no code
            ConnectivityError: Ledger unreachable
        """
        contract = self.registry.get(contract_address)
        if contract is None:
            raise ConfigurationError(
                f"Contract {mask_address(contract_address)} is not configured"
            )
        if not contract.enabled:
            raise ConfigurationError(
                f"Contract {mask_address(contract_address)} is disabled"
            )

        address = validate_contract_address(contract.address)
        chain_id = validate_chain_id(contract.chain_id)
        if chain_id != self.ledger.chain_id:
            raise ValidationError(
                f"Contract chain {chain_id} does not match ledger chain "
                f"{self.ledger.chain_id}"
            )
        if not await self.ledger.validate_contract_address(address):
            raise ValidationError(
                f"No live contract at {mask_address(address)} on chain {chain_id}"
            )

        progress = await self.progress_repo.get_progress(address, chain_id)
        if progress is None:
            if contract.start_block == "latest":
                start_block = await self.ledger.get_current_block_number()
            else:
                start_block = contract.start_block
            progress = await self.progress_repo.create_progress(
                address, chain_id, start_block
            )
            logger.info(
                f"[Coordinator] First start of {mask_address(address)} "
                f"on chain {chain_id} at block {start_block}"
            )
        else:
            if progress.is_syncing:
                logger.info(
                    f"[Coordinator] {mask_address(address)} already syncing, re-arming"
                )
            await self.progress_repo.set_syncing(
                address, chain_id, True, SyncState.STARTING
            )
            logger.info(
                f"[Coordinator] Resuming {mask_address(address)} from block "
                f"{progress.last_processed_block + 1}"
            )
        await self.session.commit()

        self._cancel_pending(address, chain_id)
        self.work_queue.enqueue(
            START_INDEXING,
            {"contract_address": address, "chain_id": chain_id},
            max_attempts=1,
        )
        return await self.progress_repo.get_progress(address, chain_id)

    @with_rollback_on_error
    async def stop_indexing(self, contract_address: str, chain_id: int) -> IndexingProgress:
        """
        Stop indexing of a contract.

        The cleared flag is the success criterion; failing to cancel
        queued units is logged and not raised.

        Raises:
            NotFoundError: No progress row for the contract
        """
        address = contract_address.lower()
        progress = await self.progress_repo.get_progress(address, chain_id)
        if progress is None:
            raise NotFoundError(
                f"No indexing progress for {mask_address(address)} on chain {chain_id}"
            )

        await self.progress_repo.set_syncing(address, chain_id, False, SyncState.STOPPED)
        await self.session.commit()
        logger.info(f"[Coordinator] Stopped {mask_address(address)} on chain {chain_id}")

        self._cancel_pending(address, chain_id)
        return await self.progress_repo.get_progress(address, chain_id)

    def _cancel_pending(self, address: str, chain_id: int) -> None:
        try:
            self.work_queue.cancel_pending(address, chain_id)
        except Exception as e:
            logger.error(
                f"[Coordinator] Failed to cancel pending work for "
                f"{mask_address(address)}: {e}"
            )

    async def run_indexing(self, contract_address: str, chain_id: int) -> RunReport:
        """
        Execute one start_indexing run.

        Schedules the blocks above scheduled_through_block up to
        height - 1 and re-arms itself. At most max_ranges_per_run
        sub-ranges are pending per contract, so a re-arm that fires
        before the window is processed queues nothing twice. When
        caught up, clears the flag and arms a monitoring poll.

        Raises:
            Exception: Any failure; the contract is marked errored first
        """
        address = contract_address.lower()
        progress = await self.progress_repo.get_progress(address, chain_id)
        if progress is None:
            logger.warning(
                f"[Coordinator] Run for unknown {mask_address(address)}, ignoring"
            )
            return RunReport(RunOutcome.SKIPPED)

        monitoring = progress.sync_state == SyncState.CAUGHT_UP
        if not progress.is_syncing and not monitoring:
            logger.info(
                f"[Coordinator] {mask_address(address)} is {progress.sync_state}, "
                f"run exits"
            )
            return RunReport(RunOutcome.SKIPPED)

        try:
            return await self._run(address, chain_id, progress, monitoring)
        except Exception as e:
            await self.session.rollback()
            try:
                await self.mark_errored(address, chain_id, f"{type(e).__name__}: {e}")
            except Exception as mark_error:
                await self.session.rollback()
                logger.error(
                    f"[Coordinator] Could not mark {mask_address(address)} errored: "
                    f"{mark_error}"
                )
            raise

    async def _run(
        self,
        address: str,
        chain_id: int,
        progress: IndexingProgress,
        monitoring: bool,
    ) -> RunReport:
        height = await self.ledger.get_current_block_number()
        last = progress.last_processed_block

        if last >= height - 1:
            if not monitoring:
                if not await self.progress_repo.mark_caught_up(address, chain_id):
                    await self.session.commit()
                    logger.info(f"[Coordinator] {mask_address(address)} stopped meanwhile")
                    return RunReport(RunOutcome.SKIPPED, current_height=height)
                await self.session.commit()
                logger.success(
                    f"[Coordinator] {mask_address(address)} caught up at block {last}"
                )
            self.work_queue.enqueue(
                START_INDEXING,
                {"contract_address": address, "chain_id": chain_id},
                delay_seconds=settings.monitor_interval_seconds,
                max_attempts=1,
            )
            return RunReport(RunOutcome.CAUGHT_UP, current_height=height)

        if monitoring:
            if not await self.progress_repo.resume_from_monitoring(address, chain_id):
                await self.session.commit()
                return RunReport(RunOutcome.SKIPPED, current_height=height)
            logger.info(
                f"[Coordinator] New blocks for {mask_address(address)}, "
                f"leaving monitoring mode"
            )
        else:
            await self.progress_repo.mark_syncing(address, chain_id)
        await self.session.commit()

        contract = self.registry.get(address)
        events = contract.events if contract else ()
        if not events:
            raise ConfigurationError(
                f"Contract {mask_address(address)} is no longer configured"
            )

        scheduler = BatchScheduler(
            self.session, self.work_queue, batch_size=self.batch_size
        )
        # Sub-ranges up to the frontier are already queued or running
        frontier = progress.scheduled_through_block
        if frontier is None or frontier < last:
            frontier = last
        outstanding = -(-(frontier - last) // scheduler.batch_size)
        budget = settings.max_ranges_per_run - outstanding

        report = RunReport(
            RunOutcome.SCHEDULED,
            from_block=frontier + 1,
            current_height=height,
        )
        if budget <= 0 or frontier >= height - 1:
            report.outcome = RunOutcome.WAITING
            logger.debug(
                f"[Coordinator] {mask_address(address)} has blocks "
                f"{last + 1}-{frontier} pending, nothing new to schedule"
            )
        else:
            result = await scheduler.schedule(
                address,
                chain_id,
                frontier + 1,
                height - 1,
                events,
                max_ranges=budget,
            )
            report.to_block = result.last_block
            report.ranges_submitted = len(result.submitted)
            if result.through_block is not None:
                await self.progress_repo.extend_schedule(
                    address, chain_id, result.through_block
                )
                await self.session.commit()
            if result.halted:
                report.outcome = RunOutcome.HALTED
                return report

        # Re-check before re-arming; a stop may have landed after the last submit
        if not await self.progress_repo.is_syncing(address, chain_id):
            report.outcome = RunOutcome.HALTED
            return report

        self.work_queue.enqueue(
            START_INDEXING,
            {"contract_address": address, "chain_id": chain_id},
            delay_seconds=settings.rearm_delay_seconds,
            max_attempts=1,
        )
        return report

    async def mark_errored(self, contract_address: str, chain_id: int, error: str) -> None:
        """Clear the flag and record the error so the contract is resumable."""
        await self.progress_repo.mark_errored(contract_address, chain_id, error)
        await self.session.commit()
        logger.error(
            f"[Coordinator] {mask_address(contract_address)} on chain {chain_id} "
            f"errored: {error}"
        )

    @with_rollback_on_error
    async def update_syncing_status(
        self, contract_address: str, chain_id: int, is_syncing: bool
    ) -> None:
        """
        Set the flag directly (operator override).

        Clearing the flag also cancels queued units; setting it leaves the
        queue and the schedule frontier alone.
        """
        address = contract_address.lower()
        state = SyncState.SYNCING if is_syncing else SyncState.STOPPED
        await self.progress_repo.set_syncing(
            address, chain_id, is_syncing, state, reset_schedule=not is_syncing
        )
        await self.session.commit()
        if not is_syncing:
            self._cancel_pending(address, chain_id)

    async def get_indexing_status(
        self, contract_address: str, chain_id: int
    ) -> IndexingProgress | None:
        """Last committed progress of a contract, or None."""
        return await self.progress_repo.get_progress(contract_address, chain_id)

    async def require_indexing_status(
        self, contract_address: str, chain_id: int
    ) -> IndexingProgress:
        """
        Like get_indexing_status, for callers that treat absence as an error.

        Raises:
            NotFoundError: No progress row for the contract
        """
        progress = await self.get_indexing_status(contract_address, chain_id)
        if progress is None:
            raise NotFoundError(
                f"No indexing progress for {mask_address(contract_address)} "
                f"on chain {chain_id}"
            )
        return progress

    async def list_indexing(self) -> list[IndexingProgress]:
        """All progress rows."""
        return await self.progress_repo.find_all()

    async def get_transfer_history(
        self,
        contract_address: str,
        holder: str | None = None,
        limit: int = 100,
    ) -> list[TokenTransfer]:
        """Materialized transfers of a contract, newest first."""
        address = validate_contract_address(contract_address)
        if holder:
            holder = validate_contract_address(holder)
        return await self.transfer_repo.get_history(address, holder, limit)
