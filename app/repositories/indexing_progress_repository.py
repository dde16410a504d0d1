"""
Indexing Progress repository.

Data access layer for per-contract sync cursors and the is_syncing flag.
State transitions are single conditional UPDATE statements so that a
concurrent stop is never overwritten by a worker's later write. Cursor
advances lock the progress row and sweep completed sub-ranges, so
sub-ranges finishing out of order still move the cursor without a gap.
"""

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.completed_block_range import CompletedBlockRange
from app.models.enums import SyncState
from app.models.indexing_progress import IndexingProgress
from app.repositories.base import BaseRepository


class IndexingProgressRepository(BaseRepository[IndexingProgress]):
    """Repository for indexing progress rows."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(IndexingProgress, session)

    def _match(self, contract_address: str, chain_id: int):
        return (
            IndexingProgress.contract_address == contract_address.lower(),
            IndexingProgress.chain_id == chain_id,
        )

    async def _update(self, *conditions, **values) -> int:
        stmt = (
            update(IndexingProgress)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount or 0

    async def get_progress(
        self, contract_address: str, chain_id: int
    ) -> IndexingProgress | None:
        """
        Get progress row for a contract.

        Args:
            contract_address: Contract address
            chain_id: Chain id

        Returns:
            Progress row or None
        """
        return await self.get_by(
            contract_address=contract_address.lower(), chain_id=chain_id
        )

    async def create_progress(
        self,
        contract_address: str,
        chain_id: int,
        start_block: int,
    ) -> IndexingProgress:
        """
        Create the progress row for a first start.

        The cursor starts one block before start_block so that
        start_block itself is the first block fetched.

        Args:
            contract_address: Contract address
            chain_id: Chain id
            start_block: First block to index

        Returns:
            Created progress row
        """
        return await self.create(
            contract_address=contract_address.lower(),
            chain_id=chain_id,
            last_processed_block=start_block - 1,
            scheduled_through_block=start_block - 1,
            sync_start_block=start_block,
            is_syncing=True,
            sync_state=SyncState.STARTING.value,
            total_events_processed=0,
            error_count=0,
        )

    async def is_syncing(self, contract_address: str, chain_id: int) -> bool:
        """
        Read the is_syncing flag straight from storage.

        Returns:
            Flag value, False if the row does not exist
        """
        stmt = select(IndexingProgress.is_syncing).where(
            *self._match(contract_address, chain_id)
        )
        result = await self.session.execute(stmt)
        return bool(result.scalar())

    async def set_syncing(
        self,
        contract_address: str,
        chain_id: int,
        is_syncing: bool,
        state: SyncState,
        reset_schedule: bool = True,
    ) -> int:
        """
        Unconditionally set the flag and state. Returns rows updated.

        With reset_schedule the frontier falls back to the cursor; callers
        cancel pending units around such a call.
        """
        values = {"is_syncing": is_syncing, "sync_state": state.value}
        if reset_schedule:
            values["scheduled_through_block"] = IndexingProgress.last_processed_block
        return await self._update(*self._match(contract_address, chain_id), **values)

    async def mark_caught_up(self, contract_address: str, chain_id: int) -> bool:
        """
        Transition syncing -> caught_up.

        Only applies while the flag is still set, so a stop that landed
        in between is preserved.
        """
        updated = await self._update(
            *self._match(contract_address, chain_id),
            IndexingProgress.is_syncing.is_(True),
            is_syncing=False,
            sync_state=SyncState.CAUGHT_UP.value,
        )
        return updated > 0

    async def mark_syncing(self, contract_address: str, chain_id: int) -> bool:
        """Transition starting -> syncing while the flag is still set."""
        updated = await self._update(
            *self._match(contract_address, chain_id),
            IndexingProgress.is_syncing.is_(True),
            sync_state=SyncState.SYNCING.value,
        )
        return updated > 0

    async def resume_from_monitoring(self, contract_address: str, chain_id: int) -> bool:
        """Transition caught_up -> syncing when new blocks appear."""
        updated = await self._update(
            *self._match(contract_address, chain_id),
            IndexingProgress.sync_state == SyncState.CAUGHT_UP.value,
            is_syncing=True,
            sync_state=SyncState.SYNCING.value,
        )
        return updated > 0

    async def mark_errored(
        self, contract_address: str, chain_id: int, error: str
    ) -> int:
        """Clear the flag and record the error."""
        return await self._update(
            *self._match(contract_address, chain_id),
            is_syncing=False,
            sync_state=SyncState.ERRORED.value,
            last_error=error[:2000],
            error_count=IndexingProgress.error_count + 1,
            scheduled_through_block=IndexingProgress.last_processed_block,
        )

    async def _lock_progress(
        self, contract_address: str, chain_id: int
    ) -> IndexingProgress | None:
        stmt = (
            select(IndexingProgress)
            .where(*self._match(contract_address, chain_id))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    def _match_ranges(self, contract_address: str, chain_id: int):
        return (
            CompletedBlockRange.contract_address == contract_address.lower(),
            CompletedBlockRange.chain_id == chain_id,
        )

    async def complete_range(
        self,
        contract_address: str,
        chain_id: int,
        from_block: int,
        to_block: int,
    ) -> int | None:
        """
        Record a processed sub-range and advance the cursor over it.

        The progress row is locked first, so completions for one contract
        are serialized. A sub-range that finished ahead of a lower one is
        kept in completed_block_ranges; the cursor then moves across every
        completed sub-range contiguous with it, so out-of-order work is
        never discarded and the cursor never skips a gap.

        Returns:
            New cursor if it moved, otherwise None
        """
        progress = await self._lock_progress(contract_address, chain_id)
        if progress is None:
            return None
        start = progress.last_processed_block
        if to_block <= start:
            return None

        match = self._match_ranges(contract_address, chain_id)
        stmt = select(CompletedBlockRange).where(
            *match, CompletedBlockRange.from_block == from_block
        )
        existing = (await self.session.execute(stmt)).scalar_one_or_none()
        if existing is None:
            self.session.add(
                CompletedBlockRange(
                    contract_address=contract_address.lower(),
                    chain_id=chain_id,
                    from_block=from_block,
                    to_block=to_block,
                )
            )
        elif existing.to_block < to_block:
            existing.to_block = to_block
        await self.session.flush()

        stmt = (
            select(CompletedBlockRange)
            .where(*match, CompletedBlockRange.to_block > start)
            .order_by(CompletedBlockRange.from_block)
        )
        cursor = start
        for completed in (await self.session.execute(stmt)).scalars():
            if completed.from_block > cursor + 1:
                break
            cursor = max(cursor, completed.to_block)

        if cursor == start:
            return None

        await self._update(
            *self._match(contract_address, chain_id),
            IndexingProgress.last_processed_block < cursor,
            last_processed_block=cursor,
        )
        await self.session.execute(
            delete(CompletedBlockRange)
            .where(*match, CompletedBlockRange.to_block <= cursor)
            .execution_options(synchronize_session=False)
        )
        return cursor

    async def completed_ranges(
        self, contract_address: str, chain_id: int
    ) -> list[CompletedBlockRange]:
        """Sub-ranges completed above the cursor, ascending."""
        stmt = (
            select(CompletedBlockRange)
            .where(*self._match_ranges(contract_address, chain_id))
            .order_by(CompletedBlockRange.from_block)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def extend_schedule(
        self, contract_address: str, chain_id: int, through_block: int
    ) -> None:
        """Move scheduled_through_block forward after sub-ranges were queued."""
        await self._update(
            *self._match(contract_address, chain_id),
            or_(
                IndexingProgress.scheduled_through_block.is_(None),
                IndexingProgress.scheduled_through_block < through_block,
            ),
            scheduled_through_block=through_block,
        )

    async def increment_events(
        self, contract_address: str, chain_id: int, amount: int = 1
    ) -> None:
        """Add to total_events_processed."""
        await self._update(
            *self._match(contract_address, chain_id),
            total_events_processed=IndexingProgress.total_events_processed + amount,
        )

    async def reset_all_syncing(
        self,
        state: SyncState = SyncState.STOPPED,
        include_monitoring: bool = False,
    ) -> int:
        """
        Clear every set is_syncing flag.

        Args:
            state: State recorded on the reset rows
            include_monitoring: Also stop caught-up rows that are polling

        Returns:
            Number of rows reset
        """
        condition = IndexingProgress.is_syncing.is_(True)
        if include_monitoring:
            condition = or_(
                condition,
                IndexingProgress.sync_state == SyncState.CAUGHT_UP.value,
            )
        return await self._update(
            condition,
            is_syncing=False,
            sync_state=state.value,
            scheduled_through_block=IndexingProgress.last_processed_block,
        )

    async def count_syncing(self) -> int:
        """Count rows with is_syncing set."""
        return await self.count(is_syncing=True)

    async def count_active(self) -> int:
        """Count rows that are syncing or polling in caught-up mode."""
        stmt = (
            select(func.count())
            .select_from(IndexingProgress)
            .where(
                or_(
                    IndexingProgress.is_syncing.is_(True),
                    IndexingProgress.sync_state == SyncState.CAUGHT_UP.value,
                )
            )
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0

    async def total_events(self) -> int:
        """Sum of total_events_processed over all rows."""
        stmt = select(func.coalesce(func.sum(IndexingProgress.total_events_processed), 0))
        result = await self.session.execute(stmt)
        return int(result.scalar() or 0)
