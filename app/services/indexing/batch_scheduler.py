"""
Batch scheduler.

Splits an open block range into bounded sub-ranges and submits each one
as a process_block_range unit of work. The sync flag is re-read before
every submission so a stop lands between sub-ranges.
"""

from dataclasses import dataclass, field

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.constants import PROCESS_BLOCK_RANGE
from app.config.settings import settings
from app.repositories.indexing_progress_repository import IndexingProgressRepository
from app.utils.security import mask_address


@dataclass(frozen=True)
class BlockRange:
    """Inclusive block interval."""

    from_block: int
    to_block: int

    def __len__(self) -> int:
        return self.to_block - self.from_block + 1

    def __str__(self) -> str:
        return f"{self.from_block}-{self.to_block}"


@dataclass
class ScheduleResult:
    """Outcome of one scheduling pass."""

    submitted: list[BlockRange] = field(default_factory=list)
    skipped: list[BlockRange] = field(default_factory=list)
    halted: bool = False
    # Every sub-range up to here was submitted or already completed
    through_block: int | None = None

    @property
    def last_block(self) -> int | None:
        return self.submitted[-1].to_block if self.submitted else None


def split_block_range(
    from_block: int, to_block: int, batch_size: int
) -> list[BlockRange]:
    """
    Split [from_block, to_block] into consecutive sub-ranges.

    Sub-ranges are ascending, non-overlapping, at most batch_size blocks
    long and cover the range exactly once. An empty range yields [].

    Args:
        from_block: First block (inclusive)
        to_block: Last block (inclusive)
        batch_size: Maximum blocks per sub-range

    Returns:
        List of sub-ranges

    Raises:
        ValueError: If batch_size < 1
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    if to_block < from_block:
        return []

    ranges = []
    start = from_block
    while start <= to_block:
        end = min(start + batch_size - 1, to_block)
        ranges.append(BlockRange(start, end))
        start = end + 1
    return ranges


class BatchScheduler:
    """Fans a block range out to the work queue."""

    def __init__(
        self,
        session: AsyncSession,
        work_queue,
        batch_size: int | None = None,
        max_attempts: int | None = None,
        backoff_seconds: float | None = None,
    ) -> None:
        """
        Initialize scheduler.

        Args:
            session: Database session used for the freshness check
            work_queue: Queue receiving process_block_range units
            batch_size: Blocks per sub-range (default: settings)
            max_attempts: Attempts per sub-range (default: settings)
            backoff_seconds: Base retry delay (default: settings)
        """
        self.session = session
        self.work_queue = work_queue
        self.progress_repo = IndexingProgressRepository(session)
        self.batch_size = settings.batch_size if batch_size is None else batch_size
        self.max_attempts = (
            settings.block_range_max_attempts if max_attempts is None else max_attempts
        )
        self.backoff_seconds = (
            settings.block_range_backoff_seconds
            if backoff_seconds is None
            else backoff_seconds
        )

    async def schedule(
        self,
        contract_address: str,
        chain_id: int,
        from_block: int,
        to_block: int,
        events: list[str] | tuple[str, ...],
        max_ranges: int | None = None,
    ) -> ScheduleResult:
        """
        Submit the sub-ranges of [from_block, to_block] in ascending order.

        Sub-ranges already recorded as completed above the cursor are
        skipped without fetching them again.

        Args:
            contract_address: Tracked contract
            chain_id: Chain id
            from_block: First block (inclusive)
            to_block: Last block (inclusive)
            events: Event kinds to extract
            max_ranges: Submit at most this many sub-ranges

        Returns:
            ScheduleResult; halted is True if a stop was observed
        """
        result = ScheduleResult()
        completed = await self.progress_repo.completed_ranges(contract_address, chain_id)
        ranges = split_block_range(from_block, to_block, self.batch_size)

        for block_range in ranges:
            if any(
                done.from_block <= block_range.from_block
                and block_range.to_block <= done.to_block
                for done in completed
            ):
                result.skipped.append(block_range)
                result.through_block = block_range.to_block
                continue
            if max_ranges is not None and len(result.submitted) >= max_ranges:
                break
            if not await self.progress_repo.is_syncing(contract_address, chain_id):
                logger.info(
                    f"[Scheduler] Sync of {mask_address(contract_address)} stopped, "
                    f"halting before {block_range} "
                    f"({len(result.submitted)}/{len(ranges)} submitted)"
                )
                result.halted = True
                break

            self.work_queue.enqueue(
                PROCESS_BLOCK_RANGE,
                {
                    "contract_address": contract_address,
                    "chain_id": chain_id,
                    "from_block": block_range.from_block,
                    "to_block": block_range.to_block,
                    "events": list(events),
                },
                max_attempts=self.max_attempts,
                backoff_seconds=self.backoff_seconds,
            )
            result.submitted.append(block_range)
            result.through_block = block_range.to_block

        if result.submitted:
            logger.info(
                f"[Scheduler] Submitted {len(result.submitted)} sub-ranges for "
                f"{mask_address(contract_address)}: "
                f"{result.submitted[0].from_block}-{result.last_block}"
            )
        return result
