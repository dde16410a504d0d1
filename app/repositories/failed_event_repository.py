"""
Failed Event repository.

Append-mostly access to the failure audit trail.
"""

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.failed_event import FailedEvent
from app.repositories.base import BaseRepository
from app.utils.datetime_utils import utc_now


class FailedEventRepository(BaseRepository[FailedEvent]):
    """Repository for failed events."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(FailedEvent, session)

    async def get_for_event(
        self,
        contract_address: str,
        chain_id: int,
        transaction_hash: str,
        log_index: int,
    ) -> FailedEvent | None:
        """Get the failure row for one event, if any."""
        return await self.get_by(
            contract_address=contract_address.lower(),
            chain_id=chain_id,
            transaction_hash=transaction_hash.lower(),
            log_index=log_index,
        )

    async def record_failure(
        self,
        contract_address: str,
        chain_id: int,
        block_number: int,
        transaction_hash: str,
        log_index: int,
        event_data: dict[str, Any],
        error_message: str,
    ) -> FailedEvent:
        """
        Record a failed application of one event.

        The first failure creates the row; later failures of the same
        event bump retry_count and last_retry_at on that row.

        Returns:
            The failure row
        """
        existing = await self.get_for_event(
            contract_address, chain_id, transaction_hash, log_index
        )
        if existing is not None:
            existing.retry_count += 1
            existing.last_retry_at = utc_now()
            existing.error_message = error_message
            existing.resolved_at = None
            await self.session.flush()
            return existing

        return await self.create(
            contract_address=contract_address.lower(),
            chain_id=chain_id,
            block_number=block_number,
            transaction_hash=transaction_hash.lower(),
            log_index=log_index,
            event_data=event_data,
            error_message=error_message,
            retry_count=0,
        )

    async def list_retryable(
        self, max_retries: int, limit: int = 100
    ) -> list[FailedEvent]:
        """
        Unresolved failures that have not used up their retries.

        Args:
            max_retries: Exclusive upper bound on retry_count
            limit: Max results

        Returns:
            Oldest failures first
        """
        stmt = (
            select(FailedEvent)
            .where(
                FailedEvent.resolved_at.is_(None),
                FailedEvent.retry_count < max_retries,
            )
            .order_by(FailedEvent.created_at, FailedEvent.id)
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_resolved(self, failed_event: FailedEvent) -> None:
        """Mark a failure as resolved after a successful retry."""
        now = utc_now()
        failed_event.resolved_at = now
        failed_event.last_retry_at = now
        failed_event.retry_count += 1
        await self.session.flush()

    async def count_unresolved(self) -> int:
        """Count failures still waiting for a successful retry."""
        stmt = (
            select(func.count())
            .select_from(FailedEvent)
            .where(FailedEvent.resolved_at.is_(None))
        )
        result = await self.session.execute(stmt)
        return result.scalar() or 0
