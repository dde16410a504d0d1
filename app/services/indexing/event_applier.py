"""
Event applier.

Materializes ledger events of one block sub-range. Every event is
checked against its natural key (transaction_hash, log_index) before it
is inserted, so redelivered units and overlapping runs are no-ops.
Events that cannot be applied go to the failed_events audit trail and
never hold back the cursor.
"""

from dataclasses import dataclass
from enum import StrEnum

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config.settings import settings
from app.models.enums import EventKind
from app.repositories.failed_event_repository import FailedEventRepository
from app.repositories.indexing_progress_repository import IndexingProgressRepository
from app.repositories.token_approval_repository import TokenApprovalRepository
from app.repositories.token_transfer_repository import TokenTransferRepository
from app.services.blockchain.events import TokenEvent
from app.utils.datetime_utils import utc_now
from app.utils.exceptions import ApplicationError
from app.utils.security import mask_address, mask_tx_hash


class ApplyOutcome(StrEnum):
    """Result of applying one event."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RangeResult:
    """Counters for one processed sub-range."""

    fetched: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    cursor_advanced: bool = False
    cursor: int | None = None

    def record(self, outcome: ApplyOutcome) -> None:
        if outcome is ApplyOutcome.APPLIED:
            self.applied += 1
        elif outcome is ApplyOutcome.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


def ensure_ordered(events: list[TokenEvent]) -> list[TokenEvent]:
    """
    Return events in (block_number, log_index) order.

    The ledger client promises this order; a violation is logged and
    repaired rather than trusted.
    """
    keys = [event.sort_key for event in events]
    if all(a <= b for a, b in zip(keys, keys[1:])):
        return events
    logger.warning(
        f"[Applier] Ledger returned {len(events)} events out of order, re-sorting"
    )
    return sorted(events, key=lambda e: e.sort_key)


def _require_arg(event: TokenEvent, name: str) -> str:
    try:
        value = event.args[name]
    except KeyError as exc:
        raise ApplicationError(
            f"{event.kind} event {mask_tx_hash(event.transaction_hash)}:"
            f"{event.log_index} is missing argument '{name}'"
        ) from exc
    if value is None:
        raise ApplicationError(f"{event.kind} argument '{name}' is null")
    return str(value).lower()


class EventApplier:
    """Applies ledger events of a tracked contract to the store."""

    def __init__(self, session: AsyncSession, ledger) -> None:
        """
        Initialize applier.

        Args:
            session: Database session
            ledger: Ledger client
        """
        self.session = session
        self.ledger = ledger
        self.progress_repo = IndexingProgressRepository(session)
        self.transfer_repo = TokenTransferRepository(session)
        self.approval_repo = TokenApprovalRepository(session)
        self.failed_repo = FailedEventRepository(session)

    async def process_block_range(
        self,
        contract_address: str,
        chain_id: int,
        from_block: int,
        to_block: int,
        events: list[str] | tuple[str, ...],
    ) -> RangeResult:
        """
        Fetch and apply the events of one sub-range, then advance the cursor.

        Args:
            contract_address: Tracked contract
            chain_id: Chain id
            from_block: First block (inclusive)
            to_block: Last block (inclusive)
            events: Event kinds to extract

        Returns:
            RangeResult with per-outcome counters

        Raises:
            ConnectivityError: If the ledger is unreachable (unit is retried)
            InvalidRangeError: If the ledger rejects the range
        """
        result = RangeResult()
        fetched = await self.ledger.get_token_events(
            contract_address, events, from_block, to_block
        )
        fetched = ensure_ordered(list(fetched))
        result.fetched = len(fetched)

        for event in fetched:
            result.record(await self.process_token_event(event, chain_id))

        # Failures are in the audit trail; they do not hold the cursor back
        result.cursor = await self.progress_repo.complete_range(
            contract_address, chain_id, from_block, to_block
        )
        result.cursor_advanced = result.cursor is not None
        await self.session.commit()

        if not result.cursor_advanced:
            logger.debug(
                f"[Applier] {mask_address(contract_address)} blocks {from_block}-{to_block} "
                f"did not move the cursor "
                f"(already covered or waiting for a lower sub-range)"
            )

        logger.info(
            f"[Applier] {mask_address(contract_address)} blocks {from_block}-{to_block}: "
            f"{result.applied} applied, {result.skipped} skipped, "
            f"{result.failed} failed"
        )
        return result

    async def process_token_event(
        self, event: TokenEvent, chain_id: int
    ) -> ApplyOutcome:
        """
        Apply one event idempotently.

        Returns:
            APPLIED, SKIPPED (already present) or FAILED (recorded)
        """
        try:
            if await self._already_applied(event):
                return ApplyOutcome.SKIPPED
            await self._apply(event, chain_id)
            await self.progress_repo.increment_events(event.contract_address, chain_id)
            await self.session.commit()
            return ApplyOutcome.APPLIED
        except IntegrityError as e:
            await self.session.rollback()
            # Lost a race with another worker inserting the same key
            if await self._already_applied(event):
                logger.debug(
                    f"[Applier] {mask_tx_hash(event.transaction_hash)}:{event.log_index} "
                    f"applied concurrently, skipping"
                )
                return ApplyOutcome.SKIPPED
            await self.store_failed_event(event, chain_id, e)
            return ApplyOutcome.FAILED
        except Exception as e:
            await self.session.rollback()
            await self.store_failed_event(event, chain_id, e)
            return ApplyOutcome.FAILED

    async def _already_applied(self, event: TokenEvent) -> bool:
        tx_hash, log_index = event.dedup_key
        if event.kind == EventKind.TRANSFER:
            return await self.transfer_repo.event_exists(tx_hash, log_index)
        if event.kind == EventKind.APPROVAL:
            return await self.approval_repo.event_exists(tx_hash, log_index)
        raise ApplicationError(f"Unsupported event kind: {event.kind}")

    async def _apply(self, event: TokenEvent, chain_id: int) -> None:
        if event.kind == EventKind.TRANSFER:
            await self._apply_transfer(event, chain_id)
        elif event.kind == EventKind.APPROVAL:
            await self._apply_approval(event, chain_id)
        else:
            raise ApplicationError(f"Unsupported event kind: {event.kind}")

    async def _apply_transfer(self, event: TokenEvent, chain_id: int) -> None:
        await self.transfer_repo.create(
            transaction_hash=event.transaction_hash.lower(),
            log_index=event.log_index,
            block_number=event.block_number,
            block_hash=event.block_hash.lower(),
            chain_id=chain_id,
            contract_address=event.contract_address.lower(),
            from_address=_require_arg(event, "from"),
            to_address=_require_arg(event, "to"),
            value=_require_arg(event, "value"),
            processed_at=utc_now(),
        )

    async def _apply_approval(self, event: TokenEvent, chain_id: int) -> None:
        await self.approval_repo.create(
            transaction_hash=event.transaction_hash.lower(),
            log_index=event.log_index,
            block_number=event.block_number,
            block_hash=event.block_hash.lower(),
            chain_id=chain_id,
            contract_address=event.contract_address.lower(),
            owner_address=_require_arg(event, "owner"),
            spender_address=_require_arg(event, "spender"),
            value=_require_arg(event, "value"),
            processed_at=utc_now(),
        )

    async def store_failed_event(
        self, event: TokenEvent, chain_id: int, error: Exception
    ) -> None:
        """
        Record a failed event in the audit trail.

        Raises:
            SQLAlchemyError: If the failure itself cannot be stored; the
                unit is then retried as a whole
        """
        message = f"{type(error).__name__}: {error}"
        logger.error(
            f"[Applier] Failed to apply {event.kind} "
            f"{mask_tx_hash(event.transaction_hash)}:{event.log_index} "
            f"in block {event.block_number}: {message}"
        )
        try:
            await self.failed_repo.record_failure(
                contract_address=event.contract_address,
                chain_id=chain_id,
                block_number=event.block_number,
                transaction_hash=event.transaction_hash,
                log_index=event.log_index,
                event_data=event.to_dict(),
                error_message=message[:2000],
            )
            await self.session.commit()
        except Exception as store_error:
            await self.session.rollback()
            logger.error(f"[Applier] Could not store failed event: {store_error}")
            raise

    async def retry_failed_events(
        self, limit: int = 100, max_retries: int | None = None
    ) -> dict[str, int]:
        """
        Retry unresolved failed events.

        A success materializes the event and sets resolved_at; another
        failure bumps retry_count and last_retry_at.

        Args:
            limit: Max failures to retry in this pass
            max_retries: Skip failures retried this many times

        Returns:
            Dict with attempted/resolved/failed counts
        """
        if max_retries is None:
            max_retries = settings.failed_event_max_retries
        pending = await self.failed_repo.list_retryable(max_retries, limit)
        # Rollbacks below expire loaded rows; keep plain values
        snapshot = [
            (failed.id, failed.chain_id, TokenEvent.from_dict(failed.event_data))
            for failed in pending
        ]

        stats = {"attempted": len(snapshot), "resolved": 0, "failed": 0}
        for failed_id, chain_id, event in snapshot:
            try:
                if not await self._already_applied(event):
                    await self._apply(event, chain_id)
                    await self.progress_repo.increment_events(
                        event.contract_address, chain_id
                    )
                failed = await self.failed_repo.get_by(id=failed_id)
                if failed is not None:
                    await self.failed_repo.mark_resolved(failed)
                await self.session.commit()
                stats["resolved"] += 1
            except Exception as e:
                await self.session.rollback()
                await self.store_failed_event(event, chain_id, e)
                stats["failed"] += 1

        if snapshot:
            logger.info(
                f"[Applier] Retried {stats['attempted']} failed events: "
                f"{stats['resolved']} resolved, {stats['failed']} still failing"
            )
        return stats
