"""
Indexing tasks.

Dramatiq actors for the synchronization engine:
- start_indexing: one coordinator run (schedule, re-arm or monitor)
- process_block_range: apply the events of one sub-range, retried with
  exponential backoff
- block_range_exhausted: marks the contract errored when a sub-range
  used up its retries
- retry_failed_events: periodic retry pass over the failure audit trail
"""

from typing import Any

import dramatiq
from loguru import logger

from app.config.constants import (
    BLOCK_PROCESSING_QUEUE,
    BLOCK_RANGE_EXHAUSTED,
    BLOCK_RANGE_TIME_LIMIT_MS,
    INDEXING_QUEUE,
    MAINTENANCE_QUEUE,
    MAINTENANCE_TIME_LIMIT_MS,
    PROCESS_BLOCK_RANGE,
    RETRY_FAILED_EVENTS,
    RUN_TIME_LIMIT_MS,
    START_INDEXING,
)
from app.config.settings import settings
from app.models.enums import SyncState
from app.services.blockchain.ledger_client import get_ledger_client
from app.services.indexing.event_applier import EventApplier
from app.services.indexing.sync_coordinator import SyncCoordinator
from app.utils.exceptions import InvalidRangeError, ValidationError
from app.utils.security import mask_address
from jobs.async_runner import run_async, task_session
from jobs.broker import broker


def _work_queue():
    from jobs.work_queue import get_work_queue

    return get_work_queue()


@dramatiq.actor(
    broker=broker,
    actor_name=START_INDEXING,
    queue_name=INDEXING_QUEUE,
    max_retries=0,
    time_limit=RUN_TIME_LIMIT_MS,
)
def start_indexing(contract_address: str, chain_id: int) -> dict:
    """
    Run the coordinator once for a contract.

    Not retried: a failed run marks the contract errored so it can be
    resumed explicitly.
    """
    report = run_async(_start_indexing_async(contract_address, chain_id))
    return {
        "outcome": report.outcome.value,
        "from_block": report.from_block,
        "to_block": report.to_block,
        "ranges_submitted": report.ranges_submitted,
    }


async def _start_indexing_async(contract_address: str, chain_id: int):
    async with task_session() as session:
        coordinator = SyncCoordinator(session, get_ledger_client(), _work_queue())
        return await coordinator.run_indexing(contract_address, chain_id)


@dramatiq.actor(
    broker=broker,
    actor_name=PROCESS_BLOCK_RANGE,
    queue_name=BLOCK_PROCESSING_QUEUE,
    max_retries=settings.block_range_max_attempts - 1,
    min_backoff=settings.block_range_backoff_seconds * 1000,
    throws=(InvalidRangeError, ValidationError),
    on_retry_exhausted=BLOCK_RANGE_EXHAUSTED,
    time_limit=BLOCK_RANGE_TIME_LIMIT_MS,
)
def process_block_range(
    contract_address: str,
    chain_id: int,
    from_block: int,
    to_block: int,
    events: list[str],
) -> dict:
    """
    Apply the events of one sub-range.

    Connectivity and storage errors propagate so the Retries middleware
    re-delivers the unit with backoff.
    """
    result = run_async(
        _process_block_range_async(
            contract_address, chain_id, from_block, to_block, events
        )
    )
    return {
        "fetched": result.fetched,
        "applied": result.applied,
        "skipped": result.skipped,
        "failed": result.failed,
        "cursor_advanced": result.cursor_advanced,
        "cursor": result.cursor,
    }


async def _process_block_range_async(
    contract_address: str,
    chain_id: int,
    from_block: int,
    to_block: int,
    events: list[str],
):
    ledger = get_ledger_client()
    async with task_session() as session:
        applier = EventApplier(session, ledger)
        try:
            return await applier.process_block_range(
                contract_address, chain_id, from_block, to_block, events
            )
        except (InvalidRangeError, ValidationError) as e:
            # Not retryable: the same range would be rejected again
            await session.rollback()
            coordinator = SyncCoordinator(session, ledger, _work_queue())
            await coordinator.mark_errored(
                contract_address,
                chain_id,
                f"Block range {from_block}-{to_block} rejected: {e}",
            )
            raise


@dramatiq.actor(
    broker=broker,
    actor_name=BLOCK_RANGE_EXHAUSTED,
    queue_name=MAINTENANCE_QUEUE,
    max_retries=3,
)
def block_range_exhausted(message_data: dict[str, Any], retry_info: dict[str, Any]) -> None:
    """Mark the contract errored after a sub-range used up its retries."""
    kwargs = message_data.get("kwargs") or {}
    traceback = (message_data.get("options") or {}).get("traceback") or ""
    lines = traceback.strip().splitlines()
    reason = lines[-1] if lines else "unknown error"
    run_async(_block_range_exhausted_async(kwargs, retry_info, reason))


async def _block_range_exhausted_async(
    kwargs: dict[str, Any], retry_info: dict[str, Any], reason: str
) -> None:
    address = kwargs.get("contract_address")
    chain_id = kwargs.get("chain_id")
    if not address or chain_id is None:
        logger.error(f"[Queue] Exhausted block range without target: {kwargs}")
        return

    async with task_session() as session:
        coordinator = SyncCoordinator(session, get_ledger_client(), _work_queue())
        progress = await coordinator.get_indexing_status(address, chain_id)
        if progress is None or progress.sync_state == SyncState.STOPPED:
            logger.info(
                f"[Queue] Exhausted block range for stopped {mask_address(address)}, "
                f"not marking errored"
            )
            return
        await coordinator.mark_errored(
            address,
            chain_id,
            f"Block range {kwargs.get('from_block')}-{kwargs.get('to_block')} failed "
            f"after {retry_info.get('retries', '?')} retries: "
            f"{reason}",
        )


@dramatiq.actor(
    broker=broker,
    actor_name=RETRY_FAILED_EVENTS,
    queue_name=MAINTENANCE_QUEUE,
    max_retries=0,
    time_limit=MAINTENANCE_TIME_LIMIT_MS,
)
def retry_failed_events(limit: int = 100) -> dict:
    """Retry unresolved failed events."""
    return run_async(_retry_failed_events_async(limit))


async def _retry_failed_events_async(limit: int) -> dict:
    async with task_session() as session:
        applier = EventApplier(session, get_ledger_client())
        return await applier.retry_failed_events(limit=limit)
