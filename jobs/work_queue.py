"""
Work queue facade.

The only way the coordinator, scheduler and applier hand work to each
other: enqueue a unit by kind, cancel a contract's pending units, count
units in flight, and close the channel on shutdown.
"""

from typing import Any

import dramatiq
from dramatiq import Broker, Worker
from loguru import logger

from app.config.constants import WORKER_STOP_TIMEOUT_MS
from app.utils.security import mask_address
from jobs.middleware import CancellationRegistry, InFlightTracker


class WorkQueue:
    """Dramatiq-backed unit-of-work channel."""

    def __init__(
        self,
        broker: Broker,
        registry: CancellationRegistry,
        tracker: InFlightTracker,
        worker: Worker | None = None,
    ) -> None:
        """
        Args:
            broker: Dramatiq broker with the actors declared
            registry: Cancellation cutoff store
            tracker: In-flight message tracker
            worker: Embedded worker, stopped on close
        """
        self.broker = broker
        self.registry = registry
        self.tracker = tracker
        self.worker = worker
        self.closed = False

    def attach_worker(self, worker: Worker) -> None:
        self.worker = worker

    def enqueue(
        self,
        kind: str,
        payload: dict[str, Any],
        *,
        delay_seconds: float = 0,
        max_attempts: int = 1,
        backoff_seconds: float | None = None,
    ) -> dramatiq.Message:
        """
        Submit one unit of work.

        Args:
            kind: Actor name
            payload: Keyword arguments for the actor
            delay_seconds: Delay before the unit becomes visible
            max_attempts: Total attempts including the first
            backoff_seconds: Base delay of the exponential retry backoff

        Returns:
            The enqueued message

        Raises:
            RuntimeError: If the queue was closed
        """
        if self.closed:
            raise RuntimeError(f"Work queue is closed, cannot enqueue {kind}")

        actor = self.broker.get_actor(kind)
        options: dict[str, Any] = {}
        # A zero max_retries on the message falls back to the actor default
        if max_attempts > 1:
            options["max_retries"] = max_attempts - 1
        if backoff_seconds:
            options["min_backoff"] = int(backoff_seconds * 1000)

        delay = int(delay_seconds * 1000) if delay_seconds else None
        message = actor.send_with_options(kwargs=payload, delay=delay, **options)
        logger.debug(
            f"[Queue] Enqueued {kind} ({message.message_id}) delay={delay_seconds}s"
        )
        return message

    def cancel_pending(self, contract_address: str, chain_id: int) -> int:
        """
        Cancel every not-yet-started unit for the contract.

        Returns:
            Cancellation cutoff in epoch milliseconds
        """
        cutoff = self.registry.cancel(contract_address, chain_id)
        logger.info(
            f"[Queue] Cancelled pending work for {mask_address(contract_address)} "
            f"on chain {chain_id}"
        )
        return cutoff

    def active_count(self) -> int:
        """Units currently being processed by this process's workers."""
        return self.tracker.active_count()

    def close(self) -> None:
        """Stop the embedded worker and close broker connections."""
        if self.closed:
            return
        self.closed = True
        if self.worker is not None:
            logger.info("[Queue] Stopping worker...")
            self.worker.stop(timeout=WORKER_STOP_TIMEOUT_MS)
        self.broker.close()
        logger.info("[Queue] Broker closed")


_work_queue: WorkQueue | None = None


def get_work_queue() -> WorkQueue:
    """
    Get the process-wide work queue, declaring all actors on first use.

    Returns:
        WorkQueue instance
    """
    global _work_queue
    if _work_queue is None:
        from jobs.broker import broker, cancellation_registry, inflight_tracker
        import jobs.tasks.indexing  # noqa: F401  (declares actors)

        _work_queue = WorkQueue(broker, cancellation_registry, inflight_tracker)
    return _work_queue
