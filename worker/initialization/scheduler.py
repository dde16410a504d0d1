"""
Worker Initialization - Scheduler Module.

Module: scheduler.py
Periodic jobs of the worker process. The jobs only enqueue work; the
dramatiq workers execute it.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from app.config.constants import RETRY_FAILED_EVENTS
from app.config.settings import settings


def create_scheduler(work_queue) -> AsyncIOScheduler:
    """
    Create the scheduler with the failed-event retry pass.

    Args:
        work_queue: Queue receiving the retry_failed_events unit

    Returns:
        Configured, not yet started scheduler
    """
    scheduler = AsyncIOScheduler()

    def enqueue_retry_pass() -> None:
        work_queue.enqueue(RETRY_FAILED_EVENTS, {"limit": 100})

    scheduler.add_job(
        enqueue_retry_pass,
        "interval",
        seconds=settings.failed_event_retry_interval_seconds,
        id="retry_failed_events",
        name="Retry failed events",
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        f"Scheduled failed event retry every "
        f"{settings.failed_event_retry_interval_seconds}s"
    )
    return scheduler
