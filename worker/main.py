"""
Worker main entry point.

Runs the token indexer in one process: embedded dramatiq workers, the
periodic scheduler, the health server, startup recovery and shutdown
drain.

Single active process per deployment: nothing prevents two processes
from indexing the same contract.

Usage:
    python -m worker.main
"""

import asyncio
import signal
import sys
import warnings


# Suppress eth_utils network warnings about invalid ChainId
# Must be set BEFORE importing any modules that use eth_utils
warnings.filterwarnings(
    "ignore",
    message=".*does not have a valid ChainId.*",
    category=UserWarning,
)

from dramatiq import Worker  # noqa: E402
from loguru import logger  # noqa: E402

from app.config.database import async_session_maker  # noqa: E402
from app.config.settings import settings  # noqa: E402
from app.services.blockchain.ledger_client import get_ledger_client  # noqa: E402
from app.services.indexing.health import HealthMonitor  # noqa: E402
from app.services.indexing.lifecycle import LifecycleManager  # noqa: E402
from app.utils.datetime_utils import utc_now  # noqa: E402
from jobs.health import start_health_server, stop_health_server  # noqa: E402
from jobs.work_queue import get_work_queue  # noqa: E402
from worker.initialization.logging import setup_logging  # noqa: E402
from worker.initialization.scheduler import create_scheduler  # noqa: E402
from worker.initialization.shutdown import shutdown_handler  # noqa: E402


async def main() -> None:
    """Initialize and run the worker until SIGINT/SIGTERM."""
    setup_logging()
    started_at = utc_now()

    ledger = get_ledger_client()
    work_queue = get_work_queue()

    worker = Worker(work_queue.broker, worker_threads=settings.worker_threads)
    work_queue.attach_worker(worker)
    worker.start()
    logger.info(f"Dramatiq worker started with {settings.worker_threads} threads")

    lifecycle = LifecycleManager(
        async_session_maker, ledger, work_queue, started_at=started_at
    )
    monitor = HealthMonitor(
        async_session_maker, ledger, work_queue, started_at=started_at
    )

    scheduler = create_scheduler(work_queue)
    scheduler.start()

    runner = None
    try:
        runner, _ = await start_health_server(
            monitor, scheduler, port=settings.health_check_port
        )
    except Exception as e:
        logger.warning(f"Failed to start health check server: {e}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    def _handle_recovery_error(task: asyncio.Task) -> None:
        """Log errors from the recovery task."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc:
            logger.error(f"Startup recovery failed: {exc}")

    recovery_task = asyncio.create_task(lifecycle.run_recovery())
    recovery_task.add_done_callback(_handle_recovery_error)

    logger.info("Worker started successfully")
    try:
        await stop_event.wait()
        logger.info("Termination signal received")
    finally:
        if not recovery_task.done():
            recovery_task.cancel()
        await shutdown_handler(lifecycle, scheduler, ledger)
        if runner is not None:
            await stop_health_server(runner)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Worker stopped by user (KeyboardInterrupt)")
    except Exception as e:
        logger.exception(f"Worker crashed: {e}")
        sys.exit(1)
