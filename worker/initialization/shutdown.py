"""
Worker Initialization - Shutdown Module.

Module: shutdown.py
Handles graceful shutdown of the worker.
Drains the work queue, stops the scheduler and closes connections.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from app.services.indexing.lifecycle import LifecycleManager


async def shutdown_handler(
    lifecycle: LifecycleManager,
    scheduler: AsyncIOScheduler | None = None,
    ledger=None,
) -> None:
    """Handle graceful shutdown."""
    logger.info("Graceful shutdown initiated...")

    # Stop issuing periodic work first
    try:
        if scheduler and scheduler.running:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
    except Exception as e:
        logger.warning(f"Error stopping scheduler: {e}")

    try:
        await lifecycle.drain()
    except Exception as e:
        logger.error(f"Error draining work queue: {e}")

    if ledger is not None:
        ledger.close()

    # Close database connections
    try:
        from app.config.database import engine
        await engine.dispose()
        logger.info("Database connections closed")
    except Exception as e:
        logger.warning(f"Error closing database: {e}")

    logger.info("Graceful shutdown complete")
