"""
Async runner for dramatiq tasks.

Provides a thread-safe way to run async code in dramatiq actors.
Each worker thread gets its own event loop, and database sessions are
bound to engines created on that loop.
"""

import asyncio
import threading
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.config.settings import settings

T = TypeVar("T")

# Thread-local storage for event loops
_thread_local = threading.local()


def get_event_loop() -> asyncio.AbstractEventLoop:
    """
    Get or create event loop for current thread.

    Creates a new event loop for each thread and reuses it.
    This prevents "Future attached to a different loop" errors.
    """
    loop = getattr(_thread_local, "loop", None)
    if loop is None or loop.is_closed():
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        _thread_local.loop = loop
        logger.debug(f"Created new event loop for thread {threading.current_thread().name}")
    return loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run async coroutine in the thread's event loop.

    Args:
        coro: Async coroutine to run

    Returns:
        Result of the coroutine
    """
    loop = get_event_loop()
    return loop.run_until_complete(coro)


def create_task_session_maker(database_url: str | None = None) -> async_sessionmaker[AsyncSession]:
    """
    Create a session maker bound to a fresh NullPool engine.

    NullPool avoids sharing pooled connections between thread loops.
    """
    engine = create_async_engine(
        database_url or settings.database_url,
        echo=False,
        poolclass=NullPool,
    )
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def _thread_session_maker() -> async_sessionmaker[AsyncSession]:
    maker = getattr(_thread_local, "session_maker", None)
    if maker is None:
        maker = create_task_session_maker()
        _thread_local.session_maker = maker
    return maker


@asynccontextmanager
async def task_session() -> AsyncIterator[AsyncSession]:
    """
    Open a database session for the current worker thread.

    Usage:
        async with task_session() as session:
            await session.execute(...)

    Yields:
        AsyncSession bound to the current event loop
    """
    async with _thread_session_maker()() as session:
        yield session
