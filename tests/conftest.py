"""Pytest configuration and shared fixtures for all tests."""

import json
import os
import sys
from pathlib import Path

# Minimal environment for the settings module, set before any app import
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RPC_URL", "http://localhost:8545")
os.environ.setdefault("CHAIN_ID", "137")
os.environ.setdefault(
    "INDEXED_CONTRACTS",
    json.dumps(
        [
            {
                "address": "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
                "chain_id": 137,
                "start_block": 1000,
                "events": ["Transfer", "Approval"],
            }
        ]
    ),
)

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from app.config.constants import PROCESS_BLOCK_RANGE, START_INDEXING  # noqa: E402
from app.config.contracts import ContractRegistry, TrackedContract  # noqa: E402
from app.config.settings import settings  # noqa: E402
from app.models import Base  # noqa: E402
from app.services.indexing.event_applier import EventApplier  # noqa: E402
from app.services.indexing.sync_coordinator import SyncCoordinator  # noqa: E402
from tests.fakes import (  # noqa: E402
    CHAIN_ID,
    DISABLED_TOKEN_ADDRESS,
    OTHER_TOKEN_ADDRESS,
    TOKEN_ADDRESS,
    FakeLedger,
    RecordingWorkQueue,
)


@pytest.fixture
def ledger():
    """Fake ledger at height 1050."""
    return FakeLedger()


@pytest.fixture
def work_queue():
    """Recording work queue."""
    return RecordingWorkQueue()


@pytest.fixture
def registry():
    """Registry with one contract from block 1000, one from latest, one disabled."""
    return ContractRegistry(
        [
            TrackedContract(address=TOKEN_ADDRESS, chain_id=CHAIN_ID, start_block=1000),
            TrackedContract(address=OTHER_TOKEN_ADDRESS, chain_id=CHAIN_ID),
            TrackedContract(
                address=DISABLED_TOKEN_ADDRESS, chain_id=CHAIN_ID, enabled=False
            ),
        ]
    )


@pytest_asyncio.fixture
async def session_maker(tmp_path):
    """Session factory over a fresh SQLite database file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'indexer.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    await engine.dispose()


@pytest_asyncio.fixture
async def session(session_maker):
    """Database session for arranging and asserting."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def run_jobs(session_maker, ledger, work_queue, registry):
    """
    Execute queued units in FIFO order, as a worker would.

    Stops when only monitoring polls remain or max_steps is reached.
    Returns the number of units executed.
    """

    async def _run(batch_size: int | None = None, max_steps: int = 100) -> int:
        steps = 0
        while work_queue.jobs and steps < max_steps:
            job = work_queue.jobs[0]
            if (
                job.kind == START_INDEXING
                and job.delay_seconds == settings.monitor_interval_seconds
                and all(j.delay_seconds == job.delay_seconds for j in work_queue.jobs)
            ):
                break
            work_queue.jobs.pop(0)
            steps += 1
            async with session_maker() as session:
                if job.kind == START_INDEXING:
                    coordinator = SyncCoordinator(
                        session, ledger, work_queue, registry, batch_size=batch_size
                    )
                    await coordinator.run_indexing(**job.payload)
                elif job.kind == PROCESS_BLOCK_RANGE:
                    await EventApplier(session, ledger).process_block_range(**job.payload)
                else:
                    raise AssertionError(f"Unexpected unit {job.kind}")
        return steps

    return _run
