#!/usr/bin/env python3
"""
Indexer Admin CLI.

Operator commands for the token indexer. Commands that start work only
enqueue it; a running worker (python -m worker.main) executes it.

Usage:
    python scripts/indexer_admin.py start 0x2791...
    python scripts/indexer_admin.py stop 0x2791... [--chain-id 137]
    python scripts/indexer_admin.py status 0x2791... [--chain-id 137]
    python scripts/indexer_admin.py list
    python scripts/indexer_admin.py transfers 0x2791... [--holder 0x...] [--limit 20]
    python scripts/indexer_admin.py resume-all
    python scripts/indexer_admin.py recovery-status
    python scripts/indexer_admin.py reset-stuck
    python scripts/indexer_admin.py health
    python scripts/indexer_admin.py retry-failed [--limit 100] [--inline]
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger  # noqa: E402

from app.config.constants import RETRY_FAILED_EVENTS  # noqa: E402
from app.config.settings import settings  # noqa: E402
from app.services.blockchain.ledger_client import get_ledger_client  # noqa: E402
from app.services.indexing.event_applier import EventApplier  # noqa: E402
from app.services.indexing.health import HealthMonitor  # noqa: E402
from app.services.indexing.lifecycle import LifecycleManager  # noqa: E402
from app.services.indexing.sync_coordinator import SyncCoordinator  # noqa: E402
from app.utils.exceptions import IndexerError, is_caller_error  # noqa: E402
from jobs.async_runner import create_task_session_maker  # noqa: E402


def _print(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Token indexer administration")
    sub = parser.add_subparsers(dest="command", required=True)

    start = sub.add_parser("start", help="Start or resume indexing a contract")
    start.add_argument("address")

    for name, help_text in (
        ("stop", "Stop indexing a contract"),
        ("status", "Show indexing progress of a contract"),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("address")
        cmd.add_argument("--chain-id", type=int, default=settings.chain_id)

    sub.add_parser("list", help="List progress of all indexed contracts")

    transfers = sub.add_parser("transfers", help="Show indexed transfers")
    transfers.add_argument("address")
    transfers.add_argument("--holder", default=None)
    transfers.add_argument("--limit", type=int, default=20)

    sub.add_parser("resume-all", help="Resume every enabled indexed contract")
    sub.add_parser("recovery-status", help="Configured/indexed/stuck counts")
    sub.add_parser(
        "reset-stuck",
        help="Clear stuck syncing flags (only while no worker is running)",
    )
    sub.add_parser("health", help="System health report")

    retry = sub.add_parser("retry-failed", help="Retry unresolved failed events")
    retry.add_argument("--limit", type=int, default=100)
    retry.add_argument(
        "--inline",
        action="store_true",
        help="Run the retry pass here instead of enqueueing it",
    )
    return parser


async def run_command(args: argparse.Namespace, session_maker, ledger, work_queue) -> int:
    """
    Execute one parsed command.

    Returns:
        Process exit code
    """
    lifecycle = LifecycleManager(session_maker, ledger, work_queue)

    if args.command == "resume-all":
        _print(await lifecycle.resume_all())
        return 0
    if args.command == "recovery-status":
        _print(await lifecycle.recovery_status())
        return 0
    if args.command == "reset-stuck":
        _print({"reset": await lifecycle.reset_stuck_syncing()})
        return 0
    if args.command == "health":
        report = await HealthMonitor(session_maker, ledger, work_queue).get_system_health()
        _print(report.to_dict())
        return 0 if report.status != "unhealthy" else 1
    if args.command == "retry-failed" and not args.inline:
        message = work_queue.enqueue(RETRY_FAILED_EVENTS, {"limit": args.limit})
        _print({"enqueued": message.message_id})
        return 0

    async with session_maker() as session:
        if args.command == "retry-failed":
            _print(await EventApplier(session, ledger).retry_failed_events(limit=args.limit))
            return 0

        coordinator = SyncCoordinator(session, ledger, work_queue)
        if args.command == "start":
            progress = await coordinator.start_indexing(args.address)
            _print(progress.to_dict())
        elif args.command == "stop":
            progress = await coordinator.stop_indexing(args.address, args.chain_id)
            _print(progress.to_dict())
        elif args.command == "status":
            progress = await coordinator.require_indexing_status(args.address, args.chain_id)
            _print(progress.to_dict())
        elif args.command == "list":
            _print([row.to_dict() for row in await coordinator.list_indexing()])
        elif args.command == "transfers":
            rows = await coordinator.get_transfer_history(
                args.address, holder=args.holder, limit=args.limit
            )
            _print([row.to_dict() for row in rows])
    return 0


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    from jobs.work_queue import get_work_queue

    session_maker = create_task_session_maker()
    ledger = get_ledger_client()
    try:
        return await run_command(args, session_maker, ledger, get_work_queue())
    except IndexerError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 2 if is_caller_error(e) else 1
    finally:
        ledger.close()
        await session_maker.kw["bind"].dispose()


if __name__ == "__main__":
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        level="INFO",
    )
    sys.exit(asyncio.run(main()))
