"""Integration tests for event application, idempotency and failure isolation."""

import pytest
from sqlalchemy import func, select

from app.models.completed_block_range import CompletedBlockRange
from app.models.failed_event import FailedEvent
from app.models.token_approval import TokenApproval
from app.models.token_transfer import TokenTransfer
from app.repositories.failed_event_repository import FailedEventRepository
from app.repositories.indexing_progress_repository import IndexingProgressRepository
from app.services.indexing.event_applier import ApplyOutcome, EventApplier, ensure_ordered
from app.utils.exceptions import ConnectivityError
from tests.fakes import CHAIN_ID, HOLDER_A, HOLDER_B, TOKEN_ADDRESS, make_event

EVENTS = ["Transfer", "Approval"]


async def create_progress(session_maker, last_processed_block=999):
    async with session_maker() as session:
        await IndexingProgressRepository(session).create_progress(
            TOKEN_ADDRESS, CHAIN_ID, last_processed_block + 1
        )
        await session.commit()


async def load_progress(session_maker):
    async with session_maker() as session:
        return await IndexingProgressRepository(session).get_progress(TOKEN_ADDRESS, CHAIN_ID)


async def count_rows(session_maker, model) -> int:
    async with session_maker() as session:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar()


async def process(session_maker, ledger, from_block, to_block):
    async with session_maker() as session:
        return await EventApplier(session, ledger).process_block_range(
            TOKEN_ADDRESS, CHAIN_ID, from_block, to_block, EVENTS
        )


class TestProcessBlockRange:
    """Tests for applying one sub-range."""

    @pytest.mark.asyncio
    async def test_applies_events_and_advances_cursor(self, session_maker, ledger):
        await create_progress(session_maker)
        ledger.events = [
            make_event(1001, 0),
            make_event(1001, 1, kind="Approval"),
            make_event(1005, 2),
        ]

        result = await process(session_maker, ledger, 1000, 1019)

        assert (result.fetched, result.applied, result.skipped, result.failed) == (3, 3, 0, 0)
        assert result.cursor_advanced
        progress = await load_progress(session_maker)
        assert progress.last_processed_block == 1019
        assert progress.total_events_processed == 3
        assert await count_rows(session_maker, TokenTransfer) == 2
        assert await count_rows(session_maker, TokenApproval) == 1

    @pytest.mark.asyncio
    async def test_materialized_fields(self, session_maker, ledger):
        await create_progress(session_maker)
        ledger.events = [make_event(1003, 4, value="123456789012345678901234567890")]

        await process(session_maker, ledger, 1000, 1019)

        async with session_maker() as session:
            transfer = (await session.execute(select(TokenTransfer))).scalar_one()
        assert transfer.block_number == 1003
        assert transfer.log_index == 4
        assert transfer.chain_id == CHAIN_ID
        assert transfer.contract_address == TOKEN_ADDRESS
        assert transfer.from_address == HOLDER_A
        assert transfer.to_address == HOLDER_B
        assert transfer.value == "123456789012345678901234567890"

    @pytest.mark.asyncio
    async def test_idempotent_replay(self, session_maker, ledger):
        """Processing the same sub-range twice materializes each event once."""
        await create_progress(session_maker)
        ledger.events = [make_event(1001, 0), make_event(1002, 0, kind="Approval")]

        await process(session_maker, ledger, 1000, 1019)
        result = await process(session_maker, ledger, 1000, 1019)

        assert (result.applied, result.skipped) == (0, 2)
        assert not result.cursor_advanced
        progress = await load_progress(session_maker)
        assert progress.total_events_processed == 2
        assert progress.last_processed_block == 1019
        assert await count_rows(session_maker, TokenTransfer) == 1
        assert await count_rows(session_maker, TokenApproval) == 1

    @pytest.mark.asyncio
    async def test_empty_range_still_advances(self, session_maker, ledger):
        await create_progress(session_maker)

        result = await process(session_maker, ledger, 1000, 1019)

        assert result.fetched == 0
        assert (await load_progress(session_maker)).last_processed_block == 1019

    @pytest.mark.asyncio
    async def test_range_ahead_of_cursor_is_held(self, session_maker, ledger):
        """A sub-range completing before its predecessor waits for the gap to fill."""
        await create_progress(session_maker)
        ledger.events = [make_event(1025, 0)]

        result = await process(session_maker, ledger, 1020, 1039)

        assert result.applied == 1
        assert not result.cursor_advanced
        assert result.cursor is None
        assert (await load_progress(session_maker)).last_processed_block == 999
        async with session_maker() as session:
            held = await IndexingProgressRepository(session).completed_ranges(
                TOKEN_ADDRESS, CHAIN_ID
            )
        assert [(r.from_block, r.to_block) for r in held] == [(1020, 1039)]

        result = await process(session_maker, ledger, 1000, 1019)

        assert result.cursor == 1039
        assert (await load_progress(session_maker)).last_processed_block == 1039
        assert await count_rows(session_maker, CompletedBlockRange) == 0

    @pytest.mark.asyncio
    async def test_out_of_order_completion_reaches_end(self, session_maker, ledger):
        """Sub-ranges finishing out of order still carry the cursor to the end."""
        await create_progress(session_maker)
        ledger.events = [make_event(block, 0) for block in range(1000, 1050, 5)]
        order = [(1010, 1019), (1000, 1009), (1020, 1029), (1030, 1039), (1040, 1049)]

        cursors = []
        for from_block, to_block in order:
            result = await process(session_maker, ledger, from_block, to_block)
            cursors.append(result.cursor)

        assert cursors == [None, 1019, 1029, 1039, 1049]
        progress = await load_progress(session_maker)
        assert progress.last_processed_block == 1049
        assert progress.total_events_processed == 10
        assert await count_rows(session_maker, TokenTransfer) == 10
        assert await count_rows(session_maker, CompletedBlockRange) == 0

    @pytest.mark.asyncio
    async def test_cursor_never_moves_backwards(self, session_maker, ledger):
        await create_progress(session_maker)
        await process(session_maker, ledger, 1000, 1019)
        await process(session_maker, ledger, 1020, 1039)

        await process(session_maker, ledger, 1000, 1019)

        assert (await load_progress(session_maker)).last_processed_block == 1039

    @pytest.mark.asyncio
    async def test_ledger_failure_propagates(self, session_maker, ledger):
        await create_progress(session_maker)
        ledger.events_error = ConnectivityError("rpc down")

        with pytest.raises(ConnectivityError):
            await process(session_maker, ledger, 1000, 1019)

        assert (await load_progress(session_maker)).last_processed_block == 999


class TestFailureIsolation:
    """Tests for the failed event audit trail."""

    @pytest.mark.asyncio
    async def test_bad_event_recorded_others_applied(self, session_maker, ledger):
        await create_progress(session_maker)
        bad = make_event(1002, 1, **{"from": HOLDER_A, "to": HOLDER_B})
        ledger.events = [make_event(1001, 0), bad, make_event(1003, 0)]

        result = await process(session_maker, ledger, 1000, 1019)

        assert (result.applied, result.failed) == (2, 1)
        assert result.cursor_advanced
        assert await count_rows(session_maker, TokenTransfer) == 2
        async with session_maker() as session:
            failed = (await session.execute(select(FailedEvent))).scalar_one()
        assert failed.transaction_hash == bad.transaction_hash
        assert failed.log_index == 1
        assert failed.block_number == 1002
        assert failed.retry_count == 0
        assert failed.resolved_at is None
        assert "value" in failed.error_message
        assert failed.event_data == bad.to_dict()

    @pytest.mark.asyncio
    async def test_repeat_failure_bumps_retry_count(self, session_maker, ledger):
        await create_progress(session_maker)
        ledger.events = [make_event(1002, 1, **{"from": HOLDER_A, "to": HOLDER_B})]

        await process(session_maker, ledger, 1000, 1019)
        await process(session_maker, ledger, 1000, 1019)

        async with session_maker() as session:
            rows = list((await session.execute(select(FailedEvent))).scalars().all())
        assert len(rows) == 1
        assert rows[0].retry_count == 1
        assert rows[0].last_retry_at is not None

    @pytest.mark.asyncio
    async def test_unknown_kind_recorded(self, session_maker, ledger):
        await create_progress(session_maker)
        async with session_maker() as session:
            outcome = await EventApplier(session, ledger).process_token_event(
                make_event(1001, 0, kind="Mint", amount="1"), CHAIN_ID
            )

        assert outcome == ApplyOutcome.FAILED
        assert await count_rows(session_maker, FailedEvent) == 1


class TestRetryFailedEvents:
    """Tests for the retry pass."""

    async def _record(self, session_maker, ledger, event, error):
        async with session_maker() as session:
            await EventApplier(session, ledger).store_failed_event(event, CHAIN_ID, error)

    @pytest.mark.asyncio
    async def test_transient_failure_resolved(self, session_maker, ledger):
        await create_progress(session_maker)
        event = make_event(1001, 0)
        await self._record(session_maker, ledger, event, RuntimeError("db hiccup"))

        async with session_maker() as session:
            stats = await EventApplier(session, ledger).retry_failed_events()

        assert stats == {"attempted": 1, "resolved": 1, "failed": 0}
        assert await count_rows(session_maker, TokenTransfer) == 1
        async with session_maker() as session:
            failed = (await session.execute(select(FailedEvent))).scalar_one()
            assert await FailedEventRepository(session).count_unresolved() == 0
        assert failed.resolved_at is not None
        assert (await load_progress(session_maker)).total_events_processed == 1

    @pytest.mark.asyncio
    async def test_already_applied_event_resolves_without_duplicate(self, session_maker, ledger):
        await create_progress(session_maker)
        event = make_event(1001, 0)
        ledger.events = [event]
        await process(session_maker, ledger, 1000, 1019)
        await self._record(session_maker, ledger, event, RuntimeError("late duplicate"))

        async with session_maker() as session:
            stats = await EventApplier(session, ledger).retry_failed_events()

        assert stats["resolved"] == 1
        assert await count_rows(session_maker, TokenTransfer) == 1

    @pytest.mark.asyncio
    async def test_permanent_failure_bumps_retry_count(self, session_maker, ledger):
        await create_progress(session_maker)
        bad = make_event(1002, 1, **{"from": HOLDER_A, "to": HOLDER_B})
        await self._record(session_maker, ledger, bad, RuntimeError("missing value"))

        async with session_maker() as session:
            stats = await EventApplier(session, ledger).retry_failed_events()

        assert stats == {"attempted": 1, "resolved": 0, "failed": 1}
        async with session_maker() as session:
            failed = (await session.execute(select(FailedEvent))).scalar_one()
        assert failed.retry_count == 1
        assert failed.resolved_at is None

    @pytest.mark.asyncio
    async def test_exhausted_failures_skipped(self, session_maker, ledger):
        await create_progress(session_maker)
        bad = make_event(1002, 1, **{"from": HOLDER_A, "to": HOLDER_B})
        await self._record(session_maker, ledger, bad, RuntimeError("missing value"))

        async with session_maker() as session:
            applier = EventApplier(session, ledger)
            await applier.retry_failed_events(max_retries=1)
            stats = await applier.retry_failed_events(max_retries=1)

        assert stats["attempted"] == 0

    @pytest.mark.asyncio
    async def test_zero_max_retries_attempts_nothing(self, session_maker, ledger):
        await create_progress(session_maker)
        await self._record(session_maker, ledger, make_event(1001, 0), RuntimeError("db hiccup"))

        async with session_maker() as session:
            stats = await EventApplier(session, ledger).retry_failed_events(max_retries=0)

        assert stats == {"attempted": 0, "resolved": 0, "failed": 0}
        assert await count_rows(session_maker, TokenTransfer) == 0


class TestEnsureOrdered:
    def test_sorted_input_unchanged(self):
        events = [make_event(1, 0), make_event(1, 1), make_event(2, 0)]
        assert ensure_ordered(events) is events

    def test_out_of_order_input_sorted(self):
        events = [make_event(2, 0), make_event(1, 1), make_event(1, 0)]
        assert [e.sort_key for e in ensure_ordered(events)] == [(1, 0), (1, 1), (2, 0)]
