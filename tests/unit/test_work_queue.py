"""Unit tests for the Dramatiq-backed work queue."""

from unittest.mock import MagicMock

import dramatiq
import pytest
from dramatiq.brokers.stub import StubBroker
from dramatiq.errors import ActorNotFound

from app.config.constants import (
    BLOCK_RANGE_EXHAUSTED,
    PROCESS_BLOCK_RANGE,
    RETRY_FAILED_EVENTS,
    START_INDEXING,
)
from app.config.settings import settings
from app.utils.exceptions import InvalidRangeError, ValidationError
from jobs.middleware import InFlightTracker
from jobs.work_queue import WorkQueue, get_work_queue
from tests.fakes import CHAIN_ID, TOKEN_ADDRESS


@pytest.fixture
def stub_broker():
    broker = StubBroker()
    broker.emit_after("process_boot")

    def unit(contract_address, chain_id):
        pass

    dramatiq.actor(unit, broker=broker, actor_name="unit", max_retries=0)
    yield broker
    broker.flush_all()
    broker.close()


@pytest.fixture
def registry():
    return MagicMock()


@pytest.fixture
def queue(stub_broker, registry):
    return WorkQueue(stub_broker, registry, InFlightTracker())


PAYLOAD = {"contract_address": TOKEN_ADDRESS, "chain_id": CHAIN_ID}


class TestEnqueue:
    """Tests for WorkQueue.enqueue."""

    def test_single_attempt_keeps_actor_default(self, queue):
        message = queue.enqueue("unit", PAYLOAD)

        assert message.kwargs == PAYLOAD
        assert "max_retries" not in message.options
        assert "eta" not in message.options

    def test_retry_policy_on_message(self, queue):
        message = queue.enqueue("unit", PAYLOAD, max_attempts=3, backoff_seconds=5)

        assert message.options["max_retries"] == 2
        assert message.options["min_backoff"] == 5000

    def test_delay_goes_to_delay_queue(self, queue):
        message = queue.enqueue("unit", PAYLOAD, delay_seconds=30)

        assert message.queue_name.endswith(".DQ")
        assert "eta" in message.options

    def test_unknown_kind(self, queue):
        with pytest.raises(ActorNotFound):
            queue.enqueue("no_such_unit", PAYLOAD)

    def test_closed_queue_rejects(self, queue):
        queue.close()

        with pytest.raises(RuntimeError):
            queue.enqueue("unit", PAYLOAD)


class TestCancelAndClose:
    """Tests for cancellation and shutdown."""

    def test_cancel_pending_delegates_to_registry(self, queue, registry):
        registry.cancel.return_value = 1234

        assert queue.cancel_pending(TOKEN_ADDRESS, CHAIN_ID) == 1234
        registry.cancel.assert_called_once_with(TOKEN_ADDRESS, CHAIN_ID)

    def test_close_stops_worker_once(self, stub_broker, registry):
        worker = MagicMock()
        queue = WorkQueue(stub_broker, registry, InFlightTracker(), worker=worker)

        queue.close()
        queue.close()

        assert queue.closed
        worker.stop.assert_called_once()

    def test_active_count_from_tracker(self, stub_broker, registry):
        tracker = MagicMock()
        tracker.active_count.return_value = 4

        assert WorkQueue(stub_broker, registry, tracker).active_count() == 4


class TestDeclaredActors:
    """Tests for the actors registered by the process-wide queue."""

    def test_all_units_declared(self):
        broker = get_work_queue().broker
        for name in (START_INDEXING, PROCESS_BLOCK_RANGE, BLOCK_RANGE_EXHAUSTED, RETRY_FAILED_EVENTS):
            assert broker.get_actor(name) is not None

    def test_block_range_retry_policy(self):
        actor = get_work_queue().broker.get_actor(PROCESS_BLOCK_RANGE)

        assert actor.options["max_retries"] == settings.block_range_max_attempts - 1
        assert actor.options["min_backoff"] == settings.block_range_backoff_seconds * 1000
        assert set(actor.options["throws"]) == {InvalidRangeError, ValidationError}
        assert actor.options["on_retry_exhausted"] == BLOCK_RANGE_EXHAUSTED

    def test_runs_are_not_retried(self):
        actor = get_work_queue().broker.get_actor(START_INDEXING)
        assert actor.options["max_retries"] == 0
