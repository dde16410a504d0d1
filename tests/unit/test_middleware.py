"""Unit tests for cancellation and in-flight tracking middleware."""

from unittest.mock import MagicMock

import dramatiq
import pytest
from dramatiq.middleware import SkipMessage

from app.config.constants import CANCELLATION_KEY
from jobs.middleware import CancellationRegistry, InFlightTracker, PendingCancellation
from tests.fakes import CHAIN_ID, TOKEN_ADDRESS


def _message(timestamp: int, message_id: str = "m1", **kwargs) -> dramatiq.Message:
    return dramatiq.Message(
        queue_name="indexing",
        actor_name="start_indexing",
        args=(),
        kwargs=kwargs,
        options={},
        message_id=message_id,
        message_timestamp=timestamp,
    )


@pytest.fixture
def redis_client():
    """Dict-backed stand-in for the hash commands the registry uses."""
    store: dict[str, dict[str, str]] = {}
    client = MagicMock()
    client.hset.side_effect = lambda key, field, value: store.setdefault(key, {}).__setitem__(
        field, str(value)
    )
    client.hget.side_effect = lambda key, field: store.get(key, {}).get(field)
    return client


class TestCancellationRegistry:
    """Tests for the per-contract cutoff store."""

    def test_no_cutoff(self, redis_client):
        registry = CancellationRegistry(redis_client)
        assert registry.cutoff(TOKEN_ADDRESS, CHAIN_ID) is None
        assert not registry.is_cancelled(TOKEN_ADDRESS, CHAIN_ID, 1)

    def test_cancel_stores_cutoff(self, redis_client):
        registry = CancellationRegistry(redis_client)

        registry.cancel(TOKEN_ADDRESS.upper().replace("0X", "0x"), CHAIN_ID, cutoff_ms=5000)

        redis_client.hset.assert_called_once_with(
            CANCELLATION_KEY, f"{TOKEN_ADDRESS}:{CHAIN_ID}", 5000
        )
        assert registry.cutoff(TOKEN_ADDRESS, CHAIN_ID) == 5000

    def test_only_older_messages_cancelled(self, redis_client):
        registry = CancellationRegistry(redis_client)
        registry.cancel(TOKEN_ADDRESS, CHAIN_ID, cutoff_ms=5000)

        assert registry.is_cancelled(TOKEN_ADDRESS, CHAIN_ID, 4999)
        assert not registry.is_cancelled(TOKEN_ADDRESS, CHAIN_ID, 5000)
        assert not registry.is_cancelled(TOKEN_ADDRESS, CHAIN_ID + 1, 1)

    def test_default_cutoff_is_now(self, redis_client):
        registry = CancellationRegistry(redis_client)
        assert registry.cancel(TOKEN_ADDRESS, CHAIN_ID) > 0


class TestPendingCancellation:
    """Tests for skipping cancelled messages."""

    def test_skips_message_created_before_cutoff(self, redis_client):
        registry = CancellationRegistry(redis_client)
        registry.cancel(TOKEN_ADDRESS, CHAIN_ID, cutoff_ms=5000)
        middleware = PendingCancellation(registry)

        with pytest.raises(SkipMessage):
            middleware.before_process_message(
                None, _message(4000, contract_address=TOKEN_ADDRESS, chain_id=CHAIN_ID)
            )

    def test_processes_message_created_after_cutoff(self, redis_client):
        registry = CancellationRegistry(redis_client)
        registry.cancel(TOKEN_ADDRESS, CHAIN_ID, cutoff_ms=5000)
        middleware = PendingCancellation(registry)

        middleware.before_process_message(
            None, _message(6000, contract_address=TOKEN_ADDRESS, chain_id=CHAIN_ID)
        )

    def test_ignores_messages_without_target(self, redis_client):
        middleware = PendingCancellation(CancellationRegistry(redis_client))

        middleware.before_process_message(None, _message(1, limit=100))

        redis_client.hget.assert_not_called()


class TestInFlightTracker:
    """Tests for in-flight counting."""

    def test_counts_processing_messages(self):
        tracker = InFlightTracker()
        first, second = _message(1, "a"), _message(1, "b")

        tracker.before_process_message(None, first)
        tracker.before_process_message(None, second)
        assert tracker.active_count() == 2

        tracker.after_process_message(None, first, result=None)
        assert tracker.active_count() == 1

        tracker.after_process_message(None, second, exception=RuntimeError("x"))
        assert tracker.active_count() == 0

    def test_skip_before_tracking_never_goes_negative(self):
        """A message skipped by an earlier middleware was never added."""
        tracker = InFlightTracker()

        tracker.after_skip_message(None, _message(1, "never-started"))

        assert tracker.active_count() == 0
