"""
Dramatiq middleware for the indexer.

InFlightTracker answers "how many units are running right now" for the
shutdown drain. PendingCancellation implements cancel-pending for a
tracked contract: every message for that contract created before the
contract's cutoff is skipped instead of processed. Messages already
running are not affected.
"""

import threading

from dramatiq.middleware import Middleware, SkipMessage
from loguru import logger

from app.config.constants import CANCELLATION_KEY
from app.utils.datetime_utils import epoch_ms
from app.utils.security import mask_address


def _message_target(message) -> tuple[str, int] | None:
    """Extract (contract_address, chain_id) from a unit-of-work message."""
    kwargs = message.kwargs or {}
    address = kwargs.get("contract_address")
    chain_id = kwargs.get("chain_id")
    if not address or chain_id is None:
        return None
    return str(address).lower(), int(chain_id)


class CancellationRegistry:
    """
    Per-contract cancellation cutoffs stored in a Redis hash.

    Stored durably so that messages left in Redis by a previous process
    are still recognized as cancelled after a restart.
    """

    def __init__(self, client, key: str = CANCELLATION_KEY) -> None:
        """
        Args:
            client: Synchronous redis client
            key: Hash key holding the cutoffs
        """
        self.client = client
        self.key = key

    @staticmethod
    def _field(contract_address: str, chain_id: int) -> str:
        return f"{contract_address.lower()}:{chain_id}"

    def cancel(self, contract_address: str, chain_id: int, cutoff_ms: int | None = None) -> int:
        """
        Cancel all messages for the contract created before cutoff_ms.

        Returns:
            The cutoff that was stored
        """
        cutoff = cutoff_ms if cutoff_ms is not None else epoch_ms()
        self.client.hset(self.key, self._field(contract_address, chain_id), cutoff)
        return cutoff

    def cutoff(self, contract_address: str, chain_id: int) -> int | None:
        value = self.client.hget(self.key, self._field(contract_address, chain_id))
        return int(value) if value is not None else None

    def is_cancelled(self, contract_address: str, chain_id: int, message_timestamp: int) -> bool:
        cutoff = self.cutoff(contract_address, chain_id)
        return cutoff is not None and message_timestamp < cutoff


class PendingCancellation(Middleware):
    """Skip messages for contracts whose pending work was cancelled."""

    def __init__(self, registry: CancellationRegistry) -> None:
        self.registry = registry

    def before_process_message(self, broker, message):
        target = _message_target(message)
        if target is None:
            return
        address, chain_id = target
        if self.registry.is_cancelled(address, chain_id, message.message_timestamp):
            logger.info(
                f"[Queue] Skipping cancelled {message.actor_name} "
                f"for {mask_address(address)} (message {message.message_id})"
            )
            raise SkipMessage()


class InFlightTracker(Middleware):
    """Track messages currently being processed by this process's workers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def before_process_message(self, broker, message):
        with self._lock:
            self._active.add(message.message_id)

    def after_process_message(self, broker, message, *, result=None, exception=None):
        self._discard(message)

    def after_skip_message(self, broker, message):
        self._discard(message)

    def _discard(self, message) -> None:
        with self._lock:
            self._active.discard(message.message_id)

    def active_count(self) -> int:
        with self._lock:
            return len(self._active)
