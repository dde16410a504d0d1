"""
Ledger client.

Read-only access to the chain: current height, decoded events of a
contract in a block range, and contract liveness. Web3 calls are
synchronous and run in a thread pool, one call per executor task.
"""

import asyncio
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from loguru import logger
from web3 import Web3

from app.config.constants import BLOCKCHAIN_TIMEOUT
from app.utils.exceptions import InvalidRangeError, ValidationError
from app.utils.security import mask_address, mask_url
from app.utils.validation import validate_contract_address

from .constants import ERC20_ABI, ERC20_EVENT_NAMES
from .events import TokenEvent
from .rpc_wrapper import classify_rpc_error, with_timeout


def _to_hex(value: Any) -> str:
    """Render HexBytes/bytes/str as a lower-case 0x string."""
    if isinstance(value, (bytes, bytearray)):
        text = bytes(value).hex()
    else:
        text = str(value)
    text = text.lower()
    return text if text.startswith("0x") else f"0x{text}"


def _normalize_arg(value: Any) -> Any:
    """Make decoded event arguments JSON-safe."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        # uint256 does not fit JSON numbers
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return _to_hex(value)
    if isinstance(value, str) and value.startswith("0x"):
        return value.lower()
    return value


def log_to_event(log: Any, kind: str) -> TokenEvent:
    """
    Convert a decoded web3 event log into a TokenEvent.

    Args:
        log: Decoded log (AttributeDict) from get_logs
        kind: Event name

    Returns:
        TokenEvent with JSON-safe args
    """
    args = {name: _normalize_arg(value) for name, value in dict(log["args"]).items()}
    return TokenEvent(
        transaction_hash=_to_hex(log["transactionHash"]),
        log_index=int(log["logIndex"]),
        block_number=int(log["blockNumber"]),
        block_hash=_to_hex(log["blockHash"]),
        contract_address=str(log["address"]).lower(),
        kind=kind,
        args=args,
    )


class LedgerClient:
    """
    Read-only ledger collaborator shared by all workers.

    Holds no per-call state, so one instance serves every thread.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        timeout: float = BLOCKCHAIN_TIMEOUT,
        w3: Web3 | None = None,
        max_workers: int = 4,
    ) -> None:
        """
        Initialize client.

        Args:
            rpc_url: HTTP JSON-RPC endpoint
            chain_id: Chain served by the endpoint
            timeout: Per-call timeout in seconds
            w3: Optional preconfigured Web3 instance
            max_workers: Thread pool size for blocking web3 calls
        """
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.timeout = timeout
        self.w3 = w3 or Web3(
            Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout})
        )
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="web3",
        )

    @property
    def masked_rpc_url(self) -> str:
        return mask_url(self.rpc_url)

    async def _call(self, func: Callable[[], Any], operation_name: str) -> Any:
        """Run a blocking web3 call in the pool with timeout and error mapping."""
        loop = asyncio.get_running_loop()
        try:
            return await with_timeout(
                loop.run_in_executor(self._executor, func),
                timeout=self.timeout,
                operation_name=operation_name,
            )
        except Exception as e:
            error = classify_rpc_error(e, operation_name)
            if error is e:
                raise
            logger.warning(f"[Ledger] {error}")
            raise error from e

    async def get_current_block_number(self) -> int:
        """
        Get current chain height.

        Raises:
            ConnectivityError: If the RPC endpoint is unreachable
        """
        return int(await self._call(lambda: self.w3.eth.block_number, "eth_blockNumber"))

    async def validate_contract_address(self, address: str) -> bool:
        """
        Check that a contract with code exists at the address.

        Raises:
            ValidationError: If the address is malformed
            ConnectivityError: If the RPC endpoint is unreachable
        """
        normalized = validate_contract_address(address)
        checksum = Web3.to_checksum_address(normalized)
        code = await self._call(lambda: self.w3.eth.get_code(checksum), "eth_getCode")
        is_live = bool(code) and len(code) > 0
        if not is_live:
            logger.warning(f"[Ledger] No contract code at {mask_address(normalized)}")
        return is_live

    async def get_token_events(
        self,
        contract_address: str,
        event_names: Iterable[str],
        from_block: int,
        to_block: int,
    ) -> list[TokenEvent]:
        """
        Get decoded events of a contract in [from_block, to_block].

        Args:
            contract_address: Contract address
            event_names: Event kinds to fetch (Transfer, Approval)
            from_block: First block, inclusive
            to_block: Last block, inclusive

        Returns:
            Events sorted by (block_number, log_index)

        Raises:
            InvalidRangeError: If the range is reversed or rejected by the provider
            ConnectivityError: If the RPC endpoint is unreachable
        """
        if from_block < 0 or to_block < from_block:
            raise InvalidRangeError(f"Invalid block range {from_block}-{to_block}")

        names = list(dict.fromkeys(event_names))
        unknown = [name for name in names if name not in ERC20_EVENT_NAMES]
        if unknown:
            raise ValidationError(f"Unsupported events: {', '.join(unknown)}")

        checksum = Web3.to_checksum_address(validate_contract_address(contract_address))

        def fetch() -> list[TokenEvent]:
            contract = self.w3.eth.contract(address=checksum, abi=ERC20_ABI)
            collected: list[TokenEvent] = []
            for name in names:
                logs = getattr(contract.events, name).get_logs(
                    from_block=from_block,
                    to_block=to_block,
                )
                collected.extend(log_to_event(log, name) for log in logs)
            return collected

        events = await self._call(
            fetch, f"eth_getLogs {from_block}-{to_block}"
        )
        events.sort(key=lambda e: e.sort_key)
        return events

    def close(self) -> None:
        """Release the thread pool."""
        self._executor.shutdown(wait=False)


_ledger_client: LedgerClient | None = None


def get_ledger_client() -> LedgerClient:
    """
    Get the process-wide ledger client, creating it from settings.

    Returns:
        LedgerClient instance
    """
    global _ledger_client
    if _ledger_client is None:
        from app.config.settings import settings

        _ledger_client = LedgerClient(
            rpc_url=settings.rpc_url,
            chain_id=settings.chain_id,
            timeout=settings.rpc_timeout,
        )
        logger.info(
            f"[Ledger] Client created for chain {settings.chain_id} "
            f"via {_ledger_client.masked_rpc_url}"
        )
    return _ledger_client
