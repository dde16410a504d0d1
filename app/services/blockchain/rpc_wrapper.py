"""
RPC Wrapper with Timeout and Error Classification.

Provides timeout handling for blockchain RPC calls and maps provider
failures onto the indexer's error taxonomy.
"""

import asyncio
from typing import Any

from loguru import logger

from app.config.constants import BLOCKCHAIN_TIMEOUT, RANGE_LIMIT_ERROR_MARKERS
from app.utils.exceptions import ConnectivityError, IndexerError, InvalidRangeError


class BlockchainTimeoutError(ConnectivityError):
    """Raised when blockchain RPC call times out."""
    pass


async def with_timeout(
    coro: Any,
    timeout: float = BLOCKCHAIN_TIMEOUT,
    operation_name: str = "RPC call",
) -> Any:
    """
    Execute async coroutine with timeout.

    Args:
        coro: Coroutine to execute
        timeout: Timeout in seconds (default: BLOCKCHAIN_TIMEOUT)
        operation_name: Operation name for logging

    Returns:
        Result of the coroutine

    Raises:
        BlockchainTimeoutError: If operation times out
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout)
    except TimeoutError as e:
        error_msg = f"{operation_name} timed out after {timeout}s"
        logger.error(error_msg)
        raise BlockchainTimeoutError(error_msg) from e


def is_range_limit_error(exc: BaseException) -> bool:
    """Check if a provider error complains about the queried block range."""
    message = str(exc).lower()
    return any(marker in message for marker in RANGE_LIMIT_ERROR_MARKERS)


def classify_rpc_error(exc: Exception, operation_name: str) -> IndexerError:
    """
    Map a provider exception onto the error taxonomy.

    Args:
        exc: Exception raised by web3 or the HTTP transport
        operation_name: Operation name for the message

    Returns:
        InvalidRangeError for range-limit complaints, ConnectivityError otherwise
    """
    if isinstance(exc, IndexerError):
        return exc
    if is_range_limit_error(exc):
        return InvalidRangeError(f"{operation_name} rejected range: {exc}")
    return ConnectivityError(f"{operation_name} failed: {exc}")
