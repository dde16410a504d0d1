"""
Exception handling utilities.

Defines the indexer error taxonomy and categories used to decide
whether a failure is retried at the unit-of-work level.
"""

from sqlalchemy.exc import OperationalError


class IndexerError(Exception):
    """Base class for all indexer errors."""


class ConfigurationError(IndexerError):
    """Tracked contract is unknown or disabled. No state is mutated."""


class ValidationError(IndexerError):
    """Malformed address, invalid chain id or contract not live on the ledger."""


class ConnectivityError(IndexerError):
    """Ledger or storage unreachable."""


class InvalidRangeError(IndexerError):
    """Ledger rejected the requested block range."""


class ApplicationError(IndexerError):
    """A single event could not be applied to the materialized store."""


class NotFoundError(IndexerError):
    """No indexing progress exists for the contract."""


# Exception categories based on handling strategy

# Retried with backoff by the work queue
RETRYABLE = (
    ConnectivityError,
    OperationalError,  # Storage unreachable
)

# Surfaced to the caller as-is, never retried
CALLER_ERRORS = (
    ConfigurationError,
    ValidationError,
    NotFoundError,
)


def is_retryable(exc: Exception) -> bool:
    """
    Check if a unit of work failing with this exception should be retried.

    Args:
        exc: Exception to check

    Returns:
        True if exception is transient
    """
    return isinstance(exc, RETRYABLE)


def is_caller_error(exc: Exception) -> bool:
    """
    Check if exception describes a bad request rather than a fault.

    Args:
        exc: Exception to check

    Returns:
        True if exception should be reported back to the caller
    """
    return isinstance(exc, CALLER_ERRORS)
