"""
Model enums.
"""

from enum import StrEnum


class SyncState(StrEnum):
    """Lifecycle of one tracked contract's synchronization."""

    UNINITIALIZED = "uninitialized"
    STARTING = "starting"
    SYNCING = "syncing"
    CAUGHT_UP = "caught_up"
    STOPPED = "stopped"
    ERRORED = "errored"


class EventKind(StrEnum):
    """Ledger event kinds the applier materializes."""

    TRANSFER = "Transfer"
    APPROVAL = "Approval"
