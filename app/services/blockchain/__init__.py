"""
Ledger services module.

Read-only blockchain access used by the synchronization engine.
"""

from .constants import ERC20_ABI, ERC20_EVENT_NAMES
from .events import TokenEvent
from .ledger_client import LedgerClient, get_ledger_client

__all__ = [
    "ERC20_ABI",
    "ERC20_EVENT_NAMES",
    "LedgerClient",
    "TokenEvent",
    "get_ledger_client",
]
