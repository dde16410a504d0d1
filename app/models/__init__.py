"""
Database models.

Exports all SQLAlchemy models for easy imports.
"""

from app.models.base import Base
from app.models.completed_block_range import CompletedBlockRange
from app.models.enums import EventKind, SyncState
from app.models.failed_event import FailedEvent
from app.models.indexing_progress import IndexingProgress
from app.models.token_approval import TokenApproval
from app.models.token_transfer import TokenTransfer

__all__ = [
    "Base",
    "CompletedBlockRange",
    "EventKind",
    "FailedEvent",
    "IndexingProgress",
    "SyncState",
    "TokenApproval",
    "TokenTransfer",
]
