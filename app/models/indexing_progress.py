"""
Indexing Progress model.

Tracks synchronization state of one tracked contract on one chain.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.enums import SyncState
from app.models.types import AddressType


class IndexingProgress(Base):
    """
    Per-(contract, chain) sync cursor.

    Used to:
    - Resume sync after restart from last_processed_block
    - Bound queued work to the window above the cursor
    - Carry the authoritative is_syncing flag checked by every run
    - Count successfully applied events
    """

    __tablename__ = "indexing_progress"
    __table_args__ = (
        UniqueConstraint("contract_address", "chain_id"),
    )

    # Primary key
    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Tracked contract identification
    contract_address: Mapped[str] = mapped_column(
        AddressType, nullable=False, index=True
    )
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Cursor
    last_processed_block: Mapped[int] = mapped_column(
        BigInteger, nullable=False
    )
    sync_start_block: Mapped[int] = mapped_column(
        BigInteger, nullable=False
    )
    # Last block handed to the work queue; pending work spans
    # (last_processed_block, scheduled_through_block]
    scheduled_through_block: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )

    # Sync status
    is_syncing: Mapped[bool] = mapped_column(
        default=False, nullable=False, index=True
    )
    sync_state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SyncState.UNINITIALIZED.value
    )

    # Statistics
    total_events_processed: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )

    # Error tracking
    last_error: Mapped[str | None] = mapped_column(
        Text, nullable=True
    )
    error_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<IndexingProgress(contract={self.contract_address}, "
            f"chain={self.chain_id}, last={self.last_processed_block}, "
            f"state={self.sync_state}, syncing={self.is_syncing})>"
        )

    def to_dict(self) -> dict:
        """Serialize for status output."""
        return {
            "contract_address": self.contract_address,
            "chain_id": self.chain_id,
            "last_processed_block": self.last_processed_block,
            "sync_start_block": self.sync_start_block,
            "scheduled_through_block": self.scheduled_through_block,
            "is_syncing": self.is_syncing,
            "sync_state": self.sync_state,
            "total_events_processed": self.total_events_processed,
            "last_error": self.last_error,
            "error_count": self.error_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
