"""
Failed Event model.

Audit trail of events that could not be applied. Rows are never
deleted by the indexer; a successful retry only sets resolved_at.
"""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Index, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.types import AddressType, EventPayloadType, HashType


class FailedEvent(Base):
    """One event that failed to apply, with cause and retry bookkeeping."""

    __tablename__ = "failed_events"
    __table_args__ = (
        UniqueConstraint(
            "contract_address", "chain_id", "transaction_hash", "log_index",
            name="uq_failed_events_event",
        ),
        Index("ix_failed_events_contract_chain", "contract_address", "chain_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    contract_address: Mapped[str] = mapped_column(AddressType, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    transaction_hash: Mapped[str] = mapped_column(HashType, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # Raw event as received from the ledger
    event_data: Mapped[dict[str, Any]] = mapped_column(
        EventPayloadType, nullable=False
    )
    error_message: Mapped[str] = mapped_column(Text, nullable=False)

    # Retry bookkeeping
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_retry_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<FailedEvent(tx={self.transaction_hash[:16]}..., "
            f"log={self.log_index}, retries={self.retry_count})>"
        )

    @property
    def is_resolved(self) -> bool:
        return self.resolved_at is not None
