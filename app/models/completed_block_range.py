"""
Completed Block Range model.

Sub-ranges that finished while a lower sub-range of the same contract
was still pending. The cursor absorbs them once the gap below is filled.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.types import AddressType


class CompletedBlockRange(Base):
    """One processed sub-range above the contiguous cursor."""

    __tablename__ = "completed_block_ranges"
    __table_args__ = (
        UniqueConstraint("contract_address", "chain_id", "from_block"),
        Index("ix_completed_block_ranges_contract_chain", "contract_address", "chain_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    contract_address: Mapped[str] = mapped_column(AddressType, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)

    from_block: Mapped[int] = mapped_column(BigInteger, nullable=False)
    to_block: Mapped[int] = mapped_column(BigInteger, nullable=False)

    completed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<CompletedBlockRange(contract={self.contract_address}, "
            f"chain={self.chain_id}, {self.from_block}-{self.to_block})>"
        )
