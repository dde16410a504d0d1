"""
Token Transfer model.

Materialized Transfer events of tracked contracts.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.types import AddressType, HashType, Uint256Type


class TokenTransfer(Base):
    """
    One Transfer log.

    (transaction_hash, log_index) is the natural key; its presence
    means the event has already been applied.
    """

    __tablename__ = "token_transfers"
    __table_args__ = (
        UniqueConstraint("transaction_hash", "log_index"),
        Index("ix_token_transfers_contract_block", "contract_address", "block_number"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    # Natural key
    transaction_hash: Mapped[str] = mapped_column(HashType, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)

    # Position
    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[str] = mapped_column(HashType, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contract_address: Mapped[str] = mapped_column(AddressType, nullable=False)

    # Payload (addresses normalized to lowercase)
    from_address: Mapped[str] = mapped_column(AddressType, nullable=False, index=True)
    to_address: Mapped[str] = mapped_column(AddressType, nullable=False, index=True)
    value: Mapped[str] = mapped_column(Uint256Type, nullable=False)

    # Timestamps
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        """String representation."""
        return (
            f"<TokenTransfer(tx={self.transaction_hash[:16]}..., "
            f"log={self.log_index}, value={self.value})>"
        )

    def to_dict(self) -> dict:
        return {
            "transaction_hash": self.transaction_hash,
            "log_index": self.log_index,
            "block_number": self.block_number,
            "block_hash": self.block_hash,
            "chain_id": self.chain_id,
            "contract_address": self.contract_address,
            "from_address": self.from_address,
            "to_address": self.to_address,
            "value": self.value,
        }
