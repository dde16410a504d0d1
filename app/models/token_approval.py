"""
Token Approval model.

Materialized Approval events of tracked contracts.
"""

from datetime import UTC, datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base
from app.models.types import AddressType, HashType, Uint256Type


class TokenApproval(Base):
    """One Approval log, keyed like TokenTransfer."""

    __tablename__ = "token_approvals"
    __table_args__ = (
        UniqueConstraint("transaction_hash", "log_index"),
        Index("ix_token_approvals_contract_block", "contract_address", "block_number"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)

    transaction_hash: Mapped[str] = mapped_column(HashType, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_hash: Mapped[str] = mapped_column(HashType, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    contract_address: Mapped[str] = mapped_column(AddressType, nullable=False)

    owner_address: Mapped[str] = mapped_column(AddressType, nullable=False, index=True)
    spender_address: Mapped[str] = mapped_column(AddressType, nullable=False)
    value: Mapped[str] = mapped_column(Uint256Type, nullable=False)

    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
