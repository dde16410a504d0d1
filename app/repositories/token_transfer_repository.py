"""
Token Transfer repository.

Data access layer for materialized Transfer events.
"""

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.token_transfer import TokenTransfer
from app.repositories.base import BaseRepository


class TokenTransferRepository(BaseRepository[TokenTransfer]):
    """Repository for token transfers."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(TokenTransfer, session)

    async def event_exists(self, transaction_hash: str, log_index: int) -> bool:
        """
        Check if the event with this natural key is already materialized.

        Args:
            transaction_hash: Transaction hash
            log_index: Log index within the block

        Returns:
            True if present
        """
        return await self.exists(
            transaction_hash=transaction_hash.lower(), log_index=log_index
        )

    async def get_history(
        self,
        contract_address: str,
        holder: str | None = None,
        limit: int = 100,
    ) -> list[TokenTransfer]:
        """
        Get transfers of a contract, newest first.

        Args:
            contract_address: Contract address
            holder: Optional address on either side of the transfer
            limit: Max results

        Returns:
            List of transfers
        """
        conditions = [TokenTransfer.contract_address == contract_address.lower()]
        if holder:
            addr = holder.lower()
            conditions.append(
                or_(
                    TokenTransfer.from_address == addr,
                    TokenTransfer.to_address == addr,
                )
            )

        query = (
            select(TokenTransfer)
            .where(*conditions)
            .order_by(TokenTransfer.block_number.desc(), TokenTransfer.log_index.desc())
            .limit(limit)
        )

        result = await self.session.execute(query)
        return list(result.scalars().all())
