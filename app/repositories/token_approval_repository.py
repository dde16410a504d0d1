"""
Token Approval repository.

Data access layer for materialized Approval events.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.token_approval import TokenApproval
from app.repositories.base import BaseRepository


class TokenApprovalRepository(BaseRepository[TokenApproval]):
    """Repository for token approvals."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository."""
        super().__init__(TokenApproval, session)

    async def event_exists(self, transaction_hash: str, log_index: int) -> bool:
        """Check if the event with this natural key is already materialized."""
        return await self.exists(
            transaction_hash=transaction_hash.lower(), log_index=log_index
        )
