"""Add block range tracking.

Revision ID: 20261018_000002
Revises: 20261018_000001
Create Date: 2026-10-18

Adds the schedule frontier to indexing_progress and the table of
sub-ranges completed above the cursor.
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261018_000002"
down_revision = "20261018_000001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Add scheduled_through_block and completed_block_ranges."""
    op.add_column(
        "indexing_progress",
        sa.Column("scheduled_through_block", sa.BigInteger(), nullable=True),
    )
    op.execute(
        "UPDATE indexing_progress SET scheduled_through_block = last_processed_block"
    )

    op.create_table(
        "completed_block_ranges",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("contract_address", sa.String(length=42), nullable=False),
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("from_block", sa.BigInteger(), nullable=False),
        sa.Column("to_block", sa.BigInteger(), nullable=False),
        sa.Column(
            "completed_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_completed_block_ranges"),
        sa.UniqueConstraint(
            "contract_address",
            "chain_id",
            "from_block",
            name="uq_completed_block_ranges_contract_address_chain_id_from_block",
        ),
    )
    op.create_index(
        "ix_completed_block_ranges_contract_chain",
        "completed_block_ranges",
        ["contract_address", "chain_id"],
    )


def downgrade() -> None:
    """Drop block range tracking."""
    op.drop_index(
        "ix_completed_block_ranges_contract_chain",
        table_name="completed_block_ranges",
    )
    op.drop_table("completed_block_ranges")
    op.drop_column("indexing_progress", "scheduled_through_block")
