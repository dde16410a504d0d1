"""Create indexer tables.

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18

Creates the sync cursor table, the materialized Transfer and Approval
stores and the failed event audit trail.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261018_000001"
down_revision = None
branch_labels = None
depends_on = None


def _event_columns() -> list[sa.Column]:
    """Columns shared by the materialized event tables."""
    return [
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        # Natural key
        sa.Column("transaction_hash", sa.String(length=66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        # Position
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("block_hash", sa.String(length=66), nullable=False),
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("contract_address", sa.String(length=42), nullable=False),
    ]


def upgrade() -> None:
    """Create indexing_progress, token_transfers, token_approvals, failed_events."""
    op.create_table(
        "indexing_progress",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("contract_address", sa.String(length=42), nullable=False),
        sa.Column("chain_id", sa.Integer(), nullable=False),
        # Cursor
        sa.Column("last_processed_block", sa.BigInteger(), nullable=False),
        sa.Column("sync_start_block", sa.BigInteger(), nullable=False),
        # Sync status
        sa.Column("is_syncing", sa.Boolean(), nullable=False),
        sa.Column("sync_state", sa.String(length=20), nullable=False),
        sa.Column("total_events_processed", sa.BigInteger(), nullable=False),
        # Error tracking
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("error_count", sa.Integer(), nullable=False),
        # Timestamps
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_indexing_progress"),
        sa.UniqueConstraint(
            "contract_address",
            "chain_id",
            name="uq_indexing_progress_contract_address_chain_id",
        ),
    )
    op.create_index(
        "ix_indexing_progress_contract_address",
        "indexing_progress",
        ["contract_address"],
    )
    op.create_index(
        "ix_indexing_progress_is_syncing", "indexing_progress", ["is_syncing"]
    )

    op.create_table(
        "token_transfers",
        *_event_columns(),
        sa.Column("from_address", sa.String(length=42), nullable=False),
        sa.Column("to_address", sa.String(length=42), nullable=False),
        sa.Column("value", sa.String(length=78), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_token_transfers"),
        sa.UniqueConstraint(
            "transaction_hash",
            "log_index",
            name="uq_token_transfers_transaction_hash_log_index",
        ),
    )
    op.create_index(
        "ix_token_transfers_contract_block",
        "token_transfers",
        ["contract_address", "block_number"],
    )
    op.create_index("ix_token_transfers_from_address", "token_transfers", ["from_address"])
    op.create_index("ix_token_transfers_to_address", "token_transfers", ["to_address"])

    op.create_table(
        "token_approvals",
        *_event_columns(),
        sa.Column("owner_address", sa.String(length=42), nullable=False),
        sa.Column("spender_address", sa.String(length=42), nullable=False),
        sa.Column("value", sa.String(length=78), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_token_approvals"),
        sa.UniqueConstraint(
            "transaction_hash",
            "log_index",
            name="uq_token_approvals_transaction_hash_log_index",
        ),
    )
    op.create_index(
        "ix_token_approvals_contract_block",
        "token_approvals",
        ["contract_address", "block_number"],
    )
    op.create_index(
        "ix_token_approvals_owner_address", "token_approvals", ["owner_address"]
    )

    op.create_table(
        "failed_events",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("contract_address", sa.String(length=42), nullable=False),
        sa.Column("chain_id", sa.Integer(), nullable=False),
        sa.Column("block_number", sa.BigInteger(), nullable=False),
        sa.Column("transaction_hash", sa.String(length=66), nullable=False),
        sa.Column("log_index", sa.Integer(), nullable=False),
        # Raw event as received from the ledger
        sa.Column(
            "event_data",
            sa.JSON().with_variant(postgresql.JSONB(), "postgresql"),
            nullable=False,
        ),
        sa.Column("error_message", sa.Text(), nullable=False),
        # Retry bookkeeping
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("last_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id", name="pk_failed_events"),
        sa.UniqueConstraint(
            "contract_address",
            "chain_id",
            "transaction_hash",
            "log_index",
            name="uq_failed_events_event",
        ),
    )
    op.create_index(
        "ix_failed_events_contract_chain",
        "failed_events",
        ["contract_address", "chain_id"],
    )
    op.create_index("ix_failed_events_resolved_at", "failed_events", ["resolved_at"])
    op.create_index("ix_failed_events_created_at", "failed_events", ["created_at"])


def downgrade() -> None:
    """Drop indexer tables."""
    op.drop_table("failed_events")
    op.drop_table("token_approvals")
    op.drop_table("token_transfers")
    op.drop_table("indexing_progress")
