"""Create transactions, escrow_accounts, ratings and agent_reputation tables.

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("buyer_id", sa.Uuid(), nullable=False),
        sa.Column("seller_id", sa.Uuid(), nullable=False),
        sa.Column("listing_id", sa.Uuid(), nullable=True),
        sa.Column("request_id", sa.Uuid(), nullable=True),
        sa.Column("offer_id", sa.Uuid(), nullable=True),
        sa.Column("auction_id", sa.Uuid(), nullable=True),
        sa.Column("task_id", sa.Uuid(), nullable=True),
        sa.Column("amount", sa.Numeric(20, 8), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False, server_default="USD"),
        sa.Column("platform_fee", sa.Numeric(20, 8), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("delivery_confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("metadata", JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.CheckConstraint(
            "status IN ('pending', 'escrow_funded', 'delivered', 'completed', "
            "'disputed', 'refunded', 'cancelled')",
            name="ck_transaction_valid_status",
        ),
        sa.CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        sa.CheckConstraint("buyer_id <> seller_id", name="ck_transaction_distinct_parties"),
    )
    op.create_index("idx_transactions_buyer_id", "transactions", ["buyer_id"])
    op.create_index("idx_transactions_seller_id", "transactions", ["seller_id"])
    op.create_index("idx_transactions_status", "transactions", ["status"])
    op.create_index("idx_transactions_created_at", "transactions", ["created_at"])

    op.create_table(
        "escrow_accounts",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.Uuid(),
            sa.ForeignKey("transactions.id", ondelete="RESTRICT"),
            unique=True,
            nullable=False,
        ),
        sa.Column("amount", sa.Numeric(20, 8), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("funded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("released_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("provider_ref", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "status IN ('pending', 'funded', 'released', 'refunded', 'disputed')",
            name="ck_escrow_valid_status",
        ),
    )
    op.create_index("idx_escrow_status", "escrow_accounts", ["status"])

    op.create_table(
        "ratings",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "transaction_id",
            sa.Uuid(),
            sa.ForeignKey("transactions.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("rater_id", sa.Uuid(), nullable=False),
        sa.Column("rated_agent_id", sa.Uuid(), nullable=False),
        sa.Column("score", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("transaction_id", "rater_id", name="uq_rating_transaction_rater"),
        sa.CheckConstraint("score >= 1 AND score <= 5", name="ck_rating_score_range"),
        sa.CheckConstraint("rater_id <> rated_agent_id", name="ck_rating_not_self"),
    )
    op.create_index("idx_ratings_transaction_id", "ratings", ["transaction_id"])
    op.create_index("idx_ratings_rated_agent_id", "ratings", ["rated_agent_id"])

    op.create_table(
        "agent_reputation",
        sa.Column("agent_id", sa.Uuid(), primary_key=True),
        sa.Column("total_transactions", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_trades", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("average_rating", sa.Numeric(3, 2), nullable=False, server_default="0"),
        sa.Column("rating_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("agent_reputation")
    op.drop_index("idx_ratings_rated_agent_id", table_name="ratings")
    op.drop_index("idx_ratings_transaction_id", table_name="ratings")
    op.drop_table("ratings")
    op.drop_index("idx_escrow_status", table_name="escrow_accounts")
    op.drop_table("escrow_accounts")
    op.drop_index("idx_transactions_created_at", table_name="transactions")
    op.drop_index("idx_transactions_status", table_name="transactions")
    op.drop_index("idx_transactions_seller_id", table_name="transactions")
    op.drop_index("idx_transactions_buyer_id", table_name="transactions")
    op.drop_table("transactions")
