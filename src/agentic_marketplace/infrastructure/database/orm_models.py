"""SQLAlchemy 2.0 ORM models for the Agentic Marketplace.

Four tables:
    1. transactions      — One trade between a buyer agent and a seller agent.
    2. escrow_accounts   — Payment-provider state held 1:1 for a transaction.
    3. ratings           — One party's 1-5 score for one transaction.
    4. agent_reputation  — Per-agent trade counters and average rating.

Design decisions:
    - UUIDs as primary keys (agent-friendly, no sequential leakage).
    - Decimal for money (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for the opaque metadata bag.
    - CHECK constraints on status and score to reject invalid values at DB level.
    - UNIQUE(transaction_id, rater_id) so a party can rate a trade only once.
    - transactions are never deleted; they are the audit trail.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# 1. transactions
# ---------------------------------------------------------------------------
class Transaction(Base):
    """A trade between a buyer agent and a seller agent."""

    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # --- Parties ---
    buyer_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    seller_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    # --- Origin (at most one upstream flow) ---
    listing_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    request_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    offer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    auction_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    task_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # --- Economics ---
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="USD")
    platform_fee: Mapped[Decimal] = mapped_column(
        Numeric(20, 8),
        nullable=False,
        default=Decimal("0"),
        comment="Computed at insert time from the configured fee percentage",
    )

    # --- Status (guarded by TransactionStateMachine) ---
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    # --- Timestamps ---
    delivery_confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    metadata_json: Mapped[dict] = mapped_column(
        "metadata",
        JSONVariant,
        nullable=False,
        default=dict,
        comment="Opaque key/value bag (dispute details, upstream context)",
    )

    # --- Relationships ---
    escrow: Mapped[EscrowAccount | None] = relationship(
        "EscrowAccount",
        back_populates="transaction",
        uselist=False,
        lazy="raise",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'escrow_funded', 'delivered', 'completed', "
            "'disputed', 'refunded', 'cancelled')",
            name="ck_transaction_valid_status",
        ),
        CheckConstraint("amount > 0", name="ck_transaction_positive_amount"),
        CheckConstraint("buyer_id <> seller_id", name="ck_transaction_distinct_parties"),
        Index("idx_transactions_buyer_id", "buyer_id"),
        Index("idx_transactions_seller_id", "seller_id"),
        Index("idx_transactions_status", "status"),
        Index("idx_transactions_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction id={self.id} status={self.status} "
            f"amount={self.amount} {self.currency}>"
        )


# ---------------------------------------------------------------------------
# 2. escrow_accounts
# ---------------------------------------------------------------------------
class EscrowAccount(Base):
    """Held funds for one transaction."""

    __tablename__ = "escrow_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("transactions.id"),
        nullable=False,
        unique=True,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    currency: Mapped[str] = mapped_column(String(10), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")

    funded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )
    provider_ref: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        default=None,
        comment="Payment-provider reference of the held payment",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    transaction: Mapped[Transaction] = relationship(
        "Transaction",
        back_populates="escrow",
        lazy="raise",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'funded', 'released', 'refunded', 'disputed')",
            name="ck_escrow_valid_status",
        ),
        Index("idx_escrow_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<EscrowAccount id={self.id} transaction={self.transaction_id} "
            f"status={self.status}>"
        )


# ---------------------------------------------------------------------------
# 3. ratings
# ---------------------------------------------------------------------------
class Rating(Base):
    """A party's score for a transaction. Immutable once written."""

    __tablename__ = "ratings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("transactions.id"), nullable=False
    )
    rater_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    rated_agent_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        UniqueConstraint("transaction_id", "rater_id", name="uq_rating_transaction_rater"),
        CheckConstraint("score >= 1 AND score <= 5", name="ck_rating_score_range"),
        CheckConstraint("rater_id <> rated_agent_id", name="ck_rating_not_self"),
        Index("idx_ratings_transaction_id", "transaction_id"),
        Index("idx_ratings_rated_agent_id", "rated_agent_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<Rating id={self.id} transaction={self.transaction_id} "
            f"score={self.score}>"
        )


# ---------------------------------------------------------------------------
# 4. agent_reputation
# ---------------------------------------------------------------------------
class AgentReputation(Base):
    """Aggregate trade statistics for one agent."""

    __tablename__ = "agent_reputation"

    agent_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    total_transactions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    successful_trades: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_rating: Mapped[Decimal] = mapped_column(
        Numeric(3, 2), nullable=False, default=Decimal("0")
    )
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<AgentReputation agent={self.agent_id} trades={self.total_transactions} "
            f"rating={self.average_rating}>"
        )

