"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Every status change goes through ``compare_and_set``: a single
``UPDATE ... WHERE id = ? AND status IN (...)`` whose affected-row count tells
the caller whether it won. Services never write a status they only read.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError

from agentic_marketplace.domain.enums import EscrowStatus, PartyRole
from agentic_marketplace.infrastructure.database.orm_models import (
    AgentReputation,
    EscrowAccount,
    Rating,
    Transaction,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from agentic_marketplace.domain.enums import TransactionStatus
    from agentic_marketplace.domain.origin import TransactionOrigin

FEE_QUANTUM = Decimal("0.00000001")
RATING_QUANTUM = Decimal("0.01")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TransactionRepository:
    """Data access for transactions."""

    def __init__(self, session: AsyncSession, platform_fee_percent: Decimal = Decimal("0")) -> None:
        self._session = session
        self._platform_fee_percent = platform_fee_percent

    async def create(
        self,
        buyer_id: uuid.UUID,
        seller_id: uuid.UUID,
        amount: Decimal,
        currency: str,
        origin: TransactionOrigin,
        metadata: dict | None = None,
        status: TransactionStatus | str = "pending",
    ) -> Transaction:
        """Insert a new transaction, computing its platform fee."""
        transaction = Transaction(
            buyer_id=buyer_id,
            seller_id=seller_id,
            amount=amount,
            currency=currency,
            platform_fee=(amount * self._platform_fee_percent).quantize(FEE_QUANTUM),
            status=str(status),
            metadata_json=dict(metadata or {}),
            **origin.as_columns(),
        )
        self._session.add(transaction)
        await self._session.flush()
        return transaction

    async def get_by_id(self, transaction_id: uuid.UUID) -> Transaction | None:
        """Fetch a transaction by its UUID, always reading the stored row."""
        return await self._session.get(Transaction, transaction_id, populate_existing=True)

    async def list_filtered(
        self,
        agent_id: uuid.UUID | None = None,
        role: PartyRole | None = None,
        status: TransactionStatus | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Transaction], int]:
        """Filtered page of transactions, newest first, plus the total count."""
        conditions = []
        if agent_id is not None:
            if role == PartyRole.BUYER:
                conditions.append(Transaction.buyer_id == agent_id)
            elif role == PartyRole.SELLER:
                conditions.append(Transaction.seller_id == agent_id)
            else:
                conditions.append(
                    or_(Transaction.buyer_id == agent_id, Transaction.seller_id == agent_id)
                )
        if status is not None:
            conditions.append(Transaction.status == status.value)

        total = await self._session.scalar(
            select(func.count()).select_from(Transaction).where(*conditions)
        )
        result = await self._session.execute(
            select(Transaction)
            .where(*conditions)
            .order_by(Transaction.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def compare_and_set(
        self,
        transaction_id: uuid.UUID,
        expected: Iterable[TransactionStatus],
        new_status: TransactionStatus | None = None,
        **values: Any,
    ) -> bool:
        """Atomically update a transaction if its status is one of ``expected``.

        Args:
            transaction_id: Row to update.
            expected: Statuses the row must currently be in.
            new_status: Target status, or None to only write ``values``.
            **values: Other mapped attributes to write (e.g. completed_at).

        Returns:
            True if the row was updated, False if it was missing or had moved on.
        """
        changes: dict[Any, Any] = {Transaction.updated_at: _utcnow()}
        if new_status is not None:
            changes[Transaction.status] = new_status.value
        for attr, value in values.items():
            changes[getattr(Transaction, attr)] = value

        result = await self._session.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.status.in_([s.value for s in expected]),
            )
            .values(changes)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class EscrowRepository:
    """Data access for escrow accounts (keyed by transaction id)."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, transaction: Transaction) -> EscrowAccount:
        """Insert the escrow companion of a transaction, mirroring its amount."""
        escrow = EscrowAccount(
            transaction_id=transaction.id,
            amount=transaction.amount,
            currency=transaction.currency,
            status=EscrowStatus.PENDING.value,
        )
        self._session.add(escrow)
        await self._session.flush()
        return escrow

    async def get_by_transaction(self, transaction_id: uuid.UUID) -> EscrowAccount | None:
        result = await self._session.execute(
            select(EscrowAccount)
            .where(EscrowAccount.transaction_id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def compare_and_set(
        self,
        transaction_id: uuid.UUID,
        expected: Iterable[EscrowStatus],
        new_status: EscrowStatus,
    ) -> bool:
        """Move the escrow to ``new_status`` if it is in one of ``expected``.

        Stamps funded_at / released_at when entering those states.
        """
        now = _utcnow()
        changes: dict[Any, Any] = {
            EscrowAccount.status: new_status.value,
            EscrowAccount.updated_at: now,
        }
        if new_status == EscrowStatus.FUNDED:
            changes[EscrowAccount.funded_at] = now
        elif new_status == EscrowStatus.RELEASED:
            changes[EscrowAccount.released_at] = now

        result = await self._session.execute(
            update(EscrowAccount)
            .where(
                EscrowAccount.transaction_id == transaction_id,
                EscrowAccount.status.in_([s.value for s in expected]),
            )
            .values(changes)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_provider_ref(self, transaction_id: uuid.UUID, provider_ref: str) -> bool:
        """Record the payment-provider reference of the held payment."""
        result = await self._session.execute(
            update(EscrowAccount)
            .where(EscrowAccount.transaction_id == transaction_id)
            .values({EscrowAccount.provider_ref: provider_ref, EscrowAccount.updated_at: _utcnow()})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class RatingRepository:
    """Data access for ratings. Append-only."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, rating: Rating) -> Rating:
        """Insert a rating. The (transaction_id, rater_id) pair is unique."""
        self._session.add(rating)
        await self._session.flush()
        return rating

    async def exists(self, transaction_id: uuid.UUID, rater_id: uuid.UUID) -> bool:
        result = await self._session.scalar(
            select(func.count())
            .select_from(Rating)
            .where(Rating.transaction_id == transaction_id, Rating.rater_id == rater_id)
        )
        return bool(result)

    async def get_by_transaction(self, transaction_id: uuid.UUID) -> list[Rating]:
        """Fetch all ratings for a transaction in creation order."""
        result = await self._session.execute(
            select(Rating)
            .where(Rating.transaction_id == transaction_id)
            .order_by(Rating.created_at.asc())
        )
        return list(result.scalars().all())

    async def count_by_transaction(self, transaction_id: uuid.UUID) -> int:
        result = await self._session.scalar(
            select(func.count()).select_from(Rating).where(Rating.transaction_id == transaction_id)
        )
        return int(result or 0)


class AgentReputationRepository:
    """Per-agent trade counters and average rating."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, agent_id: uuid.UUID) -> AgentReputation | None:
        return await self._session.get(AgentReputation, agent_id, populate_existing=True)

    async def increment_trade_stats(self, agent_id: uuid.UUID, successful: bool = True) -> None:
        """Add one trade (and one success) to an agent's counters."""
        changes: dict[Any, Any] = {
            AgentReputation.total_transactions: AgentReputation.total_transactions + 1,
            AgentReputation.updated_at: _utcnow(),
        }
        if successful:
            changes[AgentReputation.successful_trades] = AgentReputation.successful_trades + 1
        await self._update_or_insert(
            agent_id,
            changes,
            AgentReputation(
                agent_id=agent_id,
                total_transactions=1,
                successful_trades=1 if successful else 0,
            ),
        )

    async def recompute_average_rating(self, agent_id: uuid.UUID) -> Decimal:
        """Recompute an agent's average from every rating they received.

        Idempotent: the result depends only on the stored ratings.
        """
        row = (
            await self._session.execute(
                select(func.avg(Rating.score), func.count(Rating.id)).where(
                    Rating.rated_agent_id == agent_id
                )
            )
        ).one()
        raw_avg, count = row
        average = (
            Decimal(str(raw_avg)).quantize(RATING_QUANTUM, rounding=ROUND_HALF_UP)
            if raw_avg is not None
            else Decimal("0.00")
        )
        await self._update_or_insert(
            agent_id,
            {
                AgentReputation.average_rating: average,
                AgentReputation.rating_count: int(count),
                AgentReputation.updated_at: _utcnow(),
            },
            AgentReputation(agent_id=agent_id, average_rating=average, rating_count=int(count)),
        )
        return average

    async def _update_or_insert(
        self,
        agent_id: uuid.UUID,
        changes: dict[Any, Any],
        new_row: AgentReputation,
    ) -> None:
        stmt = (
            update(AgentReputation)
            .where(AgentReputation.agent_id == agent_id)
            .values(changes)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if result.rowcount:
            return
        try:
            async with self._session.begin_nested():
                self._session.add(new_row)
        except IntegrityError:
            # A concurrent caller created the row first
            await self._session.execute(stmt)
