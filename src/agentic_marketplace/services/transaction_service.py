"""Transaction Service — core business logic for the trade lifecycle.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - Repositories (data access, compare-and-set status updates)
    - Payment gateway (hold, capture, refund)
    - Outbound dispatcher (events and trust notifications, after commit)

Every mutating operation is one unit of work: guard the transition, apply it
with a conditional UPDATE, commit, and only then hand notifications to the
dispatcher. A conditional update that matches no row means another caller
changed the transaction first; the operation writes nothing and raises
InvalidStatusError.

Both REST routes and the payment webhook call into this service,
ensuring a single source of truth for all business rules.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, NoReturn

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from agentic_marketplace.config import get_settings
from agentic_marketplace.domain.enums import (
    EscrowStatus,
    EventType,
    PartyRole,
    TransactionStatus,
)
from agentic_marketplace.domain.exceptions import (
    EscrowNotFoundError,
    InvalidRatingError,
    InvalidStatusError,
    InvalidTransactionRequestError,
    NotAuthorizedError,
    PaymentError,
    PaymentNotConfiguredError,
    RatingAlreadyExistsError,
    TransactionNotFoundError,
    TransactionNotReadyError,
)
from agentic_marketplace.domain.origin import TransactionOrigin
from agentic_marketplace.domain.ports import EscrowFundingResult
from agentic_marketplace.domain.state_machine import TransactionStateMachine, next_status
from agentic_marketplace.infrastructure.database.orm_models import (
    EscrowAccount,
    Rating,
    Transaction,
)
from agentic_marketplace.infrastructure.database.repositories import (
    AgentReputationRepository,
    EscrowRepository,
    RatingRepository,
    TransactionRepository,
)
from agentic_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from agentic_marketplace.domain.ports import PaymentGateway, TrustHandler
    from agentic_marketplace.services.dispatcher import OutboundDispatcher

logger = get_logger(__name__)

MIN_RATING = 1
MAX_RATING = 5
RATINGS_FOR_AUTO_COMPLETION = 2

_RATEABLE_STATUSES = frozenset({TransactionStatus.DELIVERED, TransactionStatus.COMPLETED})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _scalar(value: Any) -> Any:
    if isinstance(value, (uuid.UUID, Decimal, datetime)):
        return str(value)
    return value


@dataclass(frozen=True)
class TransactionPage:
    items: list[Transaction]
    total: int
    limit: int
    offset: int


class TransactionService:
    """Manages the transaction and escrow lifecycle.

    Collaborators are optional; ``None`` means "not configured":
        - payment: without it, funding fails and completion skips capture.
        - trust: without it, no reputation callbacks are made.
        - dispatcher: without it, events and trust callbacks are not sent.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        payment: PaymentGateway | None = None,
        trust: TrustHandler | None = None,
        dispatcher: OutboundDispatcher | None = None,
        platform_fee_percent: Decimal | None = None,
    ) -> None:
        if platform_fee_percent is None:
            platform_fee_percent = get_settings().platform_fee_percent
        self._session = session
        self._payment = payment
        self._trust = trust
        self._dispatcher = dispatcher
        self._tx_repo = TransactionRepository(session, platform_fee_percent)
        self._escrow_repo = EscrowRepository(session)
        self._rating_repo = RatingRepository(session)
        self._reputation_repo = AgentReputationRepository(session)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_transaction(
        self,
        buyer_id: uuid.UUID,
        seller_id: uuid.UUID,
        amount: Decimal,
        currency: str | None = None,
        origin: TransactionOrigin | None = None,
        metadata: dict | None = None,
    ) -> Transaction:
        """Create a pending transaction and, best effort, its escrow account."""
        origin = origin or TransactionOrigin()
        if buyer_id == seller_id:
            raise InvalidTransactionRequestError("Buyer and seller must be different agents")
        if amount <= 0:
            raise InvalidTransactionRequestError(f"Amount must be positive, got {amount}")
        origin.validate()
        currency = (currency or get_settings().default_currency).upper()

        transaction = await self._tx_repo.create(
            buyer_id=buyer_id,
            seller_id=seller_id,
            amount=amount,
            currency=currency,
            origin=origin,
            metadata=metadata,
        )

        # A transaction must exist even when its escrow companion does not.
        try:
            async with self._session.begin_nested():
                await self._escrow_repo.create(transaction)
        except SQLAlchemyError as exc:
            logger.warning(
                "escrow.create_failed",
                transaction_id=str(transaction.id),
                error=str(exc),
            )

        await self._session.commit()

        logger.info(
            "transaction.created",
            transaction_id=str(transaction.id),
            amount=str(amount),
            currency=currency,
            origin=origin.kind.value if origin.kind else None,
        )
        self._emit(
            EventType.TRANSACTION_CREATED,
            self._payload(
                transaction,
                origin=origin.kind.value if origin.kind else None,
                **{k: v for k, v in origin.as_columns().items() if v is not None},
            ),
        )
        return transaction

    async def create_from_listing(
        self,
        listing_id: uuid.UUID,
        buyer_id: uuid.UUID,
        seller_id: uuid.UUID,
        amount: Decimal,
        currency: str | None = None,
    ) -> uuid.UUID:
        transaction = await self.create_transaction(
            buyer_id, seller_id, amount, currency, TransactionOrigin(listing_id=listing_id)
        )
        return transaction.id

    async def create_from_offer(
        self,
        request_id: uuid.UUID,
        offer_id: uuid.UUID,
        buyer_id: uuid.UUID,
        seller_id: uuid.UUID,
        amount: Decimal,
        currency: str | None = None,
    ) -> uuid.UUID:
        """Create the transaction for an accepted offer on a request."""
        transaction = await self.create_transaction(
            buyer_id,
            seller_id,
            amount,
            currency,
            TransactionOrigin(request_id=request_id, offer_id=offer_id),
        )
        return transaction.id

    async def create_from_auction(
        self,
        auction_id: uuid.UUID,
        buyer_id: uuid.UUID,
        seller_id: uuid.UUID,
        amount: Decimal,
        currency: str | None = None,
    ) -> uuid.UUID:
        transaction = await self.create_transaction(
            buyer_id, seller_id, amount, currency, TransactionOrigin(auction_id=auction_id)
        )
        return transaction.id

    async def create_from_task(
        self,
        task_id: uuid.UUID,
        buyer_id: uuid.UUID,
        seller_id: uuid.UUID,
        amount: Decimal,
        currency: str | None = None,
    ) -> uuid.UUID:
        transaction = await self.create_transaction(
            buyer_id, seller_id, amount, currency, TransactionOrigin(task_id=task_id)
        )
        return transaction.id

    # ------------------------------------------------------------------
    # Funding
    # ------------------------------------------------------------------

    async def fund_escrow(
        self,
        transaction_id: uuid.UUID,
        buyer_id: uuid.UUID,
    ) -> EscrowFundingResult:
        """Open a held payment at the provider for the buyer to authorize.

        The transaction stays ``pending`` until the provider confirms the
        hold through confirm_escrow_funded.
        """
        transaction = await self._get_transaction_or_raise(transaction_id)
        if transaction.buyer_id != buyer_id:
            raise NotAuthorizedError(str(buyer_id), "fund escrow")
        if transaction.status != TransactionStatus.PENDING:
            raise InvalidStatusError(transaction.status, "fund_escrow")
        if self._payment is None:
            raise PaymentNotConfiguredError()

        escrow = await self._escrow_repo.get_by_transaction(transaction_id)
        if escrow is None:
            logger.warning("escrow.recreated", transaction_id=str(transaction_id))
            escrow = await self._escrow_repo.create(transaction)

        hold = await self._payment.create_holdable_payment(
            transaction_id=transaction.id,
            buyer_id=transaction.buyer_id,
            seller_id=transaction.seller_id,
            amount=transaction.amount,
            currency=transaction.currency,
        )
        await self._escrow_repo.set_provider_ref(transaction_id, hold.provider_ref)
        await self._session.commit()

        logger.info(
            "escrow.funding_started",
            transaction_id=str(transaction_id),
            provider_ref=hold.provider_ref,
        )
        return EscrowFundingResult(
            transaction_id=transaction.id,
            payment_ref=hold.provider_ref,
            client_secret=hold.client_secret,
            amount=transaction.amount,
            currency=transaction.currency,
        )

    async def confirm_escrow_funded(
        self,
        transaction_id: uuid.UUID,
        payment_ref: str,
    ) -> Transaction:
        """Record that the provider holds the buyer's funds."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        await self._transition(transaction, "confirm_funding")
        await self._move_escrow(
            transaction_id, [EscrowStatus.PENDING], EscrowStatus.FUNDED, "confirm_funding"
        )

        escrow = await self._escrow_repo.get_by_transaction(transaction_id)
        if escrow is not None and not escrow.provider_ref and payment_ref:
            await self._escrow_repo.set_provider_ref(transaction_id, payment_ref)

        transaction = await self._commit_and_reload(transaction_id)

        logger.info("escrow.funded", transaction_id=str(transaction_id), payment_ref=payment_ref)
        self._emit(
            EventType.TRANSACTION_ESCROW_FUNDED,
            self._payload(transaction, payment_ref=payment_ref),
        )
        self._emit(
            EventType.ESCROW_FUNDED,
            self._payload(transaction, payment_ref=payment_ref),
        )
        return transaction

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def mark_delivered(
        self,
        transaction_id: uuid.UUID,
        seller_id: uuid.UUID,
        proof: str = "",
        message: str = "",
    ) -> Transaction:
        """Seller claims delivery. Proof and message are passed through untouched."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        if transaction.seller_id != seller_id:
            raise NotAuthorizedError(str(seller_id), "mark delivery")

        await self._transition(transaction, "seller_delivers")
        transaction = await self._commit_and_reload(transaction_id)

        logger.info("transaction.delivered", transaction_id=str(transaction_id))
        self._emit(
            EventType.TRANSACTION_DELIVERED,
            self._payload(transaction, proof=proof, message=message),
        )
        return transaction

    async def confirm_delivery(
        self,
        transaction_id: uuid.UUID,
        buyer_id: uuid.UUID,
    ) -> Transaction:
        """Buyer acknowledges the seller's delivery claim.

        Only legal once the seller has marked the transaction delivered.
        Does not complete the transaction.
        """
        transaction = await self._get_transaction_or_raise(transaction_id)
        if transaction.buyer_id != buyer_id:
            raise NotAuthorizedError(str(buyer_id), "confirm delivery")
        if transaction.status != TransactionStatus.DELIVERED:
            raise InvalidStatusError(transaction.status, "confirm_delivery")

        swapped = await self._tx_repo.compare_and_set(
            transaction_id,
            [TransactionStatus.DELIVERED],
            delivery_confirmed_at=_utcnow(),
        )
        if not swapped:
            await self._lost_race(transaction_id, "confirm_delivery")
        transaction = await self._commit_and_reload(transaction_id)

        logger.info("transaction.delivery_confirmed", transaction_id=str(transaction_id))
        self._emit(
            EventType.DELIVERY_CONFIRMED,
            self._payload(transaction, confirmed_at=transaction.delivery_confirmed_at),
        )
        return transaction

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def complete_transaction(self, transaction_id: uuid.UUID) -> Transaction:
        """Settle a delivered transaction: capture, release escrow, update stats."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        return await self._settle(transaction, "complete")

    async def release_disputed(self, transaction_id: uuid.UUID) -> Transaction:
        """Resolve a dispute in the seller's favour and settle as a completion."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        return await self._settle(transaction, "resolve_for_seller")

    async def _settle(self, transaction: Transaction, event_name: str) -> Transaction:
        transaction_id = transaction.id
        # Status moves first so concurrent callers cannot capture twice.
        await self._transition(transaction, event_name, completed_at=_utcnow())

        capture_ref: str | None = None
        capture_error: PaymentError | None = None
        escrow = await self._escrow_repo.get_by_transaction(transaction_id)
        if escrow is None:
            logger.warning("escrow.missing", transaction_id=str(transaction_id), operation=event_name)
        elif escrow.provider_ref and self._payment is not None:
            capture_ref = escrow.provider_ref
            try:
                await self._payment.capture(capture_ref)
            except PaymentError as exc:
                capture_error = exc
                logger.error(
                    "escrow.capture_failed",
                    transaction_id=str(transaction_id),
                    provider_ref=capture_ref,
                    error=exc.message,
                )

        if capture_ref is not None:
            await self._move_escrow(
                transaction_id,
                [EscrowStatus.PENDING, EscrowStatus.FUNDED, EscrowStatus.DISPUTED],
                EscrowStatus.RELEASED,
                event_name,
            )

        await self._reputation_repo.increment_trade_stats(transaction.buyer_id)
        await self._reputation_repo.increment_trade_stats(transaction.seller_id)

        transaction = await self._commit_and_reload(transaction_id)

        logger.info(
            "transaction.completed",
            transaction_id=str(transaction_id),
            captured=capture_ref is not None and capture_error is None,
        )
        for agent_id in (transaction.buyer_id, transaction.seller_id):
            self._notify_trust("on_transaction_completed", agent_id, transaction_id)

        if capture_error is not None:
            self._emit(
                EventType.PAYMENT_CAPTURE_FAILED,
                self._payload(transaction, payment_ref=capture_ref, error=capture_error.message),
            )
        self._emit(EventType.TRANSACTION_COMPLETED, self._payload(transaction))
        self._emit(EventType.PAYMENT_RELEASED, self._payload(transaction))
        return transaction

    # ------------------------------------------------------------------
    # Ratings
    # ------------------------------------------------------------------

    async def submit_rating(
        self,
        transaction_id: uuid.UUID,
        rater_id: uuid.UUID,
        score: int,
        comment: str = "",
    ) -> Rating:
        """Record one party's rating of the other.

        When both parties have rated a delivered transaction, it is completed
        automatically.
        """
        if not MIN_RATING <= score <= MAX_RATING:
            raise InvalidRatingError(score)

        transaction = await self._get_transaction_or_raise(transaction_id)
        status_at_rating = TransactionStatus(transaction.status)
        if status_at_rating not in _RATEABLE_STATUSES:
            raise TransactionNotReadyError(str(transaction_id), transaction.status)

        if rater_id == transaction.buyer_id:
            rated_agent_id = transaction.seller_id
        elif rater_id == transaction.seller_id:
            rated_agent_id = transaction.buyer_id
        else:
            raise NotAuthorizedError(str(rater_id), "rate this transaction")

        if await self._rating_repo.exists(transaction_id, rater_id):
            raise RatingAlreadyExistsError(str(transaction_id), str(rater_id))

        rating = Rating(
            transaction_id=transaction_id,
            rater_id=rater_id,
            rated_agent_id=rated_agent_id,
            score=score,
            comment=comment or None,
        )
        try:
            async with self._session.begin_nested():
                await self._rating_repo.create(rating)
        except IntegrityError as err:
            raise RatingAlreadyExistsError(str(transaction_id), str(rater_id)) from err

        average = await self._reputation_repo.recompute_average_rating(rated_agent_id)
        await self._session.commit()
        # Counted after commit so a counterparty rating committed concurrently is seen.
        rating_count = await self._rating_repo.count_by_transaction(transaction_id)

        logger.info(
            "rating.submitted",
            transaction_id=str(transaction_id),
            rated_agent_id=str(rated_agent_id),
            score=score,
            average=str(average),
        )
        self._notify_trust("on_rating_received", rated_agent_id, score, transaction_id)
        self._emit(
            EventType.RATING_SUBMITTED,
            {
                "transaction_id": str(transaction_id),
                "rating_id": str(rating.id),
                "rater_id": str(rater_id),
                "rated_agent_id": str(rated_agent_id),
                "score": score,
            },
        )

        if (
            status_at_rating == TransactionStatus.DELIVERED
            and rating_count >= RATINGS_FOR_AUTO_COMPLETION
        ):
            try:
                await self.complete_transaction(transaction_id)
            except InvalidStatusError as exc:
                logger.info(
                    "transaction.auto_complete_skipped",
                    transaction_id=str(transaction_id),
                    status=exc.current_status,
                )
            else:
                logger.info("transaction.auto_completed", transaction_id=str(transaction_id))

        return rating

    # ------------------------------------------------------------------
    # Disputes, refunds and cancellation
    # ------------------------------------------------------------------

    async def dispute_transaction(
        self,
        transaction_id: uuid.UUID,
        party_id: uuid.UUID,
        reason: str,
        description: str = "",
    ) -> Transaction:
        """Either party halts the trade for operator triage."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        self._require_party(transaction, party_id, "dispute this transaction")

        metadata = dict(transaction.metadata_json or {})
        metadata["dispute"] = {
            "reason": reason,
            "description": description,
            "opened_by": str(party_id),
            "opened_at": _utcnow().isoformat(),
        }
        await self._transition(transaction, "open_dispute", metadata_json=metadata)
        await self._move_escrow(
            transaction_id,
            [EscrowStatus.PENDING, EscrowStatus.FUNDED],
            EscrowStatus.DISPUTED,
            "open_dispute",
        )
        transaction = await self._commit_and_reload(transaction_id)

        logger.info(
            "transaction.disputed",
            transaction_id=str(transaction_id),
            opened_by=str(party_id),
            reason=reason,
        )
        self._emit(
            EventType.DISPUTE_OPENED,
            self._payload(
                transaction,
                reason=reason,
                description=description,
                opened_by=party_id,
            ),
        )
        return transaction

    async def refund_transaction(
        self,
        transaction_id: uuid.UUID,
        issue_provider_refund: bool = True,
    ) -> Transaction:
        """Return the buyer's money on a disputed transaction.

        Args:
            transaction_id: Transaction to refund.
            issue_provider_refund: Ask the gateway to refund the held payment.
                False when the provider already refunded (webhook path).
        """
        transaction = await self._get_transaction_or_raise(transaction_id)

        await self._transition(transaction, "refund")
        await self._move_escrow(
            transaction_id,
            [EscrowStatus.PENDING, EscrowStatus.FUNDED, EscrowStatus.DISPUTED],
            EscrowStatus.REFUNDED,
            "refund",
        )
        if issue_provider_refund:
            await self._refund_or_rollback(transaction_id)
        transaction = await self._commit_and_reload(transaction_id)

        logger.info(
            "transaction.refunded",
            transaction_id=str(transaction_id),
            provider_refund=issue_provider_refund,
        )
        self._emit(EventType.TRANSACTION_REFUNDED, self._payload(transaction))
        return transaction

    async def cancel_transaction(
        self,
        transaction_id: uuid.UUID,
        party_id: uuid.UUID,
        reason: str = "",
    ) -> Transaction:
        """Abandon a pending transaction, releasing any authorized hold."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        self._require_party(transaction, party_id, "cancel this transaction")

        await self._transition(transaction, "cancel")
        await self._move_escrow(
            transaction_id,
            [EscrowStatus.PENDING, EscrowStatus.FUNDED],
            EscrowStatus.REFUNDED,
            "cancel",
        )
        await self._refund_or_rollback(transaction_id)
        transaction = await self._commit_and_reload(transaction_id)

        logger.info(
            "transaction.cancelled",
            transaction_id=str(transaction_id),
            cancelled_by=str(party_id),
        )
        self._emit(
            EventType.TRANSACTION_CANCELLED,
            self._payload(transaction, cancelled_by=party_id, reason=reason),
        )
        return transaction

    async def publish_payment_failed(
        self,
        transaction_id: uuid.UUID,
        payment_ref: str,
        reason: str,
    ) -> None:
        """Tell downstream consumers the buyer's payment did not go through."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        logger.warning(
            "payment.failed",
            transaction_id=str(transaction_id),
            payment_ref=payment_ref,
            reason=reason,
        )
        self._emit(
            EventType.PAYMENT_FAILED,
            self._payload(transaction, payment_ref=payment_ref, reason=reason),
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_transaction(self, transaction_id: uuid.UUID) -> Transaction:
        """Get a transaction or raise."""
        return await self._get_transaction_or_raise(transaction_id)

    async def get_escrow(self, transaction_id: uuid.UUID) -> EscrowAccount:
        await self._get_transaction_or_raise(transaction_id)
        escrow = await self._escrow_repo.get_by_transaction(transaction_id)
        if escrow is None:
            raise EscrowNotFoundError(str(transaction_id))
        return escrow

    async def list_transactions(
        self,
        agent_id: uuid.UUID | None = None,
        role: PartyRole | None = None,
        status: TransactionStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> TransactionPage:
        """Newest-first page of transactions, optionally for one agent."""
        settings = get_settings()
        if limit is None or limit <= 0:
            limit = settings.default_page_size
        limit = min(limit, settings.max_page_size)
        offset = max(offset, 0)
        items, total = await self._tx_repo.list_filtered(
            agent_id=agent_id, role=role, status=status, limit=limit, offset=offset
        )
        return TransactionPage(items=items, total=total, limit=limit, offset=offset)

    async def get_transaction_ratings(self, transaction_id: uuid.UUID) -> list[Rating]:
        await self._get_transaction_or_raise(transaction_id)
        return await self._rating_repo.get_by_transaction(transaction_id)

    async def get_status(self, transaction_id: uuid.UUID) -> dict:
        """Get transaction status with allowed events."""
        transaction = await self._get_transaction_or_raise(transaction_id)
        sm = TransactionStateMachine(current_status=transaction.status)
        return {
            "transaction_id": str(transaction.id),
            "status": transaction.status,
            "is_terminal": TransactionStatus(transaction.status).is_terminal,
            "allowed_events": sm.get_allowed_events(),
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_transaction_or_raise(self, transaction_id: uuid.UUID) -> Transaction:
        transaction = await self._tx_repo.get_by_id(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(str(transaction_id))
        return transaction

    @staticmethod
    def _require_party(
        transaction: Transaction, agent_id: uuid.UUID, operation: str
    ) -> PartyRole:
        if agent_id == transaction.buyer_id:
            return PartyRole.BUYER
        if agent_id == transaction.seller_id:
            return PartyRole.SELLER
        raise NotAuthorizedError(str(agent_id), operation)

    async def _transition(
        self,
        transaction: Transaction,
        event_name: str,
        **values: Any,
    ) -> TransactionStatus:
        """Guard and apply a state machine transition.

        Returns the status the transaction left. Raises InvalidStatusError if
        the transition is illegal or another caller moved the row first.
        """
        current = TransactionStatus(transaction.status)
        target = TransactionStatus(next_status(current.value, event_name))
        swapped = await self._tx_repo.compare_and_set(transaction.id, [current], target, **values)
        if not swapped:
            await self._lost_race(transaction.id, event_name)
        logger.debug(
            "transaction.transition",
            transaction_id=str(transaction.id),
            transition=event_name,
            old_status=current.value,
            new_status=target.value,
        )
        return current

    async def _lost_race(self, transaction_id: uuid.UUID, operation: str) -> NoReturn:
        # The conditional UPDATE is the first write of every operation, so
        # there is nothing of ours to undo here.
        latest = await self._tx_repo.get_by_id(transaction_id)
        current = latest.status if latest is not None else "missing"
        logger.info("transaction.conflict", transaction_id=str(transaction_id), operation=operation, status=current)
        raise InvalidStatusError(current, operation)

    async def _move_escrow(
        self,
        transaction_id: uuid.UUID,
        expected: Iterable[EscrowStatus],
        new_status: EscrowStatus,
        operation: str,
    ) -> None:
        """Move the escrow alongside its transaction; a missing row is tolerated."""
        if await self._escrow_repo.compare_and_set(transaction_id, expected, new_status):
            return
        escrow = await self._escrow_repo.get_by_transaction(transaction_id)
        if escrow is None:
            logger.warning("escrow.missing", transaction_id=str(transaction_id), operation=operation)
        else:
            logger.warning(
                "escrow.status_mismatch",
                transaction_id=str(transaction_id),
                operation=operation,
                escrow_status=escrow.status,
                target=new_status.value,
            )

    async def _refund_at_provider(self, transaction_id: uuid.UUID) -> None:
        escrow = await self._escrow_repo.get_by_transaction(transaction_id)
        if escrow is None or not escrow.provider_ref:
            return
        if self._payment is None:
            raise PaymentNotConfiguredError()
        await self._payment.refund(escrow.provider_ref)

    async def _refund_or_rollback(self, transaction_id: uuid.UUID) -> None:
        """Release the buyer's money once this caller owns the status change.

        Runs after the conditional UPDATE and before commit, so the row stays
        locked while the provider is called. A provider failure undoes the
        status change.
        """
        try:
            await self._refund_at_provider(transaction_id)
        except (PaymentError, PaymentNotConfiguredError):
            await self._session.rollback()
            raise

    async def _commit_and_reload(self, transaction_id: uuid.UUID) -> Transaction:
        await self._session.commit()
        return await self._get_transaction_or_raise(transaction_id)

    @staticmethod
    def _payload(transaction: Transaction, **extra: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "transaction_id": transaction.id,
            "buyer_id": transaction.buyer_id,
            "seller_id": transaction.seller_id,
            "amount": transaction.amount,
            "currency": transaction.currency,
            "status": transaction.status,
        }
        payload.update(extra)
        return {key: _scalar(value) for key, value in payload.items()}

    def _emit(self, event_type: EventType, payload: dict[str, Any]) -> None:
        if self._dispatcher is None:
            return
        self._dispatcher.publish(event_type.value, payload)

    def _notify_trust(self, method: str, *args: Any) -> None:
        if self._trust is None or self._dispatcher is None:
            return
        self._dispatcher.submit(f"trust.{method}", getattr(self._trust, method), *args)
