"""Domain enumerations for the Agentic Marketplace.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class TransactionStatus(enum.StrEnum):
    """Lifecycle states of a marketplace transaction.

    State transitions are enforced by the TransactionStateMachine guard.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "pending"
    ESCROW_FUNDED = "escrow_funded"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    REFUNDED = "refunded"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {TransactionStatus.COMPLETED, TransactionStatus.REFUNDED, TransactionStatus.CANCELLED}
)


class EscrowStatus(enum.StrEnum):
    """States of the escrow account that shadows a transaction.

    Escrow status only ever moves together with its transaction.
    """

    PENDING = "pending"
    FUNDED = "funded"
    RELEASED = "released"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class EventType(enum.StrEnum):
    """Domain events handed to the event publisher.

    Values are the wire names consumed by webhooks, sockets and the audit log.
    """

    # Lifecycle events
    TRANSACTION_CREATED = "transaction.created"
    TRANSACTION_ESCROW_FUNDED = "transaction.escrow_funded"
    ESCROW_FUNDED = "escrow.funded"
    TRANSACTION_DELIVERED = "transaction.delivered"
    DELIVERY_CONFIRMED = "delivery.confirmed"
    TRANSACTION_COMPLETED = "transaction.completed"
    TRANSACTION_CANCELLED = "transaction.cancelled"

    # Settlement events
    PAYMENT_RELEASED = "payment.released"
    PAYMENT_CAPTURE_FAILED = "payment.capture_failed"
    PAYMENT_FAILED = "payment.failed"

    # Dispute events
    DISPUTE_OPENED = "dispute.opened"
    TRANSACTION_REFUNDED = "transaction.refunded"

    # Reputation events
    RATING_SUBMITTED = "rating.submitted"


class PartyRole(enum.StrEnum):
    """Which side of a transaction an agent is on."""

    BUYER = "buyer"
    SELLER = "seller"


class OriginKind(enum.StrEnum):
    """Upstream flow that produced a transaction."""

    LISTING = "listing"
    OFFER = "offer"
    AUCTION = "auction"
    TASK = "task"
