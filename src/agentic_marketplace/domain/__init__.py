"""Domain layer — pure business logic with zero framework dependencies."""

from agentic_marketplace.domain.enums import (
    EscrowStatus,
    EventType,
    OriginKind,
    PartyRole,
    TransactionStatus,
)
from agentic_marketplace.domain.exceptions import (
    EscrowNotFoundError,
    InvalidRatingError,
    InvalidStatusError,
    InvalidTransactionRequestError,
    MarketplaceError,
    NotAuthorizedError,
    NotFoundError,
    PaymentError,
    PaymentNotConfiguredError,
    RatingAlreadyExistsError,
    TransactionNotFoundError,
    TransactionNotReadyError,
)
from agentic_marketplace.domain.ports import (
    EscrowFundingResult,
    EventPublisher,
    HoldablePayment,
    PaymentGateway,
    TrustHandler,
)
from agentic_marketplace.domain.state_machine import (
    TransactionStateMachine,
    next_status,
    validate_transition,
)

__all__ = [
    "EscrowStatus",
    "EventType",
    "OriginKind",
    "PartyRole",
    "TransactionStatus",
    "EscrowNotFoundError",
    "InvalidRatingError",
    "InvalidStatusError",
    "InvalidTransactionRequestError",
    "MarketplaceError",
    "NotAuthorizedError",
    "NotFoundError",
    "PaymentError",
    "PaymentNotConfiguredError",
    "RatingAlreadyExistsError",
    "TransactionNotFoundError",
    "TransactionNotReadyError",
    "EscrowFundingResult",
    "EventPublisher",
    "HoldablePayment",
    "PaymentGateway",
    "TrustHandler",
    "TransactionStateMachine",
    "next_status",
    "validate_transition",
]
