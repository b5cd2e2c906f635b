"""Domain exceptions for the Agentic Marketplace.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""


class MarketplaceError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "MARKETPLACE_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- Lookup Errors ---


class NotFoundError(MarketplaceError):
    """Base for records that do not exist."""


class TransactionNotFoundError(NotFoundError):
    """Raised when a transaction ID does not exist."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message=f"Transaction not found: {transaction_id}",
            code="TRANSACTION_NOT_FOUND",
        )
        self.transaction_id = transaction_id


class EscrowNotFoundError(NotFoundError):
    """Raised when a transaction has no escrow account."""

    def __init__(self, transaction_id: str) -> None:
        super().__init__(
            message=f"Escrow account not found for transaction: {transaction_id}",
            code="ESCROW_NOT_FOUND",
        )
        self.transaction_id = transaction_id


# --- State Machine Errors ---


class InvalidStatusError(MarketplaceError):
    """Raised when an operation is illegal for the transaction's current status.

    Also raised when a conditional status update loses a race: the row was
    moved out of the expected status by a concurrent caller.
    """

    def __init__(self, current_status: str, operation: str) -> None:
        super().__init__(
            message=f"Operation '{operation}' not allowed in status '{current_status}'",
            code="INVALID_STATUS",
        )
        self.current_status = current_status
        self.operation = operation


class TransactionNotReadyError(MarketplaceError):
    """Raised when a rating is attempted before delivery."""

    def __init__(self, transaction_id: str, current_status: str) -> None:
        super().__init__(
            message=(
                f"Transaction {transaction_id} is not ready for rating "
                f"(status: {current_status})"
            ),
            code="TRANSACTION_NOT_READY",
        )
        self.current_status = current_status


# --- Authorization Errors ---


class NotAuthorizedError(MarketplaceError):
    """Raised when the caller is not the party the operation requires."""

    def __init__(self, agent_id: str, operation: str) -> None:
        super().__init__(
            message=f"Agent {agent_id} is not authorized to {operation}",
            code="NOT_AUTHORIZED",
        )
        self.agent_id = agent_id
        self.operation = operation


# --- Validation Errors ---


class InvalidTransactionRequestError(MarketplaceError):
    """Raised when an upstream flow hands over an inconsistent trade."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_TRANSACTION_REQUEST")


class InvalidRatingError(MarketplaceError):
    """Raised when a rating score is outside 1..5."""

    def __init__(self, score: int) -> None:
        super().__init__(
            message=f"Rating score must be between 1 and 5, got {score}",
            code="INVALID_RATING",
        )
        self.score = score


class RatingAlreadyExistsError(MarketplaceError):
    """Raised when a party rates the same transaction twice."""

    def __init__(self, transaction_id: str, rater_id: str) -> None:
        super().__init__(
            message=f"Agent {rater_id} has already rated transaction {transaction_id}",
            code="RATING_ALREADY_EXISTS",
        )


# --- Payment Errors ---


class PaymentError(MarketplaceError):
    """Raised when a payment-provider operation fails."""

    def __init__(self, message: str, provider_ref: str | None = None) -> None:
        super().__init__(message=message, code="PAYMENT_ERROR")
        self.provider_ref = provider_ref


class PaymentNotConfiguredError(MarketplaceError):
    """Raised when escrow funding is requested without a payment gateway."""

    def __init__(self) -> None:
        super().__init__(
            message="Payment gateway is not configured",
            code="PAYMENT_NOT_CONFIGURED",
        )
