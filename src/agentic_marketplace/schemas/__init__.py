"""Pydantic API schemas."""

from agentic_marketplace.schemas.transaction import (
    CancelRequest,
    CreateTransactionRequest,
    DeliverRequest,
    DisputeRequest,
    EscrowResponse,
    FundingResponse,
    HealthResponse,
    RatingRequest,
    RatingResponse,
    RefundRequest,
    TransactionListResponse,
    TransactionResponse,
    TransactionStatusResponse,
    WebhookAck,
)

__all__ = [
    "CancelRequest",
    "CreateTransactionRequest",
    "DeliverRequest",
    "DisputeRequest",
    "EscrowResponse",
    "FundingResponse",
    "HealthResponse",
    "RatingRequest",
    "RatingResponse",
    "RefundRequest",
    "TransactionListResponse",
    "TransactionResponse",
    "TransactionStatusResponse",
    "WebhookAck",
]
