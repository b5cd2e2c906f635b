"""Pydantic schemas for the Transaction API.

These schemas define the request/response shapes for the REST API and the
payment webhook. They are separate from the ORM models to maintain clean
boundaries between the API and database layers.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - resolved at runtime by pydantic
from datetime import datetime  # noqa: TC003 - resolved at runtime by pydantic
from decimal import Decimal  # noqa: TC003 - resolved at runtime by pydantic

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class CreateTransactionRequest(BaseModel):
    """Request body used by upstream flows to open a transaction."""

    buyer_id: uuid.UUID = Field(..., description="Agent paying for the trade")
    seller_id: uuid.UUID = Field(..., description="Agent delivering the trade")
    amount: Decimal = Field(
        ...,
        gt=0,
        max_digits=20,
        decimal_places=8,
        description="Trade amount in the given currency",
        examples=["100.00"],
    )
    currency: str | None = Field(
        default=None,
        min_length=3,
        max_length=10,
        description="ISO currency code; defaults to the configured currency",
        examples=["USD"],
    )
    listing_id: uuid.UUID | None = None
    request_id: uuid.UUID | None = None
    offer_id: uuid.UUID | None = None
    auction_id: uuid.UUID | None = None
    task_id: uuid.UUID | None = None
    metadata: dict | None = Field(
        default=None,
        description="Opaque key/value context carried with the transaction",
    )


class DeliverRequest(BaseModel):
    """Request body for a seller marking a transaction delivered."""

    proof: str = Field(
        default="",
        max_length=10_000,
        description="Delivery proof (link, hash, tracking number); passed through untouched",
    )
    message: str = Field(default="", max_length=5000, description="Note for the buyer")


class RatingRequest(BaseModel):
    """Request body for rating the counterparty."""

    score: int = Field(..., description="Score from 1 (worst) to 5 (best)", examples=[5])
    comment: str = Field(default="", max_length=2000)


class DisputeRequest(BaseModel):
    """Request body for opening a dispute."""

    reason: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Short reason for triage",
        examples=["not as described"],
    )
    description: str = Field(default="", max_length=5000)


class CancelRequest(BaseModel):
    """Request body for cancelling a pending transaction."""

    reason: str = Field(default="", max_length=500)


class RefundRequest(BaseModel):
    """Operator request body for refunding a disputed transaction."""

    issue_provider_refund: bool = Field(
        default=True,
        description="Refund the held payment at the provider before recording the refund",
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class TransactionResponse(BaseModel):
    """Response schema for a transaction."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    buyer_id: uuid.UUID
    seller_id: uuid.UUID
    listing_id: uuid.UUID | None
    request_id: uuid.UUID | None
    offer_id: uuid.UUID | None
    auction_id: uuid.UUID | None
    task_id: uuid.UUID | None
    amount: Decimal
    currency: str
    platform_fee: Decimal
    status: str
    delivery_confirmed_at: datetime | None
    completed_at: datetime | None
    created_at: datetime
    updated_at: datetime
    metadata: dict = Field(default_factory=dict, validation_alias="metadata_json")


class TransactionListResponse(BaseModel):
    """A page of transactions, newest first."""

    items: list[TransactionResponse]
    total: int
    limit: int
    offset: int


class EscrowResponse(BaseModel):
    """Response schema for an escrow account."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    amount: Decimal
    currency: str
    status: str
    funded_at: datetime | None
    released_at: datetime | None
    provider_ref: str | None
    created_at: datetime
    updated_at: datetime


class FundingResponse(BaseModel):
    """What the buyer needs to authorize the held payment."""

    model_config = ConfigDict(from_attributes=True)

    transaction_id: uuid.UUID
    payment_ref: str
    client_secret: str
    amount: Decimal
    currency: str


class RatingResponse(BaseModel):
    """Response schema for a rating."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    transaction_id: uuid.UUID
    rater_id: uuid.UUID
    rated_agent_id: uuid.UUID
    score: int
    comment: str | None
    created_at: datetime


class TransactionStatusResponse(BaseModel):
    """Lightweight status check response."""

    transaction_id: uuid.UUID
    status: str
    is_terminal: bool
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment provider."""

    received: bool = True
    event_type: str
    action: str = Field(description="What the marketplace did with the event")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    dispatcher: dict[str, int] = Field(default_factory=dict)
