"""Collaborator ports for the transaction engine.

The payment gateway, trust handler and event publisher are external
collaborators. They are Protocols (structural subtyping) so concrete adapters
don't need to inherit from anything; they just need to match the shape.

The domain layer has ZERO imports from Stripe, Redis, or any external service.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal


@dataclass(frozen=True)
class HoldablePayment:
    """A payment opened at the provider and held until captured.

    Attributes:
        provider_ref: Provider identifier of the held payment (e.g. "pi_...").
        client_secret: Secret the buyer-side UI needs to complete funding.
    """

    provider_ref: str
    client_secret: str


@dataclass(frozen=True)
class EscrowFundingResult:
    """What the buyer needs to finish funding escrow."""

    transaction_id: uuid.UUID
    payment_ref: str
    client_secret: str
    amount: Decimal
    currency: str


@runtime_checkable
class PaymentGateway(Protocol):
    """Payment provider contract the engine relies on.

    Implementations raise PaymentError when the provider rejects a call.
    """

    async def create_holdable_payment(
        self,
        transaction_id: uuid.UUID,
        buyer_id: uuid.UUID,
        seller_id: uuid.UUID,
        amount: Decimal,
        currency: str,
    ) -> HoldablePayment:
        """Open a manual-capture payment for the given amount."""
        ...

    async def capture(self, provider_ref: str) -> None:
        """Release previously held funds to the seller."""
        ...

    async def refund(self, provider_ref: str) -> None:
        """Return funds to the buyer (or drop an uncaptured hold)."""
        ...


@runtime_checkable
class TrustHandler(Protocol):
    """Reputation subsystem notified of completed trades and received ratings.

    Both calls are advisory; they run off the caller's path.
    """

    async def on_transaction_completed(
        self, agent_id: uuid.UUID, transaction_id: uuid.UUID
    ) -> None: ...

    async def on_rating_received(
        self, agent_id: uuid.UUID, score: int, transaction_id: uuid.UUID
    ) -> None: ...


@runtime_checkable
class EventPublisher(Protocol):
    """Downstream notification sink (webhooks, sockets, audit log)."""

    async def publish(self, event_type: str, payload: dict[str, Any]) -> None:
        """Deliver one event. The payload is a flat map of JSON scalars."""
        ...
