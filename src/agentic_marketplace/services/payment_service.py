"""Stripe payment gateway.

Escrow on Stripe is a PaymentIntent created with ``capture_method="manual"``:
the buyer authorizes it, the funds stay on hold, and the marketplace either
captures them on completion or cancels/refunds them on dispute.

Operates in simulated mode when no secret key is configured, returning
``pi_sim_*`` references without calling Stripe. The SDK is synchronous, so
every call runs in a worker thread; connection and rate-limit errors are
retried with exponential backoff (tenacity).
"""

from __future__ import annotations

import asyncio
import json
import uuid
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

import stripe
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from agentic_marketplace.domain.exceptions import MarketplaceError, PaymentError
from agentic_marketplace.domain.ports import HoldablePayment
from agentic_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from agentic_marketplace.config import Settings

logger = get_logger(__name__)

# Stripe amounts are in the currency's minor unit, except for these.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA", "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF"}
)


class InvalidWebhookError(MarketplaceError):
    """Webhook body or signature could not be verified."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="INVALID_WEBHOOK")


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a decimal amount to Stripe's integer representation."""
    if currency.upper() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.to_integral_value(rounding=ROUND_HALF_UP))
    return int((amount * 100).to_integral_value(rounding=ROUND_HALF_UP))


class StripePaymentGateway:
    """PaymentGateway implementation backed by Stripe PaymentIntents."""

    def __init__(self, secret_key: str = "", webhook_secret: str = "") -> None:
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self.simulated = not secret_key
        logger.info(
            "payments.gateway_initialized",
            mode="simulated" if self.simulated else ("test" if secret_key.startswith("sk_test_") else "live"),
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> StripePaymentGateway:
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
        )

    # ------------------------------------------------------------------
    # PaymentGateway
    # ------------------------------------------------------------------

    async def create_holdable_payment(
        self,
        transaction_id: uuid.UUID,
        buyer_id: uuid.UUID,
        seller_id: uuid.UUID,
        amount: Decimal,
        currency: str,
    ) -> HoldablePayment:
        """Create a manual-capture PaymentIntent for the transaction amount."""
        if self.simulated:
            ref = f"pi_sim_{uuid.uuid4().hex[:16]}"
            logger.info("payments.simulated_hold_created", transaction_id=str(transaction_id), provider_ref=ref)
            return HoldablePayment(provider_ref=ref, client_secret=f"{ref}_secret_sim")

        intent = await self._call(
            "create_holdable_payment",
            stripe.PaymentIntent.create,
            amount=to_minor_units(amount, currency),
            currency=currency.lower(),
            capture_method="manual",
            idempotency_key=f"hold-{transaction_id}-{uuid.uuid4().hex}",
            metadata={
                "transaction_id": str(transaction_id),
                "buyer_id": str(buyer_id),
                "seller_id": str(seller_id),
            },
        )
        logger.info(
            "payments.hold_created",
            transaction_id=str(transaction_id),
            provider_ref=intent["id"],
        )
        return HoldablePayment(provider_ref=intent["id"], client_secret=intent["client_secret"])

    async def capture(self, provider_ref: str) -> None:
        """Capture a held PaymentIntent, moving the funds to the platform."""
        if self.simulated:
            logger.info("payments.simulated_capture", provider_ref=provider_ref)
            return
        await self._call("capture", stripe.PaymentIntent.capture, provider_ref)
        logger.info("payments.captured", provider_ref=provider_ref)

    async def refund(self, provider_ref: str) -> None:
        """Return the buyer's money.

        An uncaptured intent is cancelled (releasing the hold); a captured one
        is refunded in full.
        """
        if self.simulated:
            logger.info("payments.simulated_refund", provider_ref=provider_ref)
            return
        intent = await self._call("retrieve", stripe.PaymentIntent.retrieve, provider_ref)
        if intent["status"] == "requires_capture":
            await self._call("cancel", stripe.PaymentIntent.cancel, provider_ref)
            logger.info("payments.hold_cancelled", provider_ref=provider_ref)
        else:
            await self._call("refund", stripe.Refund.create, payment_intent=provider_ref)
            logger.info("payments.refunded", provider_ref=provider_ref)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def parse_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify and decode a Stripe webhook body.

        Returns ``{"id", "type", "object"}`` where ``object`` is the event's
        ``data.object`` as a plain dict. Signature verification is skipped
        when no webhook secret is configured.
        """
        if self._webhook_secret:
            if not signature:
                raise InvalidWebhookError("Missing Stripe-Signature header")
            try:
                stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
            except stripe.SignatureVerificationError as exc:
                raise InvalidWebhookError("Invalid Stripe webhook signature") from exc
            except ValueError as exc:
                raise InvalidWebhookError("Malformed webhook payload") from exc
        else:
            logger.warning("payments.webhook_signature_skipped")

        try:
            body = json.loads(payload)
        except ValueError as exc:
            raise InvalidWebhookError("Malformed webhook payload") from exc
        if not isinstance(body, dict) or "type" not in body:
            raise InvalidWebhookError("Webhook payload has no event type")
        return {
            "id": body.get("id"),
            "type": body["type"],
            "object": (body.get("data") or {}).get("object") or {},
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @retry(
        retry=retry_if_exception_type((stripe.APIConnectionError, stripe.RateLimitError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _request(self, func: Any, *args: Any, **kwargs: Any) -> Any:
        """Run one SDK call in a worker thread, retrying transient failures."""
        return await asyncio.to_thread(func, *args, api_key=self._secret_key, **kwargs)

    async def _call(self, operation: str, func: Any, *args: Any, **kwargs: Any) -> Any:
        try:
            return await self._request(func, *args, **kwargs)
        except stripe.StripeError as exc:
            logger.error("payments.provider_error", operation=operation, error=str(exc))
            raise PaymentError(
                f"Stripe {operation} failed: {exc.user_message or exc}",
                provider_ref=args[0] if args and isinstance(args[0], str) else None,
            ) from exc
