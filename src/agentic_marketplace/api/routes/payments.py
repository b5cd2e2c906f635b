"""Payment provider webhook.

Stripe reports the outcome of held payments asynchronously. The PaymentIntent
metadata carries the marketplace transaction id set when escrow was funded.

Handled events:
    payment_intent.amount_capturable_updated  -> confirm escrow funded
    payment_intent.succeeded                  -> confirm escrow funded
    payment_intent.payment_failed             -> payment.failed event
    charge.refunded                           -> refund a disputed transaction

Anything else is acknowledged and ignored so Stripe stops retrying it.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Header, Request

from agentic_marketplace.api.deps import get_payment_gateway, get_transaction_service
from agentic_marketplace.domain.enums import TransactionStatus
from agentic_marketplace.domain.exceptions import PaymentNotConfiguredError, TransactionNotFoundError
from agentic_marketplace.logging_config import get_logger
from agentic_marketplace.schemas.transaction import WebhookAck
from agentic_marketplace.services.payment_service import StripePaymentGateway
from agentic_marketplace.services.transaction_service import TransactionService

router = APIRouter(prefix="/api/v1/payments", tags=["Payments"])
logger = get_logger(__name__)

FUNDED_EVENTS = frozenset(
    {"payment_intent.amount_capturable_updated", "payment_intent.succeeded"}
)


def _transaction_id(obj: dict[str, Any]) -> uuid.UUID | None:
    raw = (obj.get("metadata") or {}).get("transaction_id")
    if not raw:
        return None
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        return None


@router.post(
    "/webhook",
    response_model=WebhookAck,
    summary="Stripe webhook",
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    gateway: StripePaymentGateway | None = Depends(get_payment_gateway),
    svc: TransactionService = Depends(get_transaction_service),
) -> WebhookAck:
    if gateway is None:
        raise PaymentNotConfiguredError()

    event = gateway.parse_webhook(await request.body(), stripe_signature)
    event_type = event["type"]
    obj = event["object"]
    log = logger.bind(stripe_event_id=event["id"], event_type=event_type)

    if event_type not in FUNDED_EVENTS | {"payment_intent.payment_failed", "charge.refunded"}:
        log.debug("payments.webhook_ignored")
        return WebhookAck(event_type=event_type, action="ignored")

    transaction_id = _transaction_id(obj)
    if transaction_id is None:
        log.warning("payments.webhook_without_transaction")
        return WebhookAck(event_type=event_type, action="ignored")

    try:
        transaction = await svc.get_transaction(transaction_id)
    except TransactionNotFoundError:
        log.warning("payments.webhook_unknown_transaction", transaction_id=str(transaction_id))
        return WebhookAck(event_type=event_type, action="unknown_transaction")

    if event_type in FUNDED_EVENTS:
        if transaction.status != TransactionStatus.PENDING:
            log.info("payments.funding_already_recorded", status=transaction.status)
            return WebhookAck(event_type=event_type, action="skipped")
        await svc.confirm_escrow_funded(transaction_id, payment_ref=obj.get("id", ""))
        return WebhookAck(event_type=event_type, action="escrow_funded")

    if event_type == "payment_intent.payment_failed":
        reason = (obj.get("last_payment_error") or {}).get("message") or "payment failed"
        await svc.publish_payment_failed(transaction_id, payment_ref=obj.get("id", ""), reason=reason)
        return WebhookAck(event_type=event_type, action="payment_failed")

    # charge.refunded: the provider already returned the money.
    if transaction.status != TransactionStatus.DISPUTED:
        log.warning("payments.refund_outside_dispute", status=transaction.status)
        return WebhookAck(event_type=event_type, action="skipped")
    await svc.refund_transaction(transaction_id, issue_provider_refund=False)
    return WebhookAck(event_type=event_type, action="refunded")
