"""Tests for the Stripe payment gateway.

Stripe itself is never contacted: simulated mode needs no key, and live mode
is exercised by patching the SDK resource methods.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
import uuid
from decimal import Decimal

import pytest
import stripe
from tenacity import wait_none

from agentic_marketplace.domain.exceptions import PaymentError
from agentic_marketplace.services.payment_service import (
    InvalidWebhookError,
    StripePaymentGateway,
    to_minor_units,
)

WEBHOOK_SECRET = "whsec_test_secret"


def _event(event_type: str, obj: dict) -> bytes:
    return json.dumps({"id": "evt_1", "type": event_type, "data": {"object": obj}}).encode()


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


class TestMinorUnits:
    def test_two_decimal_currency(self) -> None:
        assert to_minor_units(Decimal("12.345"), "usd") == 1235
        assert to_minor_units(Decimal("100"), "EUR") == 10000

    def test_zero_decimal_currency(self) -> None:
        assert to_minor_units(Decimal("1500"), "JPY") == 1500
        assert to_minor_units(Decimal("99.5"), "krw") == 100


class TestSimulatedMode:
    @pytest.mark.asyncio
    async def test_hold_returns_simulated_reference(self) -> None:
        gateway = StripePaymentGateway()
        assert gateway.simulated

        hold = await gateway.create_holdable_payment(
            uuid.uuid4(), uuid.uuid4(), uuid.uuid4(), Decimal("10"), "USD"
        )

        assert hold.provider_ref.startswith("pi_sim_")
        assert hold.client_secret == f"{hold.provider_ref}_secret_sim"

    @pytest.mark.asyncio
    async def test_capture_and_refund_do_not_call_stripe(self, monkeypatch) -> None:
        def fail(*args, **kwargs):
            raise AssertionError("Stripe must not be called in simulated mode")

        monkeypatch.setattr(stripe.PaymentIntent, "capture", fail)
        monkeypatch.setattr(stripe.PaymentIntent, "retrieve", fail)

        gateway = StripePaymentGateway()
        await gateway.capture("pi_sim_abc")
        await gateway.refund("pi_sim_abc")


class TestLiveMode:
    @pytest.mark.asyncio
    async def test_hold_is_manual_capture_intent(self, monkeypatch) -> None:
        calls = []

        def fake_create(**kwargs):
            calls.append(kwargs)
            return {"id": "pi_live_1", "client_secret": "pi_live_1_secret"}

        monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
        gateway = StripePaymentGateway(secret_key="sk_test_123")
        tx_id = uuid.uuid4()

        hold = await gateway.create_holdable_payment(
            tx_id, uuid.uuid4(), uuid.uuid4(), Decimal("25.50"), "USD"
        )

        assert hold.provider_ref == "pi_live_1"
        [kwargs] = calls
        assert kwargs["amount"] == 2550
        assert kwargs["currency"] == "usd"
        assert kwargs["capture_method"] == "manual"
        assert kwargs["api_key"] == "sk_test_123"
        assert kwargs["metadata"]["transaction_id"] == str(tx_id)

    @pytest.mark.asyncio
    async def test_refund_cancels_uncaptured_hold(self, monkeypatch) -> None:
        cancelled = []
        monkeypatch.setattr(
            stripe.PaymentIntent, "retrieve", lambda ref, **kw: {"id": ref, "status": "requires_capture"}
        )
        monkeypatch.setattr(stripe.PaymentIntent, "cancel", lambda ref, **kw: cancelled.append(ref))

        await StripePaymentGateway(secret_key="sk_test_123").refund("pi_live_1")

        assert cancelled == ["pi_live_1"]

    @pytest.mark.asyncio
    async def test_refund_refunds_captured_payment(self, monkeypatch) -> None:
        refunds = []
        monkeypatch.setattr(
            stripe.PaymentIntent, "retrieve", lambda ref, **kw: {"id": ref, "status": "succeeded"}
        )
        monkeypatch.setattr(stripe.Refund, "create", lambda **kw: refunds.append(kw["payment_intent"]))

        await StripePaymentGateway(secret_key="sk_test_123").refund("pi_live_1")

        assert refunds == ["pi_live_1"]

    @pytest.mark.asyncio
    async def test_stripe_error_becomes_payment_error(self, monkeypatch) -> None:
        def declined(ref, **kwargs):
            raise stripe.StripeError("Your card was declined.")

        monkeypatch.setattr(stripe.PaymentIntent, "capture", declined)

        with pytest.raises(PaymentError) as exc_info:
            await StripePaymentGateway(secret_key="sk_test_123").capture("pi_live_1")
        assert exc_info.value.provider_ref == "pi_live_1"

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self, monkeypatch) -> None:
        monkeypatch.setattr(
            StripePaymentGateway,
            "_request",
            StripePaymentGateway._request.retry_with(wait=wait_none()),
        )
        attempts = []

        def flaky(ref, **kwargs):
            attempts.append(ref)
            if len(attempts) < 3:
                raise stripe.APIConnectionError("connection reset")
            return {"id": ref, "status": "succeeded"}

        monkeypatch.setattr(stripe.PaymentIntent, "capture", flaky)

        await StripePaymentGateway(secret_key="sk_test_123").capture("pi_live_1")

        assert attempts == ["pi_live_1"] * 3

    @pytest.mark.asyncio
    async def test_retries_give_up_with_payment_error(self, monkeypatch) -> None:
        monkeypatch.setattr(
            StripePaymentGateway,
            "_request",
            StripePaymentGateway._request.retry_with(wait=wait_none()),
        )
        attempts = []

        def throttled(ref, **kwargs):
            attempts.append(ref)
            raise stripe.RateLimitError("too many requests")

        monkeypatch.setattr(stripe.PaymentIntent, "capture", throttled)

        with pytest.raises(PaymentError):
            await StripePaymentGateway(secret_key="sk_test_123").capture("pi_live_1")
        assert len(attempts) == 3


class TestParseWebhook:
    def test_unsigned_when_no_secret(self) -> None:
        gateway = StripePaymentGateway()
        event = gateway.parse_webhook(
            _event("payment_intent.succeeded", {"id": "pi_1"}), signature=None
        )
        assert event == {
            "id": "evt_1",
            "type": "payment_intent.succeeded",
            "object": {"id": "pi_1"},
        }

    @pytest.mark.parametrize("payload", [b"not json", b"[]", b'{"id": "evt_1"}'])
    def test_malformed_payload(self, payload: bytes) -> None:
        with pytest.raises(InvalidWebhookError):
            StripePaymentGateway().parse_webhook(payload, signature=None)

    def test_missing_signature_with_secret(self) -> None:
        gateway = StripePaymentGateway(webhook_secret=WEBHOOK_SECRET)
        with pytest.raises(InvalidWebhookError, match="Missing"):
            gateway.parse_webhook(_event("payment_intent.succeeded", {}), signature=None)

    def test_bad_signature_with_secret(self) -> None:
        gateway = StripePaymentGateway(webhook_secret=WEBHOOK_SECRET)
        payload = _event("payment_intent.succeeded", {})
        with pytest.raises(InvalidWebhookError):
            gateway.parse_webhook(payload, signature=_sign(payload, "whsec_other"))

    def test_valid_signature(self) -> None:
        gateway = StripePaymentGateway(webhook_secret=WEBHOOK_SECRET)
        payload = _event("charge.refunded", {"id": "ch_1", "payment_intent": "pi_1"})

        event = gateway.parse_webhook(payload, signature=_sign(payload))

        assert event["type"] == "charge.refunded"
        assert event["object"]["payment_intent"] == "pi_1"
