"""Application services — use case orchestration."""

from agentic_marketplace.services.dispatcher import OutboundDispatcher
from agentic_marketplace.services.payment_service import StripePaymentGateway
from agentic_marketplace.services.transaction_service import TransactionService

__all__ = ["OutboundDispatcher", "StripePaymentGateway", "TransactionService"]
