"""Tests for domain enumerations."""

from __future__ import annotations

from agentic_marketplace.domain.enums import (
    EscrowStatus,
    EventType,
    PartyRole,
    TransactionStatus,
)


class TestTransactionStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {
            "pending", "escrow_funded", "delivered", "completed",
            "disputed", "refunded", "cancelled",
        }
        actual = {s.value for s in TransactionStatus}
        assert actual == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(TransactionStatus.PENDING, str)
        assert TransactionStatus.PENDING == "pending"

    def test_terminal_statuses(self) -> None:
        terminal = {s for s in TransactionStatus if s.is_terminal}
        assert terminal == {
            TransactionStatus.COMPLETED,
            TransactionStatus.REFUNDED,
            TransactionStatus.CANCELLED,
        }


class TestEscrowStatus:
    def test_all_statuses_exist(self) -> None:
        actual = {s.value for s in EscrowStatus}
        assert actual == {"pending", "funded", "released", "refunded", "disputed"}


class TestEventType:
    def test_all_event_types_exist(self) -> None:
        # 7 lifecycle + 3 settlement + 2 dispute + 1 reputation
        assert len(EventType) == 13

    def test_wire_names(self) -> None:
        assert EventType.TRANSACTION_COMPLETED == "transaction.completed"
        assert EventType.PAYMENT_CAPTURE_FAILED == "payment.capture_failed"
        assert EventType.DISPUTE_OPENED == "dispute.opened"


class TestPartyRole:
    def test_roles(self) -> None:
        assert PartyRole.BUYER == "buyer"
        assert PartyRole.SELLER == "seller"
