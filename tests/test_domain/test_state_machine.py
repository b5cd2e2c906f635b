"""Tests for the TransactionStateMachine domain guard.

These tests verify that:
    1. All valid transitions are allowed.
    2. All invalid transitions are blocked.
    3. The convenience functions validate_transition / next_status work.
    4. Terminal states allow nothing.
"""

from __future__ import annotations

import pytest
from statemachine.exceptions import TransitionNotAllowed

from agentic_marketplace.domain.exceptions import InvalidStatusError
from agentic_marketplace.domain.state_machine import (
    TransactionStateMachine,
    next_status,
    validate_transition,
)


class TestHappyPath:
    """Test the full happy-path lifecycle: pending -> completed."""

    def test_full_lifecycle(self) -> None:
        sm = TransactionStateMachine("pending")
        assert sm.status == "pending"

        sm.confirm_funding()
        assert sm.status == "escrow_funded"

        sm.seller_delivers()
        assert sm.status == "delivered"

        sm.complete()
        assert sm.status == "completed"

    def test_delivery_without_funding(self) -> None:
        sm = TransactionStateMachine("pending")
        sm.seller_delivers()
        assert sm.status == "delivered"


class TestDisputePath:
    """Test dispute transitions."""

    @pytest.mark.parametrize("status", ["pending", "escrow_funded", "delivered"])
    def test_dispute_opens_before_completion(self, status: str) -> None:
        sm = TransactionStateMachine(status)
        sm.open_dispute()
        assert sm.status == "disputed"

    def test_refund_from_disputed(self) -> None:
        sm = TransactionStateMachine("disputed")
        sm.refund()
        assert sm.status == "refunded"

    def test_resolved_for_seller(self) -> None:
        sm = TransactionStateMachine("disputed")
        sm.resolve_for_seller()
        assert sm.status == "completed"


class TestCancelPath:
    def test_cancel_pending(self) -> None:
        sm = TransactionStateMachine("pending")
        sm.cancel()
        assert sm.status == "cancelled"

    def test_cannot_cancel_after_funding(self) -> None:
        sm = TransactionStateMachine("escrow_funded")
        with pytest.raises(TransitionNotAllowed):
            sm.cancel()


class TestIllegalTransitions:
    """Verify that illegal transitions raise TransitionNotAllowed."""

    def test_pending_to_completed(self) -> None:
        sm = TransactionStateMachine("pending")
        with pytest.raises(TransitionNotAllowed):
            sm.complete()

    def test_refund_requires_dispute(self) -> None:
        sm = TransactionStateMachine("delivered")
        with pytest.raises(TransitionNotAllowed):
            sm.refund()

    def test_cannot_fund_twice(self) -> None:
        sm = TransactionStateMachine("escrow_funded")
        with pytest.raises(TransitionNotAllowed):
            sm.confirm_funding()

    def test_cannot_dispute_completed(self) -> None:
        sm = TransactionStateMachine("completed")
        with pytest.raises(TransitionNotAllowed):
            sm.open_dispute()

    @pytest.mark.parametrize("status", ["completed", "refunded", "cancelled"])
    def test_terminal_states_are_final(self, status: str) -> None:
        sm = TransactionStateMachine(status)
        assert sm.get_allowed_events() == []


class TestAllowedEvents:
    """Test the get_allowed_events helper."""

    def test_pending_allowed(self) -> None:
        sm = TransactionStateMachine("pending")
        assert set(sm.get_allowed_events()) == {
            "confirm_funding",
            "seller_delivers",
            "open_dispute",
            "cancel",
        }

    def test_delivered_allowed(self) -> None:
        sm = TransactionStateMachine("delivered")
        assert set(sm.get_allowed_events()) == {"complete", "open_dispute"}

    def test_disputed_allowed(self) -> None:
        sm = TransactionStateMachine("disputed")
        assert set(sm.get_allowed_events()) == {"refund", "resolve_for_seller"}


class TestValidateTransitionFunction:
    """Test the convenience functions."""

    def test_valid_transition(self) -> None:
        assert validate_transition("escrow_funded", "seller_delivers") == "delivered"

    def test_invalid_event_name(self) -> None:
        with pytest.raises(ValueError, match="Unknown event"):
            validate_transition("pending", "nonexistent_event")

    def test_invalid_status(self) -> None:
        with pytest.raises(ValueError, match="Unknown status"):
            TransactionStateMachine("shipped")

    def test_next_status_raises_domain_error(self) -> None:
        with pytest.raises(InvalidStatusError) as exc_info:
            next_status("completed", "refund")
        assert exc_info.value.current_status == "completed"
        assert exc_info.value.operation == "refund"
