"""Transaction State Machine Guard.

Uses python-statemachine to enforce legal state transitions at the domain
level. No matter what the API or an upstream flow asks for, an illegal
transition (e.g., pending -> completed) raises TransitionNotAllowed.

The state machine is instantiated per-operation from the persisted status and
only validates; the repository then applies the change with a conditional
UPDATE guarded by the status that was validated here.

Transition table:
    pending        -> escrow_funded   (confirm_funding)
    pending        -> delivered       (seller_delivers)
    escrow_funded  -> delivered       (seller_delivers)
    delivered      -> completed       (complete)
    pending        -> disputed        (open_dispute)
    escrow_funded  -> disputed        (open_dispute)
    delivered      -> disputed        (open_dispute)
    disputed       -> completed       (resolve_for_seller)
    disputed       -> refunded        (refund)
    pending        -> cancelled       (cancel)
"""

from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from agentic_marketplace.domain.exceptions import InvalidStatusError


class TransactionStateMachine(StateMachine):
    """State machine that guards the transaction lifecycle.

    Usage:
        sm = TransactionStateMachine(current_status="escrow_funded")
        sm.seller_delivers()  # transitions to delivered
        sm.status             # "delivered"
    """

    # --- States ---
    pending = State("Pending", value="pending", initial=True)
    escrow_funded = State("Escrow funded", value="escrow_funded")
    delivered = State("Delivered", value="delivered")
    completed = State("Completed", value="completed", final=True)
    disputed = State("Disputed", value="disputed")
    refunded = State("Refunded", value="refunded", final=True)
    cancelled = State("Cancelled", value="cancelled", final=True)

    # --- Events / Transitions ---

    # Funding (payment provider reports funds held)
    confirm_funding = pending.to(escrow_funded)

    # Delivery (seller claims delivery)
    seller_delivers = pending.to(delivered) | escrow_funded.to(delivered)

    # Settlement
    complete = delivered.to(completed)

    # Disputes
    open_dispute = (
        pending.to(disputed) | escrow_funded.to(disputed) | delivered.to(disputed)
    )
    resolve_for_seller = disputed.to(completed)
    refund = disputed.to(refunded)

    # Abandonment before any delivery
    cancel = pending.to(cancelled)

    def __init__(self, current_status: str = "pending") -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current TransactionStatus value (e.g., "delivered").
        """
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches TransactionStatus)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        return [event.id for event in self.allowed_events]


def validate_transition(current_status: str, event_name: str) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns the
    resulting status string.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = TransactionStateMachine(current_status=current_status)

    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status


def next_status(current_status: str, event_name: str) -> str:
    """Like validate_transition, but raises the domain InvalidStatusError."""
    try:
        return validate_transition(current_status, event_name)
    except TransitionNotAllowed as err:
        raise InvalidStatusError(current_status, event_name) from err
