"""Ticket and Trade State Machine Guards.

Uses python-statemachine to enforce legal state transitions at the domain level.
No matter what the API or the lifecycle service asks for, an illegal transition
(e.g., OPEN -> CLOSED) raises TransitionNotAllowed before the ORM row is touched.

The machines are instantiated per-row at the row's current status and validate
a transition before the status column is updated.

Ticket transition table:
    OPEN       -> CLAIMED      (claim)
    CLAIMED    -> CONFIRMED    (confirm_trades)
    CONFIRMED  -> CLOSED       (close)

Trade transition table:
    PENDING    -> ACTIVE       (confirm)
    ACTIVE     -> ACTIVE       (confirm, already armed)
    PENDING    -> PENDING      (reset)
    ACTIVE     -> PENDING      (reset)
    ACTIVE     -> COMPLETED    (complete)
    PENDING    -> CANCELLED    (cancel)
    ACTIVE     -> CANCELLED    (cancel)
"""

from __future__ import annotations

from statemachine import State, StateMachine


class _StatusMachine(StateMachine):
    """Shared construction for machines that start at a persisted status."""

    def __init__(self, current_status: str | None = None) -> None:
        """Initialize the state machine at a given status.

        Args:
            current_status: The current status value (e.g., "CLAIMED").
                           Must match one of the State value strings exactly.
        """
        if current_status is None:
            current_status = next(s.value for s in self.states if s.initial)
        valid_values = {s.value for s in self.states}
        if current_status not in valid_values:
            valid = ", ".join(sorted(valid_values))
            raise ValueError(
                f"Unknown status '{current_status}'. Valid states: {valid}"
            )
        # start_value expects the string value, not the State object
        super().__init__(start_value=current_status)

    @property
    def status(self) -> str:
        """Return the current state value as a string (matches the status enum)."""
        return str(self.current_state.value)

    def get_allowed_events(self) -> list[str]:
        """Return a list of event names that can fire from the current state."""
        # Newer releases keep the identifier on `id` and a humanized `name`
        return [getattr(event, "id", None) or event.name for event in self.allowed_events]


class TicketStateMachine(_StatusMachine):
    """State machine that guards ticket lifecycle transitions.

    Usage:
        sm = TicketStateMachine(current_status="CLAIMED")
        sm.confirm_trades()  # transitions to CONFIRMED
        sm.status            # "CONFIRMED"
    """

    # --- States ---
    OPEN = State("OPEN", initial=True)
    CLAIMED = State("CLAIMED")
    CONFIRMED = State("CONFIRMED")
    CLOSED = State("CLOSED", final=True)

    # --- Events / Transitions ---
    claim = OPEN.to(CLAIMED)
    confirm_trades = CLAIMED.to(CONFIRMED)
    close = CONFIRMED.to(CLOSED)


class TradeStateMachine(_StatusMachine):
    """State machine that guards one party's trade.

    Usage:
        sm = TradeStateMachine(current_status="PENDING")
        sm.confirm()   # transitions to ACTIVE
        sm.reset()     # back to PENDING
    """

    # --- States ---
    PENDING = State("PENDING", initial=True)
    ACTIVE = State("ACTIVE")
    COMPLETED = State("COMPLETED", final=True)
    CANCELLED = State("CANCELLED", final=True)

    # --- Events / Transitions ---
    confirm = PENDING.to(ACTIVE) | ACTIVE.to.itself()
    reset = PENDING.to.itself() | ACTIVE.to(PENDING)
    complete = ACTIVE.to(COMPLETED)
    cancel = PENDING.to(CANCELLED) | ACTIVE.to(CANCELLED)


def validate_transition(
    current_status: str,
    event_name: str,
    machine: type[_StatusMachine] = TicketStateMachine,
) -> str:
    """Validate a state transition and return the new status.

    Creates a temporary state machine, fires the named event, and returns the
    resulting status string.

    Args:
        current_status: Current status value.
        event_name: The event to fire (e.g., "claim").
        machine: Which machine to validate against (ticket by default).

    Returns:
        The new status string after the transition.

    Raises:
        TransitionNotAllowed: If the transition is illegal.
        ValueError: If the status or event name is invalid.
    """
    sm = machine(current_status=current_status)

    # Get the event method from the state machine
    event_method = getattr(sm, event_name, None)
    if event_method is None or not callable(event_method):
        raise ValueError(
            f"Unknown event '{event_name}'. "
            f"Allowed events from {current_status}: {sm.get_allowed_events()}"
        )

    event_method()
    return sm.status
