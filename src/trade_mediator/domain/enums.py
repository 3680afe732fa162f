"""Domain enumerations for the trade mediator.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

from __future__ import annotations

import enum


class TicketStatus(enum.StrEnum):
    """Lifecycle states of a ticket.

    Transitions are enforced by TicketStateMachine.
    See domain/state_machine.py for the transition table.
    """

    OPEN = "OPEN"
    CLAIMED = "CLAIMED"
    CONFIRMED = "CONFIRMED"
    CLOSED = "CLOSED"

    @property
    def is_open(self) -> bool:
        """True for every non-terminal status (counts toward the open-ticket cap)."""
        return self is not TicketStatus.CLOSED

    @property
    def accepts_trade_changes(self) -> bool:
        """Trade data and per-trade confirmations are accepted in OPEN and CLAIMED."""
        return self in (TicketStatus.OPEN, TicketStatus.CLAIMED)


OPEN_TICKET_STATUSES: tuple[TicketStatus, ...] = (
    TicketStatus.OPEN,
    TicketStatus.CLAIMED,
    TicketStatus.CONFIRMED,
)


class TicketType(enum.StrEnum):
    """Category of case a ticket was opened for."""

    BUY = "BUY"
    SELL = "SELL"
    ROBUX = "ROBUX"
    NITRO = "NITRO"
    DECOR = "DECOR"
    MM = "MM"


class TradeStatus(enum.StrEnum):
    """Lifecycle states of one party's trade within a ticket.

    PENDING -> ACTIVE on first confirm; ACTIVE -> COMPLETED only through the
    close transaction; PENDING/ACTIVE -> CANCELLED. COMPLETED and CANCELLED
    are terminal.
    """

    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ParticipantRole(enum.StrEnum):
    """Role of a ticket participant.

    Stored as free text in ticket_participants.role; rows are mapped through
    ParticipantRole.parse() when read. NULL is kept as None ("unset").
    """

    OWNER = "OWNER"
    PARTNER = "PARTNER"
    TRADER = "TRADER"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, raw: str | None) -> ParticipantRole | None:
        """Map a stored role string to the enum (case-insensitive).

        Returns None for NULL/blank, OTHER for any unrecognised value.
        """
        if raw is None or not raw.strip():
            return None
        try:
            return cls(raw.strip().upper())
        except ValueError:
            return cls.OTHER


# Roles that count toward the finalization quorum. None (unset) also counts.
QUORUM_ROLES: frozenset[ParticipantRole] = frozenset(
    {ParticipantRole.OWNER, ParticipantRole.PARTNER, ParticipantRole.TRADER}
)


class NotificationKind(enum.StrEnum):
    """High-level outcomes the engine emits for the adapter layer to announce."""

    TICKET_OPENED = "TICKET_OPENED"
    TICKET_CLAIMED = "TICKET_CLAIMED"
    TRADES_CONFIRMED = "TRADES_CONFIRMED"
    FINALIZATION_COMPLETED = "FINALIZATION_COMPLETED"
    TICKET_CLOSED = "TICKET_CLOSED"
    REVIEW_PUBLISHED = "REVIEW_PUBLISHED"
