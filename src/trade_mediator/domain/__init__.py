"""Domain layer — pure business logic with zero framework dependencies."""

from trade_mediator.domain.enums import (
    NotificationKind,
    ParticipantRole,
    TicketStatus,
    TicketType,
    TradeStatus,
)
from trade_mediator.domain.exceptions import (
    InvalidStateTransitionError,
    MediatorError,
    TicketNotFoundError,
)
from trade_mediator.domain.ports import (
    CardRenderer,
    ChatPlatform,
    KeyValueStore,
    Notifier,
)
from trade_mediator.domain.state_machine import (
    TicketStateMachine,
    TradeStateMachine,
    validate_transition,
)

__all__ = [
    "NotificationKind",
    "ParticipantRole",
    "TicketStatus",
    "TicketType",
    "TradeStatus",
    "InvalidStateTransitionError",
    "MediatorError",
    "TicketNotFoundError",
    "CardRenderer",
    "ChatPlatform",
    "KeyValueStore",
    "Notifier",
    "TicketStateMachine",
    "TradeStateMachine",
    "validate_transition",
]
