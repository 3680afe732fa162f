"""Domain exceptions for the trade mediator.

These exceptions are framework-agnostic and represent business rule violations.
Every concrete error derives from one of six kinds (not found, unauthorized,
invalid state, validation, resource exhausted, infrastructure) which the API
layer's middleware translates to HTTP responses.
"""

from __future__ import annotations


class MediatorError(Exception):
    """Base exception for all domain errors."""

    def __init__(
        self,
        message: str,
        code: str = "MEDIATOR_ERROR",
        details: dict | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


# --- Kinds ---


class NotFoundError(MediatorError):
    """A ticket, trade, claim or middleman does not exist."""


class UnauthorizedError(MediatorError):
    """The caller lacks the role, ownership or claim the action requires."""


class InvalidStateError(MediatorError):
    """The aggregate is not in a state that allows the operation."""


class ValidationFailedError(MediatorError):
    """Malformed input. `details` maps each offending field to a message."""

    def __init__(self, details: dict[str, str]) -> None:
        super().__init__(
            message="The provided data is not valid.",
            code="VALIDATION_FAILED",
            details=details,
        )


class ResourceExhaustedError(MediatorError):
    """A per-user resource guard (open-ticket cap, cooldown) was hit."""


class InfrastructureError(MediatorError):
    """An external collaborator (chat platform) failed mid-operation."""


# --- Not found ---


class TicketNotFoundError(NotFoundError):
    def __init__(self, ticket_id: int | str) -> None:
        super().__init__(
            message=f"Ticket not found: {ticket_id}",
            code="TICKET_NOT_FOUND",
            details={"ticket_id": ticket_id},
        )
        self.ticket_id = ticket_id


class TradeDataNotFoundError(NotFoundError):
    """Raised when a party confirms before submitting trade data."""

    def __init__(self, ticket_id: int, user_id: int) -> None:
        super().__init__(
            message="Trade data must be submitted before confirming.",
            code="TRADE_DATA_NOT_FOUND",
            details={"ticket_id": ticket_id, "user_id": str(user_id)},
        )


class MiddlemanNotFoundError(NotFoundError):
    def __init__(self, user_id: int) -> None:
        super().__init__(
            message=f"Middleman not found: {user_id}",
            code="MIDDLEMAN_NOT_FOUND",
            details={"user_id": str(user_id)},
        )


# --- Unauthorized ---


class UnauthorizedActionError(UnauthorizedError):
    """Raised when the caller may not perform `action` on the ticket."""

    def __init__(self, action: str) -> None:
        super().__init__(
            message="You are not allowed to perform this action.",
            code="UNAUTHORIZED_ACTION",
            details={"action": action},
        )
        self.action = action


# --- Invalid state ---


class TicketClosedError(InvalidStateError):
    def __init__(self, ticket_id: int) -> None:
        super().__init__(
            message=f"Ticket {ticket_id} is already closed.",
            code="TICKET_CLOSED",
            details={"ticket_id": ticket_id},
        )


class TicketAlreadyClaimedError(InvalidStateError):
    """Raised when a second middleman tries to claim a ticket."""

    def __init__(self, ticket_id: int) -> None:
        super().__init__(
            message=f"Ticket {ticket_id} was already claimed by another middleman.",
            code="TICKET_ALREADY_CLAIMED",
            details={"ticket_id": ticket_id},
        )


class InvalidStateTransitionError(InvalidStateError):
    """Raised when an attempted state transition is not allowed.

    Example: OPEN -> CLOSED (must go through CLAIMED and CONFIRMED).
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted}",
            code="INVALID_STATE_TRANSITION",
            details={"current": current_state, "attempted": attempted},
        )
        self.current_state = current_state
        self.attempted = attempted


class InvalidTradeStateError(InvalidStateError):
    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Trade cannot go from {current_state} via {attempted}.",
            code="INVALID_TRADE_STATE",
            details={"current": current_state, "attempted": attempted},
        )
        self.current_state = current_state
        self.attempted = attempted


class TicketNotClosedError(InvalidStateError):
    def __init__(self, ticket_id: int) -> None:
        super().__init__(
            message="The ticket must be closed before it can be reviewed.",
            code="TICKET_NOT_CLOSED",
            details={"ticket_id": ticket_id},
        )


class TradeLockedError(InvalidStateError):
    """Raised when trade data changes after every party confirmed (ticket CONFIRMED)."""

    def __init__(self, ticket_id: int) -> None:
        super().__init__(
            message="Trades are locked once every party has confirmed.",
            code="TRADE_LOCKED",
            details={"ticket_id": ticket_id},
        )


class TradesNotConfirmedError(InvalidStateError):
    def __init__(self, ticket_id: int) -> None:
        super().__init__(
            message="Some parties have not confirmed their trade yet.",
            code="TRADES_NOT_CONFIRMED",
            details={"ticket_id": ticket_id},
        )


class DuplicateReviewError(InvalidStateError):
    def __init__(self, ticket_id: int, reviewer_id: int) -> None:
        super().__init__(
            message="You already submitted a review for this ticket.",
            code="DUPLICATE_REVIEW",
            details={"ticket_id": ticket_id, "reviewer_id": str(reviewer_id)},
        )


# --- Resource exhausted ---


class TooManyOpenTicketsError(ResourceExhaustedError):
    def __init__(self, limit: int) -> None:
        super().__init__(
            message=f"You reached the limit of {limit} open tickets.",
            code="TOO_MANY_OPEN_TICKETS",
            details={"limit": limit},
        )
        self.limit = limit


class TicketCooldownError(ResourceExhaustedError):
    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(
            message=f"Wait {retry_after_seconds} seconds before opening another ticket.",
            code="TICKET_COOLDOWN",
            details={"retry_after_seconds": retry_after_seconds},
        )
        self.retry_after_seconds = retry_after_seconds


# --- Infrastructure ---


class ChannelCreationError(InfrastructureError):
    def __init__(self, reason: str) -> None:
        super().__init__(
            message="The ticket channel could not be created.",
            code="CHANNEL_CREATION_FAILED",
            details={"reason": reason},
        )


class ChannelCleanupError(InfrastructureError):
    """Raised when compensating cleanup fails after an earlier failure.

    Both faults are kept: `original` is the error that triggered the cleanup,
    `cleanup_error` is the one raised while deleting the channel. The cleanup
    fault is also chained as __cause__.
    """

    def __init__(
        self,
        channel_id: str,
        original: BaseException,
        cleanup_error: BaseException,
    ) -> None:
        super().__init__(
            message="The channel created for this ticket could not be cleaned up after an error.",
            code="CHANNEL_CLEANUP_FAILED",
            details={
                "channel_id": channel_id,
                "original_error": repr(original),
                "cleanup_error": repr(cleanup_error),
            },
        )
        self.channel_id = channel_id
        self.original = original
        self.cleanup_error = cleanup_error
