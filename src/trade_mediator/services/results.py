"""Use-case results and read snapshots returned by the services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from trade_mediator.domain.enums import TicketStatus
    from trade_mediator.domain.quorum import QuorumStatus
    from trade_mediator.infrastructure.database.orm_models import (
        MemberTradeStats,
        Middleman,
        MiddlemanClaim,
        MiddlemanReview,
        Ticket,
        TicketParticipant,
        Trade,
    )


@dataclass(frozen=True)
class OpenTicketResult:
    ticket_id: int
    channel_id: str
    partner_id: int
    panel_message_id: str | None


@dataclass(frozen=True)
class ConfirmTradeResult:
    ticket_confirmed: bool
    already_confirmed: bool


@dataclass(frozen=True)
class ClaimResult:
    ticket_id: int
    middleman_id: int
    status: TicketStatus


@dataclass(frozen=True)
class ClosureRequestResult:
    completed: bool
    already_pending: bool
    participant_count: int


@dataclass(frozen=True)
class FinalizationResult:
    """Outcome of a ledger write.

    `changed` is False when the call was a no-op (confirm while already
    confirmed, revoke while not confirmed).
    """

    changed: bool
    completed: bool

    @property
    def already_confirmed(self) -> bool:
        return not self.changed

    @property
    def previously_confirmed(self) -> bool:
        return self.changed


@dataclass(frozen=True)
class CloseResult:
    closed: bool
    pending: bool


@dataclass(frozen=True)
class TicketOverview:
    """Everything known about a ticket, read in one transaction."""

    ticket: Ticket
    participants: list[TicketParticipant]
    trades: list[Trade]
    claim: MiddlemanClaim | None
    finalization: QuorumStatus

    @property
    def quorum_ids(self) -> list[int]:
        return [member.user_id for member in self.finalization.members]

    def trade_for(self, user_id: int) -> Trade | None:
        return next((trade for trade in self.trades if trade.user_id == user_id), None)


@dataclass(frozen=True)
class ReviewOutcome:
    review: MiddlemanReview
    average_rating: float
    review_count: int


@dataclass(frozen=True)
class MiddlemanProfile:
    middleman: Middleman
    review_count: int
    rating_sum: int
    closed_tickets: int

    @property
    def average_rating(self) -> float | None:
        if self.review_count == 0:
            return None
        return self.rating_sum / self.review_count


@dataclass(frozen=True)
class RankedMiddleman:
    user_id: int
    display_name: str | None
    review_count: int
    average_rating: float


@dataclass(frozen=True)
class MemberStatsView:
    user_id: int
    trades_completed: int
    last_trade_at: datetime | None
    partner_tag: str | None

    @classmethod
    def from_row(cls, stats: MemberTradeStats) -> MemberStatsView:
        return cls(
            user_id=stats.user_id,
            trades_completed=stats.trades_completed,
            last_trade_at=stats.last_trade_at,
            partner_tag=stats.partner_tag,
        )
