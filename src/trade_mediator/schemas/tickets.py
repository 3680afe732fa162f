"""Pydantic schemas for the ticket API.

These schemas define the request/response shapes for the REST API. They are
separate from the ORM models and the service result structs so the HTTP
contract can evolve on its own.

Field rules that belong to the domain (username length, offer length) are
checked by the service commands, so the same 422 details come back whether
the call arrived over HTTP or from a chat interaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from trade_mediator.domain.enums import TicketType
from trade_mediator.domain.state_machine import TicketStateMachine

if TYPE_CHECKING:
    from trade_mediator.services.results import TicketOverview

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class OpenTicketRequest(BaseModel):
    """Request body for opening a middleman ticket."""

    guild_id: int = Field(..., gt=0, description="Guild the ticket channel is created in")
    owner_id: int = Field(..., gt=0, description="User opening the ticket")
    partner_tag: str = Field(
        ...,
        min_length=1,
        max_length=40,
        description="Partner mention (<@id>) or raw user id",
        examples=["<@112233445566778899>"],
    )
    ticket_type: TicketType = Field(default=TicketType.MM)
    context: str | None = Field(
        default=None,
        max_length=1000,
        description="Free-form note shown to the middleman",
    )


class SubmitTradeDataRequest(BaseModel):
    """Request body for registering or editing one party's trade."""

    external_username: str = Field(
        ...,
        max_length=200,
        description="The party's username on the platform the trade happens on",
        examples=["builderman"],
    )
    offer_description: str = Field(
        ...,
        max_length=5000,
        description="What the party gives in the trade",
        examples=["2x Limited Valkyrie Helm"],
    )


class ActorRequest(BaseModel):
    """Request body for actions performed by a single user."""

    actor_id: int = Field(..., gt=0, description="User performing the action")


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class OpenTicketResponse(BaseModel):
    ticket_id: int
    channel_id: str
    partner_id: int
    panel_message_id: str | None


class TradeResponse(BaseModel):
    """Response schema for one party's trade."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    user_id: int
    external_username: str | None
    status: str
    confirmed: bool
    items: list[dict]
    offer_description: str | None
    created_at: datetime
    updated_at: datetime


class ParticipantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    role: str | None
    joined_at: datetime


class ClaimResponse(BaseModel):
    ticket_id: int
    middleman_id: int
    status: str


class ClaimInfoResponse(BaseModel):
    """The claim row as exposed on the ticket overview."""

    model_config = ConfigDict(from_attributes=True)

    middleman_id: int
    claimed_at: datetime
    closed_at: datetime | None
    forced_close: bool
    panel_message_id: str | None
    finalization_message_id: str | None
    review_requested_at: datetime | None


class QuorumMemberResponse(BaseModel):
    user_id: int
    confirmed: bool


class FinalizationStatusResponse(BaseModel):
    members: list[QuorumMemberResponse]
    confirmed_count: int
    size: int
    completed: bool


class TicketOverviewResponse(BaseModel):
    """Full ticket snapshot: row, parties, trades, claim and ledger state."""

    id: int
    guild_id: int
    channel_id: str
    owner_id: int
    type: str
    status: str
    context: str | None
    created_at: datetime
    closed_at: datetime | None
    assigned_middleman_id: int | None
    participants: list[ParticipantResponse]
    trades: list[TradeResponse]
    claim: ClaimInfoResponse | None
    finalization: FinalizationStatusResponse
    allowed_events: list[str] = Field(
        description="State machine events that can fire from the current status"
    )

    @classmethod
    def from_overview(cls, overview: TicketOverview) -> TicketOverviewResponse:
        ticket = overview.ticket
        status = overview.finalization
        return cls(
            id=ticket.id,
            guild_id=ticket.guild_id,
            channel_id=ticket.channel_id,
            owner_id=ticket.owner_id,
            type=ticket.type,
            status=ticket.status,
            context=ticket.context,
            created_at=ticket.created_at,
            closed_at=ticket.closed_at,
            assigned_middleman_id=ticket.assigned_middleman_id,
            participants=[ParticipantResponse.model_validate(p) for p in overview.participants],
            trades=[TradeResponse.model_validate(t) for t in overview.trades],
            claim=ClaimInfoResponse.model_validate(overview.claim) if overview.claim else None,
            finalization=FinalizationStatusResponse(
                members=[
                    QuorumMemberResponse(user_id=m.user_id, confirmed=m.confirmed)
                    for m in status.members
                ],
                confirmed_count=status.confirmed_count,
                size=status.size,
                completed=status.completed,
            ),
            allowed_events=TicketStateMachine(current_status=ticket.status).get_allowed_events(),
        )


class ConfirmTradeResponse(BaseModel):
    ticket_confirmed: bool
    already_confirmed: bool


class ClosureRequestResponse(BaseModel):
    completed: bool
    already_pending: bool
    participant_count: int


class FinalizationResponse(BaseModel):
    """Outcome of a finalization confirm or revoke.

    `changed` is False when the call did nothing (already confirmed, or
    nothing to revoke).
    """

    changed: bool
    completed: bool


class CloseResponse(BaseModel):
    closed: bool
    pending: bool
