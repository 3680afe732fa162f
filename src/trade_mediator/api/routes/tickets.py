"""Ticket lifecycle REST API routes.

These endpoints expose the same lifecycle service the chat interaction
handlers call, so a ticket can be driven from either surface.

Routes:
    POST   /api/v1/tickets                                  — Open a ticket
    GET    /api/v1/tickets/{id}                             — Ticket overview
    PUT    /api/v1/tickets/{id}/trades/{user_id}            — Register/edit trade data
    POST   /api/v1/tickets/{id}/trades/{user_id}/confirm    — Confirm own trade
    POST   /api/v1/tickets/{id}/claim                       — Middleman claims
    POST   /api/v1/tickets/{id}/closure-request             — Middleman asks for finalization
    POST   /api/v1/tickets/{id}/finalization/{user_id}      — Confirm finalization
    DELETE /api/v1/tickets/{id}/finalization/{user_id}      — Revoke finalization
    POST   /api/v1/tickets/{id}/close                       — Middleman closes
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from trade_mediator.api.deps import get_lifecycle_service
from trade_mediator.logging_config import get_logger
from trade_mediator.schemas.tickets import (
    ActorRequest,
    ClaimResponse,
    CloseResponse,
    ClosureRequestResponse,
    ConfirmTradeResponse,
    FinalizationResponse,
    OpenTicketRequest,
    OpenTicketResponse,
    SubmitTradeDataRequest,
    TicketOverviewResponse,
    TradeResponse,
)
from trade_mediator.services.commands import OpenTicketCommand, SubmitTradeDataCommand
from trade_mediator.services.lifecycle_service import TradeLifecycleService

router = APIRouter(prefix="/api/v1/tickets", tags=["Tickets"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Open / read
# ---------------------------------------------------------------------------


@router.post(
    "",
    response_model=OpenTicketResponse,
    status_code=201,
    summary="Open a middleman ticket",
)
async def open_ticket(
    request: OpenTicketRequest,
    svc: TradeLifecycleService = Depends(get_lifecycle_service),
) -> OpenTicketResponse:
    """Create the ticket channel and the ticket in OPEN state."""
    result = await svc.open_ticket(
        OpenTicketCommand.parse(
            guild_id=request.guild_id,
            owner_id=request.owner_id,
            partner_tag=request.partner_tag,
            ticket_type=request.ticket_type,
            context=request.context,
        )
    )
    return OpenTicketResponse(
        ticket_id=result.ticket_id,
        channel_id=result.channel_id,
        partner_id=result.partner_id,
        panel_message_id=result.panel_message_id,
    )


@router.get(
    "/{ticket_id}",
    response_model=TicketOverviewResponse,
    summary="Get ticket overview",
)
async def get_ticket(
    ticket_id: int,
    svc: TradeLifecycleService = Depends(get_lifecycle_service),
) -> TicketOverviewResponse:
    overview = await svc.get_ticket_overview(ticket_id)
    return TicketOverviewResponse.from_overview(overview)


# ---------------------------------------------------------------------------
# Trades
# ---------------------------------------------------------------------------


@router.put(
    "/{ticket_id}/trades/{user_id}",
    response_model=TradeResponse,
    summary="Register or edit a party's trade data",
)
async def submit_trade_data(
    ticket_id: int,
    user_id: int,
    request: SubmitTradeDataRequest,
    svc: TradeLifecycleService = Depends(get_lifecycle_service),
) -> TradeResponse:
    """Any submission clears the finalization ledger. An edit also resets the trade confirmation."""
    trade = await svc.submit_trade_data(
        SubmitTradeDataCommand.parse(
            ticket_id=ticket_id,
            user_id=user_id,
            external_username=request.external_username,
            offer_description=request.offer_description,
        )
    )
    return TradeResponse.model_validate(trade)


@router.post(
    "/{ticket_id}/trades/{user_id}/confirm",
    response_model=ConfirmTradeResponse,
    summary="Confirm a party's trade",
)
async def confirm_trade(
    ticket_id: int,
    user_id: int,
    svc: TradeLifecycleService = Depends(get_lifecycle_service),
) -> ConfirmTradeResponse:
    result = await svc.confirm_trade(ticket_id, user_id)
    return ConfirmTradeResponse(
        ticket_confirmed=result.ticket_confirmed,
        already_confirmed=result.already_confirmed,
    )


# ---------------------------------------------------------------------------
# Middleman actions
# ---------------------------------------------------------------------------


@router.post(
    "/{ticket_id}/claim",
    response_model=ClaimResponse,
    summary="Claim a ticket",
)
async def claim_ticket(
    ticket_id: int,
    request: ActorRequest,
    svc: TradeLifecycleService = Depends(get_lifecycle_service),
) -> ClaimResponse:
    """Assign the ticket to the calling middleman. Transitions OPEN -> CLAIMED."""
    result = await svc.claim(ticket_id, request.actor_id)
    return ClaimResponse(
        ticket_id=result.ticket_id,
        middleman_id=result.middleman_id,
        status=result.status.value,
    )


@router.post(
    "/{ticket_id}/closure-request",
    response_model=ClosureRequestResponse,
    summary="Request finalization from every party",
)
async def request_closure(
    ticket_id: int,
    request: ActorRequest,
    svc: TradeLifecycleService = Depends(get_lifecycle_service),
) -> ClosureRequestResponse:
    result = await svc.request_closure(ticket_id, request.actor_id)
    return ClosureRequestResponse(
        completed=result.completed,
        already_pending=result.already_pending,
        participant_count=result.participant_count,
    )


@router.post(
    "/{ticket_id}/close",
    response_model=CloseResponse,
    summary="Close the ticket",
)
async def close_ticket(
    ticket_id: int,
    request: ActorRequest,
    svc: TradeLifecycleService = Depends(get_lifecycle_service),
) -> CloseResponse:
    """Close atomically, or report pending until every party has confirmed."""
    result = await svc.close(ticket_id, request.actor_id)
    return CloseResponse(closed=result.closed, pending=result.pending)


# ---------------------------------------------------------------------------
# Finalization ledger
# ---------------------------------------------------------------------------


@router.post(
    "/{ticket_id}/finalization/{user_id}",
    response_model=FinalizationResponse,
    summary="Confirm finalization",
)
async def confirm_finalization(
    ticket_id: int,
    user_id: int,
    svc: TradeLifecycleService = Depends(get_lifecycle_service),
) -> FinalizationResponse:
    result = await svc.confirm_finalization(ticket_id, user_id)
    return FinalizationResponse(changed=result.changed, completed=result.completed)


@router.delete(
    "/{ticket_id}/finalization/{user_id}",
    response_model=FinalizationResponse,
    summary="Revoke finalization",
)
async def revoke_finalization(
    ticket_id: int,
    user_id: int,
    svc: TradeLifecycleService = Depends(get_lifecycle_service),
) -> FinalizationResponse:
    result = await svc.revoke_finalization(ticket_id, user_id)
    return FinalizationResponse(changed=result.changed, completed=result.completed)
