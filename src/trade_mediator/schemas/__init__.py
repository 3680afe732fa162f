"""Pydantic API schemas."""

from trade_mediator.schemas.health import HealthResponse
from trade_mediator.schemas.middlemen import (
    MemberStatsResponse,
    MiddlemanProfileResponse,
    RankedMiddlemanResponse,
    RegisterMiddlemanRequest,
)
from trade_mediator.schemas.reviews import (
    ReviewInviteResponse,
    ReviewOutcomeResponse,
    ReviewResponse,
    SubmitReviewRequest,
)
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

__all__ = [
    "ActorRequest",
    "ClaimResponse",
    "CloseResponse",
    "ClosureRequestResponse",
    "ConfirmTradeResponse",
    "FinalizationResponse",
    "HealthResponse",
    "MemberStatsResponse",
    "MiddlemanProfileResponse",
    "OpenTicketRequest",
    "OpenTicketResponse",
    "RankedMiddlemanResponse",
    "RegisterMiddlemanRequest",
    "ReviewInviteResponse",
    "ReviewOutcomeResponse",
    "ReviewResponse",
    "SubmitReviewRequest",
    "SubmitTradeDataRequest",
    "TicketOverviewResponse",
    "TradeResponse",
]
