"""Middleman roster and member statistics REST API routes.

Routes:
    GET    /api/v1/middlemen                   — Leaderboard by average rating
    PUT    /api/v1/middlemen/{user_id}         — Register or update a middleman
    GET    /api/v1/middlemen/{user_id}         — Middleman profile
    GET    /api/v1/members/top                 — Members by completed trades
    GET    /api/v1/members/{user_id}/stats     — One member's completed trades
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from trade_mediator.api.deps import get_middleman_service
from trade_mediator.schemas.middlemen import (
    MemberStatsResponse,
    MiddlemanProfileResponse,
    RankedMiddlemanResponse,
    RegisterMiddlemanRequest,
)
from trade_mediator.services.middleman_service import MAX_LEADERBOARD_SIZE, MiddlemanService
from trade_mediator.services.results import MemberStatsView, MiddlemanProfile

router = APIRouter(prefix="/api/v1", tags=["Middlemen"])


def _profile_response(profile: MiddlemanProfile) -> MiddlemanProfileResponse:
    middleman = profile.middleman
    return MiddlemanProfileResponse(
        user_id=middleman.user_id,
        display_name=middleman.display_name,
        external_username=middleman.external_username,
        external_user_id=middleman.external_user_id,
        review_count=profile.review_count,
        average_rating=profile.average_rating,
        closed_tickets=profile.closed_tickets,
    )


def _stats_response(stats: MemberStatsView) -> MemberStatsResponse:
    return MemberStatsResponse(
        user_id=stats.user_id,
        trades_completed=stats.trades_completed,
        last_trade_at=stats.last_trade_at,
        partner_tag=stats.partner_tag,
    )


# ---------------------------------------------------------------------------
# Middlemen
# ---------------------------------------------------------------------------


@router.get(
    "/middlemen",
    response_model=list[RankedMiddlemanResponse],
    summary="Top middlemen by rating",
)
async def list_top_middlemen(
    limit: int = Query(default=10, ge=1, le=MAX_LEADERBOARD_SIZE),
    svc: MiddlemanService = Depends(get_middleman_service),
) -> list[RankedMiddlemanResponse]:
    ranked = await svc.top_middlemen(limit)
    return [
        RankedMiddlemanResponse(
            user_id=entry.user_id,
            display_name=entry.display_name,
            review_count=entry.review_count,
            average_rating=entry.average_rating,
        )
        for entry in ranked
    ]


@router.put(
    "/middlemen/{user_id}",
    response_model=MiddlemanProfileResponse,
    summary="Register or update a middleman",
)
async def register_middleman(
    user_id: int,
    request: RegisterMiddlemanRequest,
    svc: MiddlemanService = Depends(get_middleman_service),
) -> MiddlemanProfileResponse:
    await svc.register(
        user_id=user_id,
        display_name=request.display_name,
        external_username=request.external_username,
        external_user_id=request.external_user_id,
    )
    return _profile_response(await svc.get_profile(user_id))


@router.get(
    "/middlemen/{user_id}",
    response_model=MiddlemanProfileResponse,
    summary="Get a middleman profile",
)
async def get_middleman(
    user_id: int,
    svc: MiddlemanService = Depends(get_middleman_service),
) -> MiddlemanProfileResponse:
    return _profile_response(await svc.get_profile(user_id))


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.get(
    "/members/top",
    response_model=list[MemberStatsResponse],
    summary="Members with the most completed trades",
)
async def list_top_members(
    limit: int = Query(default=10, ge=1, le=MAX_LEADERBOARD_SIZE),
    svc: MiddlemanService = Depends(get_middleman_service),
) -> list[MemberStatsResponse]:
    return [_stats_response(stats) for stats in await svc.top_members(limit)]


@router.get(
    "/members/{user_id}/stats",
    response_model=MemberStatsResponse,
    summary="Completed trades for one member",
)
async def get_member_stats(
    user_id: int,
    svc: MiddlemanService = Depends(get_middleman_service),
) -> MemberStatsResponse:
    return _stats_response(await svc.get_member_stats(user_id))
