"""Review REST API routes.

Routes:
    POST   /api/v1/tickets/{id}/reviews          — Rate the middleman of a closed ticket
    GET    /api/v1/review-invites/{message_id}   — Resolve a review-request message
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from trade_mediator.api.deps import get_review_service
from trade_mediator.domain.exceptions import NotFoundError
from trade_mediator.schemas.reviews import (
    ReviewInviteResponse,
    ReviewOutcomeResponse,
    ReviewResponse,
    SubmitReviewRequest,
)
from trade_mediator.services.commands import SubmitReviewCommand
from trade_mediator.services.review_service import ReviewService

router = APIRouter(prefix="/api/v1", tags=["Reviews"])


@router.post(
    "/tickets/{ticket_id}/reviews",
    response_model=ReviewOutcomeResponse,
    status_code=201,
    summary="Review the middleman of a closed ticket",
)
async def submit_review(
    ticket_id: int,
    request: SubmitReviewRequest,
    svc: ReviewService = Depends(get_review_service),
) -> ReviewOutcomeResponse:
    outcome = await svc.submit_review(
        SubmitReviewCommand.parse(
            ticket_id=ticket_id,
            reviewer_id=request.reviewer_id,
            middleman_id=request.middleman_id,
            rating=request.rating,
            comment=request.comment,
        )
    )
    return ReviewOutcomeResponse(
        review=ReviewResponse.model_validate(outcome.review),
        average_rating=outcome.average_rating,
        review_count=outcome.review_count,
    )


@router.get(
    "/review-invites/{message_id}",
    response_model=ReviewInviteResponse,
    summary="Resolve a review invitation",
)
async def get_review_invite(
    message_id: str,
    svc: ReviewService = Depends(get_review_service),
) -> ReviewInviteResponse:
    invite = await svc.resolve_invite(message_id)
    if invite is None:
        raise NotFoundError(
            message="Review invitation not found or expired.",
            code="REVIEW_INVITE_NOT_FOUND",
            details={"message_id": message_id},
        )
    return ReviewInviteResponse(
        message_id=message_id,
        ticket_id=invite.ticket_id,
        middleman_id=invite.middleman_id,
    )
