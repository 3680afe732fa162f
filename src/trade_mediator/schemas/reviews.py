"""Pydantic schemas for reviews and review invitations."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class SubmitReviewRequest(BaseModel):
    """Request body for rating the middleman of a closed ticket."""

    reviewer_id: int = Field(..., gt=0, description="Party of the ticket leaving the review")
    middleman_id: int = Field(..., gt=0, description="Middleman who handled the ticket")
    rating: int = Field(..., ge=1, le=5, description="Stars, 1 to 5", examples=[5])
    comment: str | None = Field(
        default=None,
        max_length=2000,
        description="Optional free-text comment",
        examples=["Fast and friendly."],
    )


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class ReviewResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    ticket_id: int
    reviewer_id: int
    middleman_id: int
    rating: int
    comment: str | None
    created_at: datetime


class ReviewOutcomeResponse(BaseModel):
    review: ReviewResponse
    average_rating: float
    review_count: int


class ReviewInviteResponse(BaseModel):
    message_id: str
    ticket_id: int
    middleman_id: int
