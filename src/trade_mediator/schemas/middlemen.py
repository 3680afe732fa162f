"""Pydantic schemas for the middleman roster and member statistics."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class RegisterMiddlemanRequest(BaseModel):
    """Request body for adding a middleman or refreshing their profile."""

    display_name: str | None = Field(default=None, max_length=100)
    external_username: str | None = Field(
        default=None,
        max_length=50,
        description="Username on the platform trades happen on",
    )
    external_user_id: int | None = Field(default=None, gt=0)


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class MiddlemanProfileResponse(BaseModel):
    user_id: int
    display_name: str | None
    external_username: str | None
    external_user_id: int | None
    review_count: int
    average_rating: float | None
    closed_tickets: int


class RankedMiddlemanResponse(BaseModel):
    user_id: int
    display_name: str | None
    review_count: int
    average_rating: float


class MemberStatsResponse(BaseModel):
    user_id: int
    trades_completed: int
    last_trade_at: datetime | None
    partner_tag: str | None

