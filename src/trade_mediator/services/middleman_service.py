"""Middleman Service — roster, profiles and leaderboards."""

from __future__ import annotations

from typing import TYPE_CHECKING

from trade_mediator.domain.exceptions import MiddlemanNotFoundError
from trade_mediator.infrastructure.database.repositories import (
    MemberStatsRepository,
    MiddlemanRepository,
    ReviewRepository,
    TicketRepository,
)
from trade_mediator.logging_config import get_logger
from trade_mediator.services.results import MemberStatsView, MiddlemanProfile, RankedMiddleman

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from trade_mediator.infrastructure.database.orm_models import Middleman

logger = get_logger(__name__)

MAX_LEADERBOARD_SIZE = 50


def _clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_LEADERBOARD_SIZE))


class MiddlemanService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def register(
        self,
        user_id: int,
        display_name: str | None,
        external_username: str | None = None,
        external_user_id: int | None = None,
    ) -> Middleman:
        """Add a middleman to the roster, or refresh an existing profile."""
        async with self._session_factory.begin() as session:
            middleman = await MiddlemanRepository(session).upsert(
                user_id=user_id,
                display_name=display_name,
                external_username=external_username,
                external_user_id=external_user_id,
            )
        logger.info("middleman.registered", middleman_id=user_id)
        return middleman

    async def get_profile(self, user_id: int) -> MiddlemanProfile:
        async with self._session_factory() as session:
            middleman = await MiddlemanRepository(session).get(user_id)
            if middleman is None:
                raise MiddlemanNotFoundError(user_id)
            review_count, rating_sum = await ReviewRepository(session).rating_summary(user_id)
            closed_tickets = await TicketRepository(session).count_closed_by_middleman(user_id)
        return MiddlemanProfile(
            middleman=middleman,
            review_count=review_count,
            rating_sum=rating_sum,
            closed_tickets=closed_tickets,
        )

    async def top_middlemen(self, limit: int = 10) -> list[RankedMiddleman]:
        """Best average rating first; ties go to the one with more reviews."""
        async with self._session_factory() as session:
            rows = await ReviewRepository(session).top_middlemen(_clamp_limit(limit))
            middlemen = MiddlemanRepository(session)
            ranked = []
            for middleman_id, review_count, average in rows:
                middleman = await middlemen.get(middleman_id)
                ranked.append(
                    RankedMiddleman(
                        user_id=middleman_id,
                        display_name=middleman.display_name if middleman else None,
                        review_count=review_count,
                        average_rating=average,
                    )
                )
        return ranked

    async def get_member_stats(self, user_id: int) -> MemberStatsView:
        """Completed-trade counter for a user; zero if they have none."""
        async with self._session_factory() as session:
            stats = await MemberStatsRepository(session).get(user_id)
        if stats is None:
            return MemberStatsView(
                user_id=user_id, trades_completed=0, last_trade_at=None, partner_tag=None
            )
        return MemberStatsView.from_row(stats)

    async def top_members(self, limit: int = 10) -> list[MemberStatsView]:
        async with self._session_factory() as session:
            rows = await MemberStatsRepository(session).top(_clamp_limit(limit))
        return [MemberStatsView.from_row(row) for row in rows]
