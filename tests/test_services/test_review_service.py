"""Tests for post-close reviews and review invitations."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from conftest import MIDDLEMAN_ID, OUTSIDER_ID, OWNER_ID, PARTNER_ID
from trade_mediator.domain.exceptions import (
    DuplicateReviewError,
    TicketNotClosedError,
    TicketNotFoundError,
    UnauthorizedActionError,
    ValidationFailedError,
)
from trade_mediator.infrastructure.database.repositories import ReviewRepository
from trade_mediator.services.commands import SubmitReviewCommand

if TYPE_CHECKING:
    from conftest import FakeChatPlatform, FakeNotifier, TicketDriver
    from trade_mediator.services.middleman_service import MiddlemanService
    from trade_mediator.services.review_service import ReviewService


def _review(ticket_id: int, reviewer_id: int, rating: int, **kwargs) -> SubmitReviewCommand:
    return SubmitReviewCommand.parse(
        ticket_id=ticket_id,
        reviewer_id=reviewer_id,
        middleman_id=kwargs.pop("middleman_id", MIDDLEMAN_ID),
        rating=rating,
        **kwargs,
    )


async def _stored_review(session_factory, ticket_id: int, reviewer_id: int):
    async with session_factory() as session:
        return await ReviewRepository(session).get(ticket_id, reviewer_id)


class TestSubmitReview:
    @pytest.mark.asyncio
    async def test_average_is_updated(
        self,
        driver: TicketDriver,
        review_service: ReviewService,
        middleman_service: MiddlemanService,
        notifier: FakeNotifier,
    ) -> None:
        ticket_id = await driver.closed()

        first = await review_service.submit_review(
            _review(ticket_id, OWNER_ID, 5, comment="  Fast and fair  ")
        )
        second = await review_service.submit_review(_review(ticket_id, PARTNER_ID, 3))

        assert first.review.comment == "Fast and fair"
        assert (first.average_rating, first.review_count) == (5.0, 1)
        assert (second.average_rating, second.review_count) == (4.0, 2)

        published = [n for n in notifier.published if n.kind.value == "REVIEW_PUBLISHED"]
        assert [n.data["rating"] for n in published] == [5, 3]
        assert published[-1].data["average_rating"] == 4.0
        assert published[-1].channel_id is None

        profile = await middleman_service.get_profile(MIDDLEMAN_ID)
        assert profile.average_rating == 4.0
        assert profile.closed_tickets == 1

    @pytest.mark.asyncio
    async def test_one_review_per_reviewer(
        self,
        driver: TicketDriver,
        review_service: ReviewService,
        middleman_service: MiddlemanService,
        session_factory,
    ) -> None:
        ticket_id = await driver.closed()
        await review_service.submit_review(_review(ticket_id, OWNER_ID, 4, comment="Smooth"))

        with pytest.raises(DuplicateReviewError):
            await review_service.submit_review(_review(ticket_id, OWNER_ID, 1))

        stored = await _stored_review(session_factory, ticket_id, OWNER_ID)
        assert (stored.rating, stored.comment) == (4, "Smooth")
        profile = await middleman_service.get_profile(MIDDLEMAN_ID)
        assert (profile.average_rating, profile.review_count) == (4.0, 1)

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_hits_unique_constraint(
        self,
        driver: TicketDriver,
        review_service: ReviewService,
        middleman_service: MiddlemanService,
        notifier: FakeNotifier,
        session_factory,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        ticket_id = await driver.closed()
        await review_service.submit_review(_review(ticket_id, OWNER_ID, 4))

        async def _not_seen(self, ticket_id: int, reviewer_id: int) -> None:
            return None

        # The second submit passes the lookup, as if the first had not committed yet
        monkeypatch.setattr(ReviewRepository, "get", _not_seen)

        with pytest.raises(DuplicateReviewError):
            await review_service.submit_review(_review(ticket_id, OWNER_ID, 1))

        monkeypatch.undo()
        stored = await _stored_review(session_factory, ticket_id, OWNER_ID)
        assert stored.rating == 4
        profile = await middleman_service.get_profile(MIDDLEMAN_ID)
        assert (profile.average_rating, profile.review_count) == (4.0, 1)
        published = [n for n in notifier.published if n.kind.value == "REVIEW_PUBLISHED"]
        assert len(published) == 1

    @pytest.mark.asyncio
    async def test_ticket_must_be_closed(
        self, driver: TicketDriver, review_service: ReviewService
    ) -> None:
        ticket_id = await driver.claimed_and_confirmed()
        with pytest.raises(TicketNotClosedError):
            await review_service.submit_review(_review(ticket_id, OWNER_ID, 4))

    @pytest.mark.asyncio
    async def test_unknown_ticket(self, review_service: ReviewService) -> None:
        with pytest.raises(TicketNotFoundError):
            await review_service.submit_review(_review(999, OWNER_ID, 4))

    @pytest.mark.asyncio
    async def test_outsider_cannot_review(
        self, driver: TicketDriver, review_service: ReviewService
    ) -> None:
        ticket_id = await driver.closed()
        with pytest.raises(UnauthorizedActionError):
            await review_service.submit_review(_review(ticket_id, OUTSIDER_ID, 4))

    @pytest.mark.asyncio
    async def test_wrong_middleman(
        self, driver: TicketDriver, review_service: ReviewService
    ) -> None:
        ticket_id = await driver.closed()
        with pytest.raises(ValidationFailedError) as exc_info:
            await review_service.submit_review(
                _review(ticket_id, OWNER_ID, 4, middleman_id=OUTSIDER_ID)
            )
        assert "middleman_id" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_comment_over_configured_limit(
        self, driver: TicketDriver, review_service: ReviewService, settings
    ) -> None:
        ticket_id = await driver.closed()
        comment = "x" * (settings.review_comment_max_length + 1)

        with pytest.raises(ValidationFailedError) as exc_info:
            await review_service.submit_review(_review(ticket_id, OWNER_ID, 4, comment=comment))

        assert "comment" in exc_info.value.details

    def test_rating_out_of_range(self) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            _review(1, OWNER_ID, 6)
        assert "rating" in exc_info.value.details

    @pytest.mark.asyncio
    async def test_notifier_failure_keeps_review(
        self,
        driver: TicketDriver,
        review_service: ReviewService,
        notifier: FakeNotifier,
    ) -> None:
        ticket_id = await driver.closed()
        notifier.fail = RuntimeError("channel gone")

        outcome = await review_service.submit_review(_review(ticket_id, OWNER_ID, 5))

        assert outcome.review_count == 1


class TestResolveInvite:
    @pytest.mark.asyncio
    async def test_invite_from_close(
        self,
        driver: TicketDriver,
        review_service: ReviewService,
        chat: FakeChatPlatform,
    ) -> None:
        ticket_id = await driver.closed()
        [invite_id] = [
            message_id
            for message_id, (_, message) in chat.messages.items()
            if message.title == "How did it go?"
        ]

        invite = await review_service.resolve_invite(invite_id)

        assert invite is not None
        assert (invite.ticket_id, invite.middleman_id) == (ticket_id, MIDDLEMAN_ID)

    @pytest.mark.asyncio
    async def test_unknown_message(self, review_service: ReviewService) -> None:
        assert await review_service.resolve_invite("123") is None
