"""Review Service — post-close ratings of the middleman.

One review per (ticket, reviewer). Only parties of a closed ticket may rate,
and only the middleman who closed it. The published notification carries the
middleman's new average.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from trade_mediator.domain.enums import NotificationKind, TicketStatus
from trade_mediator.domain.exceptions import (
    DuplicateReviewError,
    TicketNotClosedError,
    TicketNotFoundError,
    UnauthorizedActionError,
    ValidationFailedError,
)
from trade_mediator.domain.ports import Notification
from trade_mediator.infrastructure.database.orm_models import MiddlemanReview
from trade_mediator.infrastructure.database.repositories import (
    ReviewRepository,
    TicketRepository,
)
from trade_mediator.logging_config import get_logger, ticket_log_context
from trade_mediator.services.results import ReviewOutcome
from trade_mediator.services.review_invites import ReviewInviteStore

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from trade_mediator.config import Settings
    from trade_mediator.domain.ports import KeyValueStore, Notifier
    from trade_mediator.services.commands import SubmitReviewCommand
    from trade_mediator.services.review_invites import ReviewInvite

logger = get_logger(__name__)


class ReviewService:
    """Records reviews and resolves the invitations that lead to them."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: KeyValueStore,
        notifier: Notifier,
        settings: Settings,
    ) -> None:
        self._session_factory = session_factory
        self._notifier = notifier
        self._settings = settings
        self._invites = ReviewInviteStore(store, settings.review_invite_ttl_seconds)

    async def submit_review(self, command: SubmitReviewCommand) -> ReviewOutcome:
        """Store a review and return the middleman's updated average.

        Raises:
            ValidationFailedError: Rating outside 1..5, comment too long, or
                the middleman is not the one who handled the ticket.
            TicketNotFoundError / TicketNotClosedError: No such ticket, or
                the ticket is still in progress.
            UnauthorizedActionError: Reviewer is not a party of the ticket.
            DuplicateReviewError: Reviewer already rated this ticket.
        """
        command = command.validated(comment_max_length=self._settings.review_comment_max_length)

        with ticket_log_context(
            ticket_id=command.ticket_id, actor_id=command.reviewer_id, operation="submit_review"
        ):
            try:
                async with self._session_factory.begin() as session:
                    outcome = await self._store_review(session, command)
            except IntegrityError as exc:
                # Lost a race with a concurrent submit from the same reviewer
                logger.info("review.rejected_duplicate")
                raise DuplicateReviewError(command.ticket_id, command.reviewer_id) from exc

            logger.info(
                "review.submitted",
                middleman_id=command.middleman_id,
                rating=command.rating,
                average_rating=outcome.average_rating,
            )
            await self._publish(command, outcome)
            return outcome

    async def _store_review(
        self,
        session: AsyncSession,
        command: SubmitReviewCommand,
    ) -> ReviewOutcome:
        tickets = TicketRepository(session)
        reviews = ReviewRepository(session)

        ticket = await tickets.get_by_id(command.ticket_id)
        if ticket is None:
            raise TicketNotFoundError(command.ticket_id)
        if ticket.status != TicketStatus.CLOSED.value:
            raise TicketNotClosedError(ticket.id)
        if not ticket.is_owned_by(command.reviewer_id) and not await tickets.is_participant(
            ticket.id, command.reviewer_id
        ):
            raise UnauthorizedActionError("review:submit")
        if ticket.assigned_middleman_id != command.middleman_id:
            raise ValidationFailedError(
                {"middleman_id": "This middleman did not handle the ticket."}
            )
        if await reviews.get(ticket.id, command.reviewer_id) is not None:
            raise DuplicateReviewError(ticket.id, command.reviewer_id)

        review = await reviews.create(
            MiddlemanReview(
                ticket_id=ticket.id,
                reviewer_id=command.reviewer_id,
                middleman_id=command.middleman_id,
                rating=command.rating,
                comment=command.comment,
            )
        )
        count, total = await reviews.rating_summary(command.middleman_id)
        return ReviewOutcome(review=review, average_rating=total / count, review_count=count)

    async def _publish(self, command: SubmitReviewCommand, outcome: ReviewOutcome) -> None:
        try:
            await self._notifier.publish(
                Notification(
                    kind=NotificationKind.REVIEW_PUBLISHED,
                    ticket_id=command.ticket_id,
                    mentions=(command.middleman_id,),
                    data={
                        "middleman_id": command.middleman_id,
                        "reviewer_id": command.reviewer_id,
                        "rating": command.rating,
                        "average_rating": outcome.average_rating,
                        "review_count": outcome.review_count,
                        "comment": command.comment,
                    },
                )
            )
        except Exception:
            logger.exception("notify.failed", kind=NotificationKind.REVIEW_PUBLISHED.value)

    async def resolve_invite(self, message_id: str) -> ReviewInvite | None:
        """Map a review-request message back to its ticket and middleman."""
        return await self._invites.lookup(message_id)
