"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

"Create ignoring duplicate" writes (claims, ledger entries, member rows) use
the dialect's INSERT .. ON CONFLICT DO NOTHING and report whether a row was
actually inserted. Dialects without it fall back to a SAVEPOINT that turns an
IntegrityError into "not inserted".
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from trade_mediator.domain.enums import OPEN_TICKET_STATUSES, ParticipantRole, TradeStatus
from trade_mediator.infrastructure.database.orm_models import (
    Member,
    MemberTradeStats,
    Middleman,
    MiddlemanClaim,
    MiddlemanReview,
    Ticket,
    TicketParticipant,
    Trade,
    TradeFinalization,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from trade_mediator.domain.enums import TicketStatus


_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def insert_ignoring_duplicates(
    session: AsyncSession,
    model: type,
    rows: list[dict],
) -> int:
    """Insert rows, skipping any that violate a unique/primary key.

    Returns:
        The number of rows actually inserted.
    """
    if not rows:
        return 0

    insert_fn = _INSERT_BY_DIALECT.get(session.get_bind().dialect.name)
    if insert_fn is not None:
        result = await session.execute(
            insert_fn(model).values(rows).on_conflict_do_nothing()
        )
        return max(result.rowcount or 0, 0)

    inserted = 0
    for row in rows:
        try:
            async with session.begin_nested():
                session.add(model(**row))
        except IntegrityError:
            continue
        inserted += 1
    return inserted


class MemberRepository:
    """Data access for known users."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def ensure_exists(self, user_ids: list[int]) -> None:
        """Create member rows for any ids not seen before."""
        now = datetime.now(UTC)
        unique_ids = list(dict.fromkeys(user_ids))
        await insert_ignoring_duplicates(
            self._session,
            Member,
            [{"user_id": user_id, "created_at": now} for user_id in unique_ids],
        )

    async def lock(self, user_id: int) -> Member | None:
        """SELECT .. FOR UPDATE on the member row (no-op lock on SQLite)."""
        result = await self._session.execute(
            select(Member).where(Member.user_id == user_id).with_for_update()
        )
        return result.scalar_one_or_none()


class TicketRepository:
    """Data access for tickets and their participants."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, ticket: Ticket) -> Ticket:
        """Insert a new ticket."""
        self._session.add(ticket)
        await self._session.flush()
        return ticket

    async def get_by_id(self, ticket_id: int, for_update: bool = False) -> Ticket | None:
        """Fetch a ticket by id, optionally locking the row."""
        stmt = select(Ticket).where(Ticket.id == ticket_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def count_open_by_owner(self, owner_id: int) -> int:
        """Count the owner's tickets in OPEN, CLAIMED or CONFIRMED."""
        result = await self._session.execute(
            select(func.count())
            .select_from(Ticket)
            .where(
                Ticket.owner_id == owner_id,
                Ticket.status.in_([status.value for status in OPEN_TICKET_STATUSES]),
            )
        )
        return int(result.scalar_one())

    async def update_status(
        self,
        ticket: Ticket,
        new_status: TicketStatus,
        closed_at: datetime | None = None,
    ) -> Ticket:
        """Update the status of a ticket (call AFTER state machine validation)."""
        ticket.status = new_status.value
        if closed_at is not None:
            ticket.closed_at = closed_at
        await self._session.flush()
        return ticket

    async def assign_middleman(self, ticket: Ticket, middleman_id: int) -> Ticket:
        ticket.assigned_middleman_id = middleman_id
        await self._session.flush()
        return ticket

    async def delete(self, ticket_id: int) -> None:
        """Remove a ticket and its participant rows (compensation after a failed open)."""
        await self._session.execute(
            delete(TicketParticipant).where(TicketParticipant.ticket_id == ticket_id)
        )
        await self._session.execute(delete(Ticket).where(Ticket.id == ticket_id))
        await self._session.flush()

    async def add_participants(
        self,
        ticket_id: int,
        participants: list[tuple[int, ParticipantRole | None]],
    ) -> None:
        """Insert participant rows; an existing (ticket, user) pair is left untouched."""
        now = datetime.now(UTC)
        await insert_ignoring_duplicates(
            self._session,
            TicketParticipant,
            [
                {
                    "ticket_id": ticket_id,
                    "user_id": user_id,
                    "role": role.value if role is not None else None,
                    "joined_at": now,
                }
                for user_id, role in participants
            ],
        )

    async def list_participants(self, ticket_id: int) -> list[TicketParticipant]:
        """Participants in join order."""
        result = await self._session.execute(
            select(TicketParticipant)
            .where(TicketParticipant.ticket_id == ticket_id)
            .order_by(TicketParticipant.joined_at.asc(), TicketParticipant.user_id.asc())
        )
        return list(result.scalars().all())

    async def is_participant(self, ticket_id: int, user_id: int) -> bool:
        result = await self._session.execute(
            select(TicketParticipant.user_id).where(
                TicketParticipant.ticket_id == ticket_id,
                TicketParticipant.user_id == user_id,
            )
        )
        return result.first() is not None

    async def count_closed_by_middleman(self, middleman_id: int) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(MiddlemanClaim)
            .where(
                MiddlemanClaim.middleman_id == middleman_id,
                MiddlemanClaim.closed_at.is_not(None),
            )
        )
        return int(result.scalar_one())


class TradeRepository:
    """Data access for per-party trades."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        ticket_id: int,
        user_id: int,
        external_username: str | None,
        items: list[dict],
    ) -> Trade:
        """Insert a new PENDING, unconfirmed trade."""
        trade = Trade(
            ticket_id=ticket_id,
            user_id=user_id,
            external_username=external_username,
            status=TradeStatus.PENDING.value,
            confirmed=False,
            items=items,
        )
        self._session.add(trade)
        await self._session.flush()
        return trade

    async def get_for_user(self, ticket_id: int, user_id: int) -> Trade | None:
        result = await self._session.execute(
            select(Trade).where(Trade.ticket_id == ticket_id, Trade.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_by_ticket(self, ticket_id: int) -> list[Trade]:
        """All trades for a ticket, oldest first."""
        result = await self._session.execute(
            select(Trade)
            .where(Trade.ticket_id == ticket_id)
            .order_by(Trade.created_at.asc(), Trade.id.asc())
        )
        return list(result.scalars().all())

    async def save(self, trade: Trade) -> Trade:
        """Flush in-memory changes made through the Trade behaviour methods."""
        await self._session.flush()
        return trade


class ClaimRepository:
    """Data access for middleman claims."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create_if_absent(self, ticket_id: int, middleman_id: int) -> bool:
        """Insert the claim unless one exists. Returns True if this call created it."""
        inserted = await insert_ignoring_duplicates(
            self._session,
            MiddlemanClaim,
            [
                {
                    "ticket_id": ticket_id,
                    "middleman_id": middleman_id,
                    "claimed_at": datetime.now(UTC),
                    "forced_close": False,
                }
            ],
        )
        return inserted == 1

    async def get_by_ticket(self, ticket_id: int) -> MiddlemanClaim | None:
        result = await self._session.execute(
            select(MiddlemanClaim)
            .where(MiddlemanClaim.ticket_id == ticket_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def mark_closed(
        self,
        claim: MiddlemanClaim,
        closed_at: datetime,
        forced: bool = False,
    ) -> MiddlemanClaim:
        claim.closed_at = closed_at
        claim.forced_close = forced
        await self._session.flush()
        return claim

    async def set_panel_message_id(self, ticket_id: int, message_id: str) -> None:
        await self._session.execute(
            update(MiddlemanClaim)
            .where(MiddlemanClaim.ticket_id == ticket_id)
            .values(panel_message_id=message_id)
        )

    async def set_finalization_message_id(self, ticket_id: int, message_id: str) -> None:
        await self._session.execute(
            update(MiddlemanClaim)
            .where(MiddlemanClaim.ticket_id == ticket_id)
            .values(finalization_message_id=message_id)
        )

    async def mark_review_requested(self, ticket_id: int, requested_at: datetime) -> None:
        await self._session.execute(
            update(MiddlemanClaim)
            .where(MiddlemanClaim.ticket_id == ticket_id)
            .values(review_requested_at=requested_at)
        )


class FinalizationRepository:
    """Data access for the finalization ledger.

    add/remove are set operations: repeating either never errors and the
    return value says whether the set actually changed.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, ticket_id: int, user_id: int) -> bool:
        inserted = await insert_ignoring_duplicates(
            self._session,
            TradeFinalization,
            [{"ticket_id": ticket_id, "user_id": user_id, "confirmed_at": datetime.now(UTC)}],
        )
        return inserted == 1

    async def remove(self, ticket_id: int, user_id: int) -> bool:
        result = await self._session.execute(
            delete(TradeFinalization).where(
                TradeFinalization.ticket_id == ticket_id,
                TradeFinalization.user_id == user_id,
            )
        )
        return (result.rowcount or 0) > 0

    async def list_user_ids(self, ticket_id: int) -> list[int]:
        """Confirmed party ids, in confirmation order."""
        result = await self._session.execute(
            select(TradeFinalization.user_id)
            .where(TradeFinalization.ticket_id == ticket_id)
            .order_by(TradeFinalization.confirmed_at.asc(), TradeFinalization.user_id.asc())
        )
        return list(result.scalars().all())

    async def reset(self, ticket_id: int) -> int:
        """Clear the ledger for a ticket. Returns how many entries were removed."""
        result = await self._session.execute(
            delete(TradeFinalization).where(TradeFinalization.ticket_id == ticket_id)
        )
        return result.rowcount or 0


class ReviewRepository:
    """Data access for middleman reviews."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, review: MiddlemanReview) -> MiddlemanReview:
        """Insert a review. Raises IntegrityError on a duplicate (ticket, reviewer)."""
        self._session.add(review)
        await self._session.flush()
        return review

    async def get(self, ticket_id: int, reviewer_id: int) -> MiddlemanReview | None:
        result = await self._session.execute(
            select(MiddlemanReview).where(
                MiddlemanReview.ticket_id == ticket_id,
                MiddlemanReview.reviewer_id == reviewer_id,
            )
        )
        return result.scalar_one_or_none()

    async def rating_summary(self, middleman_id: int) -> tuple[int, int]:
        """Return (review_count, rating_sum) over every review of a middleman."""
        result = await self._session.execute(
            select(
                func.count(MiddlemanReview.id),
                func.coalesce(func.sum(MiddlemanReview.rating), 0),
            ).where(MiddlemanReview.middleman_id == middleman_id)
        )
        count, total = result.one()
        return int(count), int(total)

    async def top_middlemen(self, limit: int) -> list[tuple[int, int, float]]:
        """Return (middleman_id, review_count, average_rating), best first."""
        average = func.avg(MiddlemanReview.rating)
        count = func.count(MiddlemanReview.id)
        result = await self._session.execute(
            select(MiddlemanReview.middleman_id, count, average)
            .group_by(MiddlemanReview.middleman_id)
            .order_by(average.desc(), count.desc(), MiddlemanReview.middleman_id.asc())
            .limit(limit)
        )
        return [(int(mid), int(n), float(avg)) for mid, n, avg in result.all()]


class MemberStatsRepository:
    """Data access for completed-trade counters."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_completed_trade(
        self,
        user_id: int,
        completed_at: datetime,
        partner_tag: str | None = None,
    ) -> MemberTradeStats:
        """Increment the user's counter, creating the row on first use."""
        await insert_ignoring_duplicates(
            self._session,
            MemberTradeStats,
            [{"user_id": user_id, "trades_completed": 0, "updated_at": completed_at}],
        )
        values: dict = {
            "trades_completed": MemberTradeStats.trades_completed + 1,
            "last_trade_at": completed_at,
            "updated_at": completed_at,
        }
        if partner_tag is not None:
            values["partner_tag"] = partner_tag
        await self._session.execute(
            update(MemberTradeStats)
            .where(MemberTradeStats.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(
            select(MemberTradeStats)
            .where(MemberTradeStats.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def get(self, user_id: int) -> MemberTradeStats | None:
        result = await self._session.execute(
            select(MemberTradeStats)
            .where(MemberTradeStats.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def top(self, limit: int) -> list[MemberTradeStats]:
        result = await self._session.execute(
            select(MemberTradeStats)
            .where(MemberTradeStats.trades_completed > 0)
            .order_by(
                MemberTradeStats.trades_completed.desc(),
                MemberTradeStats.last_trade_at.desc(),
            )
            .limit(limit)
        )
        return list(result.scalars().all())


class MiddlemanRepository:
    """Data access for the intermediary roster."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: int) -> Middleman | None:
        result = await self._session.execute(
            select(Middleman).where(Middleman.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        user_id: int,
        display_name: str | None,
        external_username: str | None = None,
        external_user_id: int | None = None,
    ) -> Middleman:
        """Create or update a middleman profile."""
        middleman = await self.get(user_id)
        if middleman is None:
            middleman = Middleman(
                user_id=user_id,
                display_name=display_name,
                external_username=external_username,
                external_user_id=external_user_id,
            )
            self._session.add(middleman)
        else:
            middleman.display_name = display_name
            middleman.external_username = external_username
            middleman.external_user_id = external_user_id
        await self._session.flush()
        return middleman
