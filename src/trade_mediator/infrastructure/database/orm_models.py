"""SQLAlchemy 2.0 ORM models for the trade mediator.

Tables:
    1. members              — Every user the service has seen; per-owner lock row.
    2. middlemen            — Registered intermediaries.
    3. tickets              — One case per private channel.
    4. ticket_participants  — Who is in a ticket, and in which role.
    5. trades               — One party's declared offer within a ticket.
    6. middleman_claims     — Which intermediary owns a ticket (one per ticket).
    7. trade_finalizations  — The finalization ledger (one row per confirming party).
    8. middleman_reviews    — Post-close reviews (one per ticket and reviewer).
    9. member_trade_stats   — Completed-trade counters.

Design decisions:
    - Integer surrogate keys for tickets/trades/reviews; chat-platform ids are BIGINT.
    - Generic column types so the same models run on PostgreSQL (JSONB) and SQLite.
    - CHECK constraints on status columns to reject invalid enum values at DB level.
    - UNIQUE constraints carry the exclusivity rules: one claim per ticket,
      one trade per (ticket, user), one review per (ticket, reviewer).
    - No ORM relationships between aggregates; repositories query children
      explicitly so a session never serves a stale child collection.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from statemachine.exceptions import TransitionNotAllowed

from trade_mediator.domain.enums import ParticipantRole, TicketStatus, TradeStatus
from trade_mediator.domain.exceptions import InvalidTradeStateError
from trade_mediator.domain.state_machine import TradeStateMachine

JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Helper: auto-set updated_at on flush
# ---------------------------------------------------------------------------
def _set_updated_at(mapper, connection, target):  # noqa: ANN001
    """SQLAlchemy event listener that updates `updated_at` before flush."""
    if hasattr(target, "updated_at"):
        target.updated_at = _utcnow()


# ---------------------------------------------------------------------------
# 1. members
# ---------------------------------------------------------------------------
class Member(Base):
    """A chat-platform user known to the service."""

    __tablename__ = "members"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<Member user_id={self.user_id}>"


# ---------------------------------------------------------------------------
# 2. middlemen
# ---------------------------------------------------------------------------
class Middleman(Base):
    """A registered intermediary allowed to claim tickets."""

    __tablename__ = "middlemen"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    display_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    external_username: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
        comment="Game-platform username shown on the profile card",
    )
    external_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<Middleman user_id={self.user_id} name={self.display_name}>"


# ---------------------------------------------------------------------------
# 3. tickets
# ---------------------------------------------------------------------------
class Ticket(Base):
    """An open case between an owner and its participants, backed by a channel."""

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel_id: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Chat channel backing this ticket",
    )
    owner_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("members.user_id"),
        nullable=False,
    )
    type: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(
        String(12),
        nullable=False,
        default=TicketStatus.OPEN.value,
        comment="Current lifecycle state (guarded by TicketStateMachine)",
    )
    context: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )
    assigned_middleman_id: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
        default=None,
        comment="Denormalized from middleman_claims",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('OPEN', 'CLAIMED', 'CONFIRMED', 'CLOSED')",
            name="ck_ticket_valid_status",
        ),
        CheckConstraint(
            "type IN ('BUY', 'SELL', 'ROBUX', 'NITRO', 'DECOR', 'MM')",
            name="ck_ticket_valid_type",
        ),
        Index("idx_ticket_owner_status", "owner_id", "status"),
        Index("idx_ticket_status", "status"),
    )

    @property
    def ticket_status(self) -> TicketStatus:
        return TicketStatus(self.status)

    def is_owned_by(self, user_id: int) -> bool:
        return self.owner_id == user_id

    def __repr__(self) -> str:
        return f"<Ticket id={self.id} status={self.status} channel={self.channel_id}>"


# ---------------------------------------------------------------------------
# 4. ticket_participants
# ---------------------------------------------------------------------------
class TicketParticipant(Base):
    """A member of a ticket. `role` is free text; read it through `parsed_role`."""

    __tablename__ = "ticket_participants"

    ticket_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tickets.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    role: Mapped[str | None] = mapped_column(String(16), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    @property
    def parsed_role(self) -> ParticipantRole | None:
        return ParticipantRole.parse(self.role)

    def __repr__(self) -> str:
        return f"<TicketParticipant ticket={self.ticket_id} user={self.user_id} role={self.role}>"


# ---------------------------------------------------------------------------
# 5. trades
# ---------------------------------------------------------------------------
class Trade(Base):
    """One party's declared offer within a ticket.

    Status changes go through TradeStateMachine; the methods below are the only
    places that write `status` or `confirmed`.
    """

    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    external_username: Mapped[str | None] = mapped_column(String(50), nullable=True)
    external_user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(
        String(12),
        nullable=False,
        default=TradeStatus.PENDING.value,
    )
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    items: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment='Ordered offer items, e.g. [{"name": ..., "quantity": 1, "metadata": {...}}]',
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("ticket_id", "user_id", name="uq_trade_ticket_user"),
        CheckConstraint(
            "status IN ('PENDING', 'ACTIVE', 'COMPLETED', 'CANCELLED')",
            name="ck_trade_valid_status",
        ),
        Index("idx_trade_ticket", "ticket_id"),
    )

    # --- Behaviour ---

    @property
    def trade_status(self) -> TradeStatus:
        return TradeStatus(self.status)

    @property
    def offer_description(self) -> str | None:
        """Description of the first item, as entered by the party."""
        if not self.items:
            return None
        metadata = self.items[0].get("metadata") or {}
        description = metadata.get("description")
        return description.strip() if isinstance(description, str) else None

    def _fire(self, event_name: str, attempted: TradeStatus) -> None:
        sm = TradeStateMachine(current_status=self.status)
        try:
            getattr(sm, event_name)()
        except TransitionNotAllowed as exc:
            raise InvalidTradeStateError(self.status, attempted.value) from exc
        self.status = sm.status

    def confirm(self) -> None:
        """Arm the trade. PENDING becomes ACTIVE; ACTIVE stays ACTIVE."""
        self._fire("confirm", TradeStatus.ACTIVE)
        self.confirmed = True

    def reset_confirmation(self) -> None:
        """Disarm after a data edit: always PENDING and unconfirmed."""
        self._fire("reset", TradeStatus.PENDING)
        self.confirmed = False

    def can_be_completed(self) -> bool:
        return self.confirmed and self.status == TradeStatus.ACTIVE.value

    def complete(self) -> None:
        if not self.can_be_completed():
            raise InvalidTradeStateError(self.status, TradeStatus.COMPLETED.value)
        self._fire("complete", TradeStatus.COMPLETED)

    def replace_items(self, items: list[dict]) -> None:
        if self.status == TradeStatus.CANCELLED.value:
            raise InvalidTradeStateError(self.status, self.status)
        # New list so SQLAlchemy sees the JSON column as changed
        self.items = [dict(item) for item in items]

    def __repr__(self) -> str:
        return (
            f"<Trade id={self.id} ticket={self.ticket_id} user={self.user_id} "
            f"status={self.status} confirmed={self.confirmed}>"
        )


# ---------------------------------------------------------------------------
# 6. middleman_claims
# ---------------------------------------------------------------------------
class MiddlemanClaim(Base):
    """The single intermediary owning a ticket, plus close metadata."""

    __tablename__ = "middleman_claims"

    ticket_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tickets.id", ondelete="CASCADE"),
        primary_key=True,
        autoincrement=False,
        comment="Primary key doubles as the claim-exclusivity constraint",
    )
    middleman_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("middlemen.user_id"),
        nullable=False,
    )
    claimed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    forced_close: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    panel_message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    finalization_message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    review_requested_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (Index("idx_claim_middleman", "middleman_id"),)

    @property
    def is_closed(self) -> bool:
        return self.closed_at is not None

    def __repr__(self) -> str:
        return f"<MiddlemanClaim ticket={self.ticket_id} middleman={self.middleman_id}>"


# ---------------------------------------------------------------------------
# 7. trade_finalizations (the ledger)
# ---------------------------------------------------------------------------
class TradeFinalization(Base):
    """One party's standing agreement to close. Presence is the vote."""

    __tablename__ = "trade_finalizations"

    ticket_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tickets.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    confirmed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    def __repr__(self) -> str:
        return f"<TradeFinalization ticket={self.ticket_id} user={self.user_id}>"


# ---------------------------------------------------------------------------
# 8. middleman_reviews
# ---------------------------------------------------------------------------
class MiddlemanReview(Base):
    """A reviewer's rating of the intermediary who closed a ticket."""

    __tablename__ = "middleman_reviews"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("tickets.id", ondelete="CASCADE"),
        nullable=False,
    )
    reviewer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    middleman_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    rating: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    __table_args__ = (
        UniqueConstraint("ticket_id", "reviewer_id", name="uq_review_ticket_reviewer"),
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating_range"),
        Index("idx_review_middleman", "middleman_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<MiddlemanReview id={self.id} ticket={self.ticket_id} "
            f"middleman={self.middleman_id} rating={self.rating}>"
        )


# ---------------------------------------------------------------------------
# 9. member_trade_stats
# ---------------------------------------------------------------------------
class MemberTradeStats(Base):
    """Completed-trade counter per user. Only the close transaction writes it."""

    __tablename__ = "member_trade_stats"

    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    trades_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_trade_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    partner_tag: Mapped[str | None] = mapped_column(String(100), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )

    __table_args__ = (
        CheckConstraint("trades_completed >= 0", name="ck_stats_non_negative"),
        Index("idx_stats_trades_completed", "trades_completed"),
    )

    def __repr__(self) -> str:
        return f"<MemberTradeStats user={self.user_id} completed={self.trades_completed}>"


# ---------------------------------------------------------------------------
# Register the auto-update listener for updated_at
# ---------------------------------------------------------------------------
for _model in (Middleman, Trade, MemberTradeStats):
    event.listen(_model, "before_update", _set_updated_at)
