"""Database infrastructure — engine, ORM models, and repositories."""

from trade_mediator.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    close_db,
    get_async_session,
    get_session_factory,
    init_db,
)
from trade_mediator.infrastructure.database.orm_models import (
    Base,
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
from trade_mediator.infrastructure.database.repositories import (
    ClaimRepository,
    FinalizationRepository,
    MemberRepository,
    MemberStatsRepository,
    MiddlemanRepository,
    ReviewRepository,
    TicketRepository,
    TradeRepository,
)

__all__ = [
    "Base",
    "Member",
    "MemberTradeStats",
    "Middleman",
    "MiddlemanClaim",
    "MiddlemanReview",
    "Ticket",
    "TicketParticipant",
    "Trade",
    "TradeFinalization",
    "ClaimRepository",
    "FinalizationRepository",
    "MemberRepository",
    "MemberStatsRepository",
    "MiddlemanRepository",
    "ReviewRepository",
    "TicketRepository",
    "TradeRepository",
    "build_engine",
    "build_session_factory",
    "get_session_factory",
    "get_async_session",
    "init_db",
    "close_db",
]
