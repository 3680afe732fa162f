"""Shared test fixtures for the Trade Mediator test suite.

Provides:
    - In-memory SQLite database (aiosqlite + StaticPool) with all tables
    - In-process fakes for the chat platform, key/value store, notifier and
      card renderer
    - Services wired to those fakes
    - A TicketDriver that walks tickets through the lifecycle for setup
"""

from __future__ import annotations

import itertools
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from trade_mediator.config import Settings
from trade_mediator.domain.ports import Attachment
from trade_mediator.infrastructure.database.engine import build_session_factory
from trade_mediator.infrastructure.database.orm_models import Base
from trade_mediator.services.commands import OpenTicketCommand, SubmitTradeDataCommand
from trade_mediator.services.lifecycle_service import TradeLifecycleService
from trade_mediator.services.middleman_service import MiddlemanService
from trade_mediator.services.review_service import ReviewService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from trade_mediator.domain.ports import (
        ChannelSpec,
        MiddlemanCardRequest,
        Notification,
        OutboundMessage,
        PermissionGrant,
        TradeCardRequest,
    )
    from trade_mediator.services.results import OpenTicketResult

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

GUILD_ID = 400000000000000001
OWNER_ID = 100000000000000001
PARTNER_ID = 200000000000000002
MIDDLEMAN_ID = 300000000000000003
OUTSIDER_ID = 500000000000000005
OBSERVER_ID = 600000000000000006
BOT_ID = 900000000000000009


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeChatPlatform:
    """In-memory ChatPlatform. Failure knobs are plain attributes."""

    def __init__(self) -> None:
        self._ids = itertools.count(700000000000000001)
        self.channels: dict[str, ChannelSpec] = {}
        self.deleted_channels: list[str] = []
        self.messages: dict[str, tuple[str, OutboundMessage]] = {}
        self.sent: list[tuple[str, OutboundMessage]] = []
        self.edits: list[tuple[str, str, OutboundMessage]] = []
        self.permission_grants: list[tuple[str, int, PermissionGrant]] = []
        self.display_names: dict[int, str] = {}

        self.fail_create_channel: Exception | None = None
        self.fail_delete_channel: Exception | None = None
        self.fail_send: Exception | None = None
        self.fail_edit: Exception | None = None
        self.fail_permissions: Exception | None = None
        self.fail_display_names: Exception | None = None

    def _next_id(self) -> str:
        return str(next(self._ids))

    async def create_channel(self, spec: ChannelSpec) -> str:
        if self.fail_create_channel is not None:
            raise self.fail_create_channel
        channel_id = self._next_id()
        self.channels[channel_id] = spec
        return channel_id

    async def delete_channel(self, channel_id: str, reason: str | None = None) -> None:
        if self.fail_delete_channel is not None:
            raise self.fail_delete_channel
        self.channels.pop(channel_id, None)
        self.deleted_channels.append(channel_id)

    async def send_message(self, channel_id: str, message: OutboundMessage) -> str:
        if self.fail_send is not None:
            raise self.fail_send
        message_id = self._next_id()
        self.messages[message_id] = (channel_id, message)
        self.sent.append((channel_id, message))
        return message_id

    async def edit_message(
        self, channel_id: str, message_id: str, message: OutboundMessage
    ) -> None:
        if self.fail_edit is not None:
            raise self.fail_edit
        if message_id not in self.messages:
            raise LookupError(f"Unknown message {message_id}")
        self.messages[message_id] = (channel_id, message)
        self.edits.append((channel_id, message_id, message))

    async def set_member_permissions(
        self, channel_id: str, user_id: int, grant: PermissionGrant
    ) -> None:
        if self.fail_permissions is not None:
            raise self.fail_permissions
        self.permission_grants.append((channel_id, user_id, grant))

    async def fetch_display_name(self, guild_id: int, user_id: int) -> str | None:
        if self.fail_display_names is not None:
            raise self.fail_display_names
        return self.display_names.get(user_id)

    # --- Inspection helpers ---

    def sent_titled(self, title: str) -> list[OutboundMessage]:
        return [message for _, message in self.sent if message.title == title]

    def current(self, message_id: str) -> OutboundMessage:
        return self.messages[message_id][1]


class FakeKeyValueStore:
    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        self.data[key] = value
        self.ttls[key] = ttl_seconds

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)
        self.ttls.pop(key, None)


class FakeNotifier:
    def __init__(self) -> None:
        self.published: list[Notification] = []
        self.fail: Exception | None = None

    async def publish(self, notification: Notification) -> None:
        if self.fail is not None:
            raise self.fail
        self.published.append(notification)

    def kinds(self) -> list[str]:
        return [notification.kind.value for notification in self.published]


class FakeCardRenderer:
    def __init__(self) -> None:
        self.trade_requests: list[TradeCardRequest] = []
        self.middleman_requests: list[MiddlemanCardRequest] = []
        self.fail: Exception | None = None

    async def render_trade_card(self, request: TradeCardRequest) -> Attachment | None:
        if self.fail is not None:
            raise self.fail
        self.trade_requests.append(request)
        return Attachment(filename="trade.png", content=b"\x89PNG")

    async def render_middleman_card(self, request: MiddlemanCardRequest) -> Attachment | None:
        if self.fail is not None:
            raise self.fail
        self.middleman_requests.append(request)
        return Attachment(filename="middleman.png", content=b"\x89PNG")


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with every table created."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """A session for repository tests. Tests commit explicitly when needed."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Service Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        discord_bot_user_id=str(BOT_ID),
        ticket_open_cooldown_seconds=0,
        max_open_tickets_per_user=3,
    )


@pytest.fixture
def chat() -> FakeChatPlatform:
    return FakeChatPlatform()


@pytest.fixture
def store() -> FakeKeyValueStore:
    return FakeKeyValueStore()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def cards() -> FakeCardRenderer:
    return FakeCardRenderer()


@pytest.fixture
def lifecycle(
    session_factory: async_sessionmaker[AsyncSession],
    chat: FakeChatPlatform,
    store: FakeKeyValueStore,
    notifier: FakeNotifier,
    settings: Settings,
    cards: FakeCardRenderer,
) -> TradeLifecycleService:
    return TradeLifecycleService(
        session_factory=session_factory,
        chat=chat,
        store=store,
        notifier=notifier,
        settings=settings,
        card_renderer=cards,
    )


@pytest.fixture
def review_service(
    session_factory: async_sessionmaker[AsyncSession],
    store: FakeKeyValueStore,
    notifier: FakeNotifier,
    settings: Settings,
) -> ReviewService:
    return ReviewService(
        session_factory=session_factory,
        store=store,
        notifier=notifier,
        settings=settings,
    )


@pytest.fixture
def middleman_service(session_factory: async_sessionmaker[AsyncSession]) -> MiddlemanService:
    return MiddlemanService(session_factory)


# ---------------------------------------------------------------------------
# Lifecycle driver
# ---------------------------------------------------------------------------


class TicketDriver:
    """Walks a ticket through the lifecycle with the default parties."""

    def __init__(self, lifecycle: TradeLifecycleService, middlemen: MiddlemanService) -> None:
        self.lifecycle = lifecycle
        self.middlemen = middlemen

    async def register_middleman(self, user_id: int = MIDDLEMAN_ID) -> None:
        await self.middlemen.register(user_id, display_name="Trusty", external_username="trusty_mm")

    async def open(self, owner_id: int = OWNER_ID, partner_id: int = PARTNER_ID) -> OpenTicketResult:
        return await self.lifecycle.open_ticket(
            OpenTicketCommand(
                guild_id=GUILD_ID,
                owner_id=owner_id,
                partner_tag=f"<@{partner_id}>",
            )
        )

    async def submit(self, ticket_id: int, user_id: int, offer: str = "One golden sword") -> None:
        await self.lifecycle.submit_trade_data(
            SubmitTradeDataCommand(
                ticket_id=ticket_id,
                user_id=user_id,
                external_username=f"player{str(user_id)[-3:]}",
                offer_description=offer,
            )
        )

    async def submit_and_confirm_both(self, ticket_id: int) -> None:
        for user_id in (OWNER_ID, PARTNER_ID):
            await self.submit(ticket_id, user_id)
        for user_id in (OWNER_ID, PARTNER_ID):
            await self.lifecycle.confirm_trade(ticket_id, user_id)

    async def claimed_and_confirmed(self) -> int:
        """Open, register, claim and confirm: returns a CONFIRMED ticket id."""
        await self.register_middleman()
        opened = await self.open()
        await self.lifecycle.claim(opened.ticket_id, MIDDLEMAN_ID)
        await self.submit_and_confirm_both(opened.ticket_id)
        return opened.ticket_id

    async def closed(self) -> int:
        ticket_id = await self.claimed_and_confirmed()
        for user_id in (OWNER_ID, PARTNER_ID):
            await self.lifecycle.confirm_finalization(ticket_id, user_id)
        result = await self.lifecycle.close(ticket_id, MIDDLEMAN_ID)
        assert result.closed
        return ticket_id


@pytest.fixture
def driver(lifecycle: TradeLifecycleService, middleman_service: MiddlemanService) -> TicketDriver:
    return TicketDriver(lifecycle, middleman_service)
