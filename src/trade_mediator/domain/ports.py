"""Adapter Ports.

Typed request structs and the Protocols the lifecycle engine depends on.
Concrete adapters (Discord REST, Redis, card renderers) only need to match the
shape, so they don't inherit from anything here.

The domain layer has ZERO imports from httpx, redis, or any chat SDK.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from trade_mediator.domain.enums import NotificationKind


# ---------------------------------------------------------------------------
# Chat-platform structs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PermissionGrant:
    """Channel access for one member.

    Attributes:
        user_id: Member the grant applies to.
        view: May see the channel.
        send: May post messages.
        read_history: May read earlier messages.
        manage: May manage the channel (bot only).
    """

    user_id: int
    view: bool = True
    send: bool = True
    read_history: bool = True
    manage: bool = False


@dataclass(frozen=True)
class ChannelSpec:
    """Everything needed to create a private ticket channel."""

    guild_id: int
    name: str
    grants: tuple[PermissionGrant, ...]
    topic: str | None = None
    parent_id: str | None = None
    reason: str | None = None


@dataclass(frozen=True)
class ActionControl:
    """An interactive button attached to a message."""

    custom_id: str
    label: str
    style: str = "primary"
    disabled: bool = False


@dataclass(frozen=True)
class Attachment:
    """A rendered image shipped with a message."""

    filename: str
    content: bytes
    content_type: str = "image/png"


@dataclass(frozen=True)
class MessageField:
    name: str
    value: str
    inline: bool = False


@dataclass(frozen=True)
class OutboundMessage:
    """A status summary plus optional controls and attachment.

    `content` is plain text outside the summary block (mentions go here);
    `title`/`description`/`fields` form the summary itself.
    """

    title: str
    description: str = ""
    fields: tuple[MessageField, ...] = ()
    controls: tuple[ActionControl, ...] = ()
    attachment: Attachment | None = None
    content: str | None = None
    mentions: tuple[int, ...] = ()

    def without_attachment(self) -> OutboundMessage:
        return OutboundMessage(
            title=self.title,
            description=self.description,
            fields=self.fields,
            controls=self.controls,
            content=self.content,
            mentions=self.mentions,
        )


# ---------------------------------------------------------------------------
# Card renderer structs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TradeCardRequest:
    ticket_id: int
    ticket_type: str
    owner_label: str
    partner_label: str


@dataclass(frozen=True)
class MiddlemanCardRequest:
    middleman_id: int
    display_name: str
    average_rating: float | None
    review_count: int
    closed_tickets: int


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Notification:
    """A high-level outcome for the adapter layer to announce.

    Attributes:
        kind: What happened.
        ticket_id: Ticket the outcome belongs to.
        channel_id: Ticket channel (None when the outcome is not channel-bound).
        mentions: Users to ping.
        data: Kind-specific extras (e.g. middleman_id, rating).
    """

    kind: NotificationKind
    ticket_id: int
    channel_id: str | None = None
    mentions: tuple[int, ...] = ()
    data: dict = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ChatPlatform(Protocol):
    """Channel and message operations on the chat platform.

    Concrete implementations:
        - infrastructure/discord_client.py  (Discord REST API)
    """

    async def create_channel(self, spec: ChannelSpec) -> str:
        """Create a channel and return its id."""
        ...

    async def delete_channel(self, channel_id: str, reason: str | None = None) -> None: ...

    async def send_message(self, channel_id: str, message: OutboundMessage) -> str:
        """Post a message and return its id."""
        ...

    async def edit_message(
        self, channel_id: str, message_id: str, message: OutboundMessage
    ) -> None:
        """Edit a message in place. Raises if the message no longer exists."""
        ...

    async def set_member_permissions(
        self, channel_id: str, user_id: int, grant: PermissionGrant
    ) -> None: ...

    async def fetch_display_name(self, guild_id: int, user_id: int) -> str | None:
        """Cosmetic lookup. Returns None on any failure."""
        ...


@runtime_checkable
class CardRenderer(Protocol):
    """Optional decorative image renderer. Returning None means text-only."""

    async def render_trade_card(self, request: TradeCardRequest) -> Attachment | None: ...

    async def render_middleman_card(
        self, request: MiddlemanCardRequest
    ) -> Attachment | None: ...


@runtime_checkable
class Notifier(Protocol):
    async def publish(self, notification: Notification) -> None: ...


@runtime_checkable
class KeyValueStore(Protocol):
    """Shared string store with optional expiry (panel ids, cooldowns, invites)."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...
