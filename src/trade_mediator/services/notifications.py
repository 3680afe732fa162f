"""Default adapters for the notification surface and the card renderer.

ChannelNotifier turns each Notification into a short message in the ticket
channel (or the reviews channel for published reviews). NullCardRenderer never
produces an image, so every message goes out text-only.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from trade_mediator.domain.enums import NotificationKind
from trade_mediator.domain.ports import OutboundMessage
from trade_mediator.logging_config import get_logger

if TYPE_CHECKING:
    from trade_mediator.domain.ports import (
        Attachment,
        ChatPlatform,
        MiddlemanCardRequest,
        Notification,
        TradeCardRequest,
    )

logger = get_logger(__name__)


def _mention_line(user_ids: tuple[int, ...]) -> str:
    return " ".join(f"<@{user_id}>" for user_id in user_ids)


_TITLES: dict[NotificationKind, str] = {
    NotificationKind.TICKET_OPENED: "Ticket opened",
    NotificationKind.TICKET_CLAIMED: "Middleman assigned",
    NotificationKind.TRADES_CONFIRMED: "Both parties confirmed",
    NotificationKind.FINALIZATION_COMPLETED: "Trade confirmed",
    NotificationKind.TICKET_CLOSED: "Ticket closed",
    NotificationKind.REVIEW_PUBLISHED: "New middleman review",
}


def render_notification(notification: Notification) -> OutboundMessage:
    """Plain text body for each outcome."""
    data = notification.data
    kind = notification.kind

    if kind is NotificationKind.TICKET_OPENED:
        body = "Register your trade data with the panel below. A middleman will claim the ticket soon."
    elif kind is NotificationKind.TICKET_CLAIMED:
        body = f"<@{data.get('middleman_id')}> claimed this ticket."
    elif kind is NotificationKind.TRADES_CONFIRMED:
        body = "Every party confirmed their trade. The ticket is ready for the middleman."
    elif kind is NotificationKind.FINALIZATION_COMPLETED:
        body = "All traders confirmed the exchange. The middleman can close the ticket when ready."
    elif kind is NotificationKind.TICKET_CLOSED:
        body = "The trade was marked as completed."
    else:
        stars = "⭐" * int(data.get("rating", 0))
        average = data.get("average_rating")
        body = (
            f"{stars} for <@{data.get('middleman_id')}> on ticket #{notification.ticket_id}."
            + (f" Average: {average:.2f} / 5." if average is not None else "")
        )
        if data.get("comment"):
            body += f"\n> {data['comment']}"

    return OutboundMessage(
        title=_TITLES[kind],
        description=body,
        content=_mention_line(notification.mentions) or None,
        mentions=notification.mentions,
    )


class ChannelNotifier:
    """Notifier that posts into the channel named by the notification."""

    def __init__(self, chat: ChatPlatform, reviews_channel_id: str | None = None) -> None:
        self._chat = chat
        self._reviews_channel_id = reviews_channel_id or None

    async def publish(self, notification: Notification) -> None:
        channel_id = notification.channel_id
        if notification.kind is NotificationKind.REVIEW_PUBLISHED and self._reviews_channel_id:
            channel_id = self._reviews_channel_id
        if channel_id is None:
            logger.debug("notify.skipped", kind=notification.kind.value, reason="no channel")
            return
        await self._chat.send_message(channel_id, render_notification(notification))


class NullCardRenderer:
    """CardRenderer that never renders anything."""

    async def render_trade_card(self, request: TradeCardRequest) -> Attachment | None:
        return None

    async def render_middleman_card(self, request: MiddlemanCardRequest) -> Attachment | None:
        return None
