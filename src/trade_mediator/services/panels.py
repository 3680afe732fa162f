"""Status panels: one live "current state" message per channel and panel kind.

StatusPanelRenderer owns the idempotency contract:
    - a stored message id is edited in place;
    - if the edit fails (message deleted, access revoked) a new message is sent
      and the stored id is overwritten;
    - with no stored id, a new message is sent and its id stored.

The builders below turn a ticket snapshot into the OutboundMessage a panel
shows. They are pure; label lookup is the only I/O and degrades to a
fallback label.
"""

from __future__ import annotations

import asyncio
import enum
from typing import TYPE_CHECKING

from trade_mediator.domain.enums import TicketStatus
from trade_mediator.domain.ports import ActionControl, MessageField, OutboundMessage
from trade_mediator.logging_config import get_logger

if TYPE_CHECKING:
    from trade_mediator.domain.ports import ChatPlatform, KeyValueStore
    from trade_mediator.domain.quorum import QuorumStatus
    from trade_mediator.infrastructure.database.orm_models import Trade
    from trade_mediator.services.results import TicketOverview

logger = get_logger(__name__)


class PanelKind(enum.StrEnum):
    TRADE = "trade"
    FINALIZATION = "finalization"


def panel_key(kind: PanelKind, channel_id: str) -> str:
    return f"panel:{kind.value}:{channel_id}"


def fallback_label(user_id: int) -> str:
    return f"User {user_id}"


async def resolve_labels(
    chat: ChatPlatform,
    guild_id: int,
    user_ids: list[int],
) -> dict[int, str]:
    """Display names for cosmetic labels. Never raises."""

    async def _one(user_id: int) -> str:
        try:
            name = await chat.fetch_display_name(guild_id, user_id)
        except Exception:
            logger.warning("panel.display_name_failed", guild_id=guild_id, user_id=user_id)
            name = None
        return name or fallback_label(user_id)

    unique_ids = list(dict.fromkeys(user_ids))
    names = await asyncio.gather(*(_one(user_id) for user_id in unique_ids))
    return dict(zip(unique_ids, names, strict=True))


class StatusPanelRenderer:
    """Keeps exactly one live panel message per (channel, kind)."""

    def __init__(self, chat: ChatPlatform, store: KeyValueStore) -> None:
        self._chat = chat
        self._store = store

    async def render(
        self,
        channel_id: str,
        kind: PanelKind,
        message: OutboundMessage,
        known_message_id: str | None = None,
    ) -> str:
        """Edit the live panel or replace it. Returns the live message id.

        Args:
            channel_id: Channel holding the panel.
            kind: Which panel (trade status or finalization).
            message: The panel content.
            known_message_id: Id persisted elsewhere (e.g. on the claim row),
                used when the store has no entry.
        """
        key = panel_key(kind, channel_id)
        message_id = await self._store.get(key) or known_message_id

        if message_id:
            try:
                await self._chat.edit_message(channel_id, message_id, message)
            except Exception as exc:
                logger.warning(
                    "panel.edit_failed",
                    channel_id=channel_id,
                    message_id=message_id,
                    panel=kind.value,
                    error=str(exc),
                )
                await self._store.delete(key)
            else:
                await self._store.set(key, message_id)
                return message_id

        new_id = await self._chat.send_message(channel_id, message)
        await self._store.set(key, new_id)
        logger.info("panel.created", channel_id=channel_id, message_id=new_id, panel=kind.value)
        return new_id

    async def forget(self, channel_id: str, kind: PanelKind) -> None:
        await self._store.delete(panel_key(kind, channel_id))


# ---------------------------------------------------------------------------
# Panel builders
# ---------------------------------------------------------------------------


def trade_data_control_id(ticket_id: int) -> str:
    return f"trade:data:{ticket_id}"


def trade_confirm_control_id(ticket_id: int) -> str:
    return f"trade:confirm:{ticket_id}"


def finalization_confirm_control_id(ticket_id: int) -> str:
    return f"finalization:confirm:{ticket_id}"


def finalization_revoke_control_id(ticket_id: int) -> str:
    return f"finalization:revoke:{ticket_id}"


def review_control_id(ticket_id: int, middleman_id: int) -> str:
    return f"review:{ticket_id}:{middleman_id}"


def _trade_summary(trade: Trade | None) -> str:
    if trade is None:
        return "\n".join(
            [
                "• Username: ❌ Not registered",
                "• Offer: ❌ Not registered",
                "• Confirmation: ⏳ Pending",
            ]
        )
    description = trade.offer_description
    return "\n".join(
        [
            f"• Username: **{trade.external_username or 'Not registered'}**",
            f"• Offer: {description}" if description else "• Offer: ❌ Not registered",
            f"• Confirmation: {'✅ Confirmed' if trade.confirmed else '⏳ Pending'}",
        ]
    )


def build_trade_panel(overview: TicketOverview, labels: dict[int, str]) -> OutboundMessage:
    """Per-party trade data and confirmation state."""
    ticket = overview.ticket
    members = overview.quorum_ids
    ready = ticket.status == TicketStatus.CONFIRMED.value
    fields = tuple(
        MessageField(
            name=labels.get(user_id, fallback_label(user_id)),
            value=_trade_summary(overview.trade_for(user_id)),
        )
        for user_id in members
    )
    everyone_submitted = all(overview.trade_for(user_id) is not None for user_id in members)
    accepts_changes = TicketStatus(ticket.status).accepts_trade_changes

    return OutboundMessage(
        title=f"Trade panel · ticket #{ticket.id}",
        description=(
            "Trade ready for the middleman."
            if ready
            else "Each party registers their offer, then confirms it."
        ),
        fields=fields,
        controls=(
            ActionControl(
                custom_id=trade_data_control_id(ticket.id),
                label="Register data",
                style="secondary",
                disabled=not accepts_changes,
            ),
            ActionControl(
                custom_id=trade_confirm_control_id(ticket.id),
                label="Confirm trade",
                style="success",
                disabled=not (accepts_changes and everyone_submitted),
            ),
        ),
    )


def build_finalization_panel(
    ticket_id: int,
    status: QuorumStatus,
    labels: dict[int, str],
    completed: bool,
) -> OutboundMessage:
    """Each quorum member's ✅/⏳ and the overall state.

    `completed` renders the terminal "closed" state with no controls.
    """
    lines = [
        f"{'✅' if member.confirmed else '⏳'} {labels.get(member.user_id, fallback_label(member.user_id))}"
        for member in status.members
    ]
    if completed:
        description = "Trade finalized. Thank you for using the middleman service."
        controls: tuple[ActionControl, ...] = ()
    elif status.completed:
        description = "Everyone confirmed. The middleman can close the ticket."
        controls = (
            ActionControl(
                custom_id=finalization_revoke_control_id(ticket_id),
                label="Cancel confirmation",
                style="danger",
            ),
        )
    else:
        description = "Every party must confirm before the middleman closes the trade."
        controls = (
            ActionControl(
                custom_id=finalization_confirm_control_id(ticket_id),
                label="Confirm trade",
                style="success",
            ),
            ActionControl(
                custom_id=finalization_revoke_control_id(ticket_id),
                label="Cancel confirmation",
                style="danger",
            ),
        )

    return OutboundMessage(
        title="Trade finalization",
        description=description,
        fields=(
            MessageField(
                name=f"Confirmations ({status.confirmed_count}/{status.size})",
                value="\n".join(lines) or "No participants",
            ),
        ),
        controls=controls,
    )
