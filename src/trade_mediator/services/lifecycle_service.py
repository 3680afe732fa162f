"""Trade Lifecycle Service — core business logic for the ticket lifecycle.

This is the application layer that coordinates between:
    - Domain state machines (ticket and trade transition guards)
    - Quorum rules (who must agree before close)
    - Repositories (one unit of work per operation)
    - Status panels, notifications and the chat platform

Every operation reads what it needs to decide and writes inside a single
transaction. Chat-platform side effects run after the commit; when one of
those fails it is logged and the committed state stands. Opening a ticket is
the exception: the channel has to exist before the ticket row, so a failure
after channel creation deletes both again.
"""

from __future__ import annotations

import math
import re
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from statemachine.exceptions import TransitionNotAllowed

from trade_mediator.domain.enums import (
    NotificationKind,
    ParticipantRole,
    TicketStatus,
    TradeStatus,
)
from trade_mediator.domain.exceptions import (
    ChannelCleanupError,
    ChannelCreationError,
    InfrastructureError,
    InvalidStateTransitionError,
    TicketAlreadyClaimedError,
    TicketClosedError,
    TicketCooldownError,
    TicketNotFoundError,
    TooManyOpenTicketsError,
    TradeDataNotFoundError,
    TradeLockedError,
    TradesNotConfirmedError,
    UnauthorizedActionError,
)
from trade_mediator.domain.ports import (
    ActionControl,
    ChannelSpec,
    MessageField,
    MiddlemanCardRequest,
    Notification,
    OutboundMessage,
    PermissionGrant,
    TradeCardRequest,
)
from trade_mediator.domain.quorum import (
    is_quorum_complete,
    quorum_members,
    quorum_status,
    requires_finalization,
)
from trade_mediator.domain.state_machine import TicketStateMachine
from trade_mediator.infrastructure.database.orm_models import Ticket
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
from trade_mediator.logging_config import get_logger, ticket_log_context
from trade_mediator.services.commands import build_trade_item
from trade_mediator.services.notifications import NullCardRenderer
from trade_mediator.services.panels import (
    PanelKind,
    StatusPanelRenderer,
    build_finalization_panel,
    build_trade_panel,
    resolve_labels,
    review_control_id,
)
from trade_mediator.services.results import (
    ClaimResult,
    CloseResult,
    ClosureRequestResult,
    ConfirmTradeResult,
    FinalizationResult,
    OpenTicketResult,
    TicketOverview,
)
from trade_mediator.services.review_invites import ReviewInviteStore

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from trade_mediator.config import Settings
    from trade_mediator.domain.ports import (
        Attachment,
        CardRenderer,
        ChatPlatform,
        KeyValueStore,
        Notifier,
    )
    from trade_mediator.infrastructure.database.orm_models import (
        MiddlemanClaim,
        Trade,
    )
    from trade_mediator.services.commands import (
        OpenTicketCommand,
        SubmitTradeDataCommand,
    )

logger = get_logger(__name__)


def cooldown_key(user_id: int) -> str:
    return f"cooldown:ticket-open:{user_id}"


def channel_name(ticket_type: str, owner_label: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", owner_label.lower()).strip("-") or "ticket"
    return f"{ticket_type.lower()}-{slug}"[:90]


def rating_label(average: float | None, count: int) -> str:
    if average is None or count == 0:
        return "No reviews yet"
    stars = round(average)
    return f"{'⭐' * stars}{'☆' * (5 - stars)} ({average:.2f} / 5 · {count} reviews)"


class TradeLifecycleService:
    """Drives tickets from open to close."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        chat: ChatPlatform,
        store: KeyValueStore,
        notifier: Notifier,
        settings: Settings,
        card_renderer: CardRenderer | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._chat = chat
        self._store = store
        self._notifier = notifier
        self._settings = settings
        self._cards = card_renderer or NullCardRenderer()
        self._panels = StatusPanelRenderer(chat, store)
        self._invites = ReviewInviteStore(store, settings.review_invite_ttl_seconds)

    # ------------------------------------------------------------------
    # Open
    # ------------------------------------------------------------------

    async def open_ticket(self, command: OpenTicketCommand) -> OpenTicketResult:
        """Create the channel, then the ticket with its OWNER and PARTNER rows."""
        partner_id = command.partner_id
        owner_id = command.owner_id
        limit = self._settings.max_open_tickets_per_user

        with ticket_log_context(actor_id=owner_id, operation="open_ticket"):
            await self._check_cooldown(owner_id)

            async with self._session_factory() as session:
                open_count = await TicketRepository(session).count_open_by_owner(owner_id)
            if open_count >= limit:
                logger.info("ticket.open_rejected", reason="limit", open_count=open_count)
                raise TooManyOpenTicketsError(limit)

            labels = await resolve_labels(self._chat, command.guild_id, [owner_id, partner_id])
            channel_id = await self._create_ticket_channel(command, partner_id, labels)

            ticket_id: int | None = None
            try:
                ticket_id = await self._persist_new_ticket(command, partner_id, channel_id)
                await self._post_welcome(command, ticket_id, partner_id, channel_id, labels)
                panel_message_id = await self._render_trade_panel(ticket_id)
            except Exception as exc:
                await self._compensate_failed_open(channel_id, ticket_id, exc)
                raise

            await self._after_commit("cooldown", self._start_cooldown(owner_id))
            logger.info(
                "ticket.opened",
                ticket_id=ticket_id,
                partner_id=partner_id,
                channel_id=channel_id,
                type=command.ticket_type.value,
            )
            await self._notify(
                Notification(
                    kind=NotificationKind.TICKET_OPENED,
                    ticket_id=ticket_id,
                    channel_id=channel_id,
                    mentions=(owner_id, partner_id),
                )
            )
            return OpenTicketResult(
                ticket_id=ticket_id,
                channel_id=channel_id,
                partner_id=partner_id,
                panel_message_id=panel_message_id,
            )

    async def _check_cooldown(self, user_id: int) -> None:
        seconds = self._settings.ticket_open_cooldown_seconds
        if seconds <= 0:
            return
        raw = await self._store.get(cooldown_key(user_id))
        if raw is None:
            return
        try:
            last_opened = float(raw)
        except ValueError:
            logger.warning("ticket.cooldown_unreadable", value=raw)
            return
        remaining = seconds - (time.time() - last_opened)
        if remaining > 0:
            logger.info("ticket.open_rejected", reason="cooldown", remaining=remaining)
            raise TicketCooldownError(math.ceil(remaining))

    async def _start_cooldown(self, user_id: int) -> None:
        seconds = self._settings.ticket_open_cooldown_seconds
        if seconds > 0:
            await self._store.set(cooldown_key(user_id), str(time.time()), ttl_seconds=seconds)

    async def _create_ticket_channel(
        self,
        command: OpenTicketCommand,
        partner_id: int,
        labels: dict[int, str],
    ) -> str:
        grants = [PermissionGrant(user_id=command.owner_id), PermissionGrant(user_id=partner_id)]
        if self._settings.discord_bot_user_id:
            grants.append(PermissionGrant(user_id=int(self._settings.discord_bot_user_id), manage=True))

        spec = ChannelSpec(
            guild_id=command.guild_id,
            name=channel_name(command.ticket_type.value, labels[command.owner_id]),
            grants=tuple(grants),
            topic=f"{command.ticket_type.value} trade between <@{command.owner_id}> and <@{partner_id}>",
            parent_id=self._settings.discord_ticket_category_id or None,
            reason="Middleman ticket opened",
        )
        try:
            return await self._chat.create_channel(spec)
        except Exception as exc:
            logger.exception("ticket.channel_create_failed", guild_id=command.guild_id)
            raise ChannelCreationError(str(exc)) from exc

    async def _persist_new_ticket(
        self,
        command: OpenTicketCommand,
        partner_id: int,
        channel_id: str,
    ) -> int:
        """Insert the ticket under the owner's member-row lock so the cap holds."""
        limit = self._settings.max_open_tickets_per_user
        async with self._session_factory.begin() as session:
            members = MemberRepository(session)
            tickets = TicketRepository(session)

            await members.ensure_exists([command.owner_id, partner_id])
            await members.lock(command.owner_id)
            if await tickets.count_open_by_owner(command.owner_id) >= limit:
                raise TooManyOpenTicketsError(limit)

            ticket = await tickets.create(
                Ticket(
                    guild_id=command.guild_id,
                    channel_id=channel_id,
                    owner_id=command.owner_id,
                    type=command.ticket_type.value,
                    status=TicketStatus.OPEN.value,
                    context=command.context,
                )
            )
            await tickets.add_participants(
                ticket.id,
                [
                    (command.owner_id, ParticipantRole.OWNER),
                    (partner_id, ParticipantRole.PARTNER),
                ],
            )
            return ticket.id

    async def _post_welcome(
        self,
        command: OpenTicketCommand,
        ticket_id: int,
        partner_id: int,
        channel_id: str,
        labels: dict[int, str],
    ) -> None:
        card = await self._safe_card(
            self._cards.render_trade_card(
                TradeCardRequest(
                    ticket_id=ticket_id,
                    ticket_type=command.ticket_type.value,
                    owner_label=labels[command.owner_id],
                    partner_label=labels[partner_id],
                )
            ),
            ticket_id=ticket_id,
        )
        await self._chat.send_message(
            channel_id,
            OutboundMessage(
                title=f"Middleman ticket #{ticket_id}",
                description=(
                    "Both parties register what they offer with the panel below "
                    "and confirm it. A middleman will claim the ticket and close "
                    "the trade once everyone agrees."
                ),
                fields=(
                    MessageField(name="Owner", value=f"<@{command.owner_id}>", inline=True),
                    MessageField(name="Partner", value=f"<@{partner_id}>", inline=True),
                    MessageField(name="Type", value=command.ticket_type.value, inline=True),
                ),
                content=f"<@{command.owner_id}> <@{partner_id}>",
                mentions=(command.owner_id, partner_id),
                attachment=card,
            ),
        )

    async def _compensate_failed_open(
        self,
        channel_id: str,
        ticket_id: int | None,
        original: BaseException,
    ) -> None:
        """Undo a half-finished open. Raises ChannelCleanupError if undoing fails."""
        logger.warning(
            "ticket.open_compensating",
            channel_id=channel_id,
            ticket_id=ticket_id,
            error=repr(original),
        )
        cleanup_error: Exception | None = None

        if ticket_id is not None:
            try:
                async with self._session_factory.begin() as session:
                    await TicketRepository(session).delete(ticket_id)
            except Exception as exc:
                logger.exception("ticket.open_cleanup_row_failed", ticket_id=ticket_id)
                cleanup_error = exc

        try:
            await self._chat.delete_channel(channel_id, reason="Ticket creation failed")
            await self._panels.forget(channel_id, PanelKind.TRADE)
        except Exception as exc:
            logger.exception("ticket.open_cleanup_channel_failed", channel_id=channel_id)
            cleanup_error = cleanup_error or exc

        if cleanup_error is not None:
            raise ChannelCleanupError(channel_id, original, cleanup_error) from cleanup_error

    # ------------------------------------------------------------------
    # Trade data and per-trade confirmation
    # ------------------------------------------------------------------

    async def submit_trade_data(self, command: SubmitTradeDataCommand) -> Trade:
        """Create or replace the caller's trade. Any change disarms confirmations."""
        command = command.validated(offer_max_length=self._settings.trade_offer_max_length)
        item = build_trade_item(command.offer_description, self._settings.trade_item_name_max_length)

        with ticket_log_context(
            ticket_id=command.ticket_id, actor_id=command.user_id, operation="submit_trade_data"
        ):
            async with self._session_factory.begin() as session:
                ticket = await self._get_ticket_or_raise(session, command.ticket_id, for_update=True)
                self._ensure_accepts_trade_changes(ticket)
                await self._ensure_participant(session, ticket, command.user_id, "trade:data")

                trades = TradeRepository(session)
                trade = await trades.get_for_user(ticket.id, command.user_id)
                if trade is None:
                    trade = await trades.create(
                        ticket_id=ticket.id,
                        user_id=command.user_id,
                        external_username=command.external_username,
                        items=[item],
                    )
                    created = True
                else:
                    trade.external_username = command.external_username
                    trade.replace_items([item])
                    trade.reset_confirmation()
                    await trades.save(trade)
                    created = False

                cleared = await FinalizationRepository(session).reset(ticket.id)

            logger.info(
                "trade.data_registered" if created else "trade.data_updated",
                trade_id=trade.id,
                finalizations_cleared=cleared,
            )
            await self._refresh_trade_panel(ticket.id)
            return trade

    async def confirm_trade(self, ticket_id: int, user_id: int) -> ConfirmTradeResult:
        """Arm the caller's trade. Repeating it is a no-op reported as already_confirmed."""
        with ticket_log_context(ticket_id=ticket_id, actor_id=user_id, operation="confirm_trade"):
            async with self._session_factory.begin() as session:
                ticket = await self._get_ticket_or_raise(session, ticket_id, for_update=True)
                if ticket.status == TicketStatus.CLOSED.value:
                    raise TicketClosedError(ticket.id)
                await self._ensure_participant(session, ticket, user_id, "trade:confirm")

                trades = TradeRepository(session)
                trade = await trades.get_for_user(ticket.id, user_id)
                if trade is None:
                    raise TradeDataNotFoundError(ticket.id, user_id)

                already_confirmed = trade.confirmed
                if not already_confirmed:
                    self._ensure_accepts_trade_changes(ticket)
                    trade.confirm()
                    await trades.save(trade)

                overview = await self._load_overview(session, ticket)
                advanced = False
                if ticket.status == TicketStatus.CLAIMED.value and self._all_trades_confirmed(overview):
                    await self._advance(session, ticket, "confirm_trades")
                    advanced = True

            ticket_confirmed = ticket.status == TicketStatus.CONFIRMED.value
            logger.info(
                "trade.confirmed",
                already_confirmed=already_confirmed,
                ticket_confirmed=ticket_confirmed,
            )
            await self._refresh_trade_panel(ticket.id)
            if advanced:
                await self._notify(
                    Notification(
                        kind=NotificationKind.TRADES_CONFIRMED,
                        ticket_id=ticket.id,
                        channel_id=ticket.channel_id,
                        mentions=tuple(overview.quorum_ids),
                    )
                )
            return ConfirmTradeResult(
                ticket_confirmed=ticket_confirmed,
                already_confirmed=already_confirmed,
            )

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def claim(self, ticket_id: int, middleman_id: int) -> ClaimResult:
        """Assign the ticket to one middleman. A second claim always fails."""
        with ticket_log_context(ticket_id=ticket_id, actor_id=middleman_id, operation="claim"):
            async with self._session_factory.begin() as session:
                ticket = await self._get_ticket_or_raise(session, ticket_id, for_update=True)
                if ticket.status == TicketStatus.CLOSED.value:
                    raise TicketClosedError(ticket.id)

                middleman = await MiddlemanRepository(session).get(middleman_id)
                if middleman is None:
                    raise UnauthorizedActionError("middleman:claim")

                if ticket.status != TicketStatus.OPEN.value or ticket.assigned_middleman_id:
                    logger.info("claim.rejected", reason="not_open", status=ticket.status)
                    raise TicketAlreadyClaimedError(ticket.id)

                if not await ClaimRepository(session).create_if_absent(ticket.id, middleman_id):
                    logger.info("claim.rejected_duplicate")
                    raise TicketAlreadyClaimedError(ticket.id)

                await self._advance(session, ticket, "claim")
                await TicketRepository(session).assign_middleman(ticket, middleman_id)

                overview = await self._load_overview(session, ticket)
                advanced = False
                if self._all_trades_confirmed(overview):
                    await self._advance(session, ticket, "confirm_trades")
                    advanced = True

                review_count, rating_sum = await ReviewRepository(session).rating_summary(
                    middleman_id
                )
                closed_tickets = await TicketRepository(session).count_closed_by_middleman(
                    middleman_id
                )
                middleman_name = middleman.display_name
                external_username = middleman.external_username

            logger.info("ticket.claimed", status=ticket.status)

            try:
                await self._chat.set_member_permissions(
                    ticket.channel_id,
                    middleman_id,
                    PermissionGrant(user_id=middleman_id),
                )
            except Exception as exc:
                logger.exception("claim.permission_grant_failed", channel_id=ticket.channel_id)
                raise InfrastructureError(
                    message="The middleman could not be given access to the ticket channel.",
                    code="PERMISSION_GRANT_FAILED",
                    details={"channel_id": ticket.channel_id, "reason": str(exc)},
                ) from exc

            average = rating_sum / review_count if review_count else None
            await self._after_commit(
                "claim_announcement",
                self._announce_claim(
                    ticket,
                    middleman_id,
                    middleman_name,
                    external_username,
                    average,
                    review_count,
                    closed_tickets,
                ),
            )
            await self._refresh_trade_panel(ticket.id)
            await self._notify(
                Notification(
                    kind=NotificationKind.TICKET_CLAIMED,
                    ticket_id=ticket.id,
                    channel_id=ticket.channel_id,
                    mentions=(middleman_id,),
                    data={"middleman_id": middleman_id},
                )
            )
            if advanced:
                await self._notify(
                    Notification(
                        kind=NotificationKind.TRADES_CONFIRMED,
                        ticket_id=ticket.id,
                        channel_id=ticket.channel_id,
                        mentions=tuple(overview.quorum_ids),
                    )
                )
            return ClaimResult(
                ticket_id=ticket.id,
                middleman_id=middleman_id,
                status=TicketStatus(ticket.status),
            )

    async def _announce_claim(
        self,
        ticket: Ticket,
        middleman_id: int,
        middleman_name: str | None,
        external_username: str | None,
        average: float | None,
        review_count: int,
        closed_tickets: int,
    ) -> None:
        card = await self._safe_card(
            self._cards.render_middleman_card(
                MiddlemanCardRequest(
                    middleman_id=middleman_id,
                    display_name=middleman_name or f"User {middleman_id}",
                    average_rating=average,
                    review_count=review_count,
                    closed_tickets=closed_tickets,
                )
            ),
            ticket_id=ticket.id,
        )
        await self._chat.send_message(
            ticket.channel_id,
            OutboundMessage(
                title="🛡️ Middleman assigned",
                description=f"<@{middleman_id}> claimed this ticket.",
                fields=(
                    MessageField(name="Middleman", value=f"<@{middleman_id}>", inline=True),
                    MessageField(
                        name="Username", value=external_username or "Not registered", inline=True
                    ),
                    MessageField(name="Closed trades", value=str(closed_tickets), inline=True),
                    MessageField(name="Rating", value=rating_label(average, review_count)),
                ),
                mentions=(middleman_id,),
                attachment=card,
            ),
        )

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    async def request_closure(self, ticket_id: int, requester_id: int) -> ClosureRequestResult:
        """Show the finalization panel. Only the claiming middleman may ask."""
        with ticket_log_context(ticket_id=ticket_id, actor_id=requester_id, operation="request_closure"):
            async with self._session_factory.begin() as session:
                ticket = await self._get_ticket_or_raise(session, ticket_id)
                if ticket.status == TicketStatus.CLOSED.value:
                    raise TicketClosedError(ticket.id)
                claim = await ClaimRepository(session).get_by_ticket(ticket.id)
                if claim is None or claim.middleman_id != requester_id:
                    raise UnauthorizedActionError("middleman:close-request")
                overview = await self._load_overview(session, ticket)

            already_pending = claim.finalization_message_id is not None
            try:
                await self._render_finalization_panel(overview, completed=False)
            except Exception as exc:
                logger.exception("finalization.panel_failed", channel_id=ticket.channel_id)
                raise InfrastructureError(
                    message="The finalization panel could not be posted.",
                    code="FINALIZATION_PANEL_FAILED",
                    details={"channel_id": ticket.channel_id, "reason": str(exc)},
                ) from exc

            logger.info(
                "finalization.requested",
                participant_count=overview.finalization.size,
                already_pending=already_pending,
                completed=overview.finalization.completed,
            )
            return ClosureRequestResult(
                completed=overview.finalization.completed,
                already_pending=already_pending,
                participant_count=overview.finalization.size,
            )

    async def confirm_finalization(self, ticket_id: int, user_id: int) -> FinalizationResult:
        """Add the caller to the ledger. Confirming twice is a reported no-op."""
        return await self._write_ledger(ticket_id, user_id, confirm=True)

    async def revoke_finalization(self, ticket_id: int, user_id: int) -> FinalizationResult:
        """Remove the caller from the ledger, if present."""
        return await self._write_ledger(ticket_id, user_id, confirm=False)

    async def _write_ledger(self, ticket_id: int, user_id: int, confirm: bool) -> FinalizationResult:
        action = "finalization:confirm" if confirm else "finalization:revoke"
        with ticket_log_context(ticket_id=ticket_id, actor_id=user_id, operation=action):
            async with self._session_factory.begin() as session:
                ticket = await self._get_ticket_or_raise(session, ticket_id, for_update=True)
                if ticket.status == TicketStatus.CLOSED.value:
                    raise TicketClosedError(ticket.id)
                await self._ensure_participant(session, ticket, user_id, action)
                claim = await ClaimRepository(session).get_by_ticket(ticket.id)
                if claim is None:
                    raise UnauthorizedActionError(action)

                ledger = FinalizationRepository(session)
                members = await self._quorum_members(session, ticket)
                was_completed = is_quorum_complete(members, await ledger.list_user_ids(ticket.id))
                if confirm:
                    changed = await ledger.add(ticket.id, user_id)
                else:
                    changed = await ledger.remove(ticket.id, user_id)
                # Completion is decided on the ledger as re-read after the write
                overview = await self._load_overview(session, ticket)

            completed = overview.finalization.completed
            logger.info(
                "finalization.confirmed" if confirm else "finalization.revoked",
                changed=changed,
                completed=completed,
                quorum_member=user_id in members,
            )
            await self._after_commit(
                "finalization_panel",
                self._render_finalization_panel(overview, completed=False),
            )
            if confirm and completed and not was_completed:
                await self._notify(
                    Notification(
                        kind=NotificationKind.FINALIZATION_COMPLETED,
                        ticket_id=ticket.id,
                        channel_id=ticket.channel_id,
                        mentions=tuple(dict.fromkeys([claim.middleman_id, *members])),
                    )
                )
            return FinalizationResult(changed=changed, completed=completed)

    # ------------------------------------------------------------------
    # Close
    # ------------------------------------------------------------------

    async def close(self, ticket_id: int, middleman_id: int) -> CloseResult:
        """Close the ticket atomically, or report pending if the quorum has not agreed."""
        closed_at = datetime.now(UTC)
        with ticket_log_context(ticket_id=ticket_id, actor_id=middleman_id, operation="close"):
            async with self._session_factory.begin() as session:
                ticket = await self._get_ticket_or_raise(session, ticket_id, for_update=True)
                if ticket.status == TicketStatus.CLOSED.value:
                    raise TicketClosedError(ticket.id)
                claim = await ClaimRepository(session).get_by_ticket(ticket.id)
                if claim is None or claim.middleman_id != middleman_id:
                    raise UnauthorizedActionError("middleman:close")

                overview = await self._load_overview(session, ticket)
                live_trades = [
                    trade for trade in overview.trades if trade.status != TradeStatus.CANCELLED.value
                ]
                unconfirmed = [trade.user_id for trade in live_trades if not trade.confirmed]
                if unconfirmed:
                    logger.info("ticket.close_rejected", unconfirmed_ids=unconfirmed)
                    raise TradesNotConfirmedError(ticket.id)
                pending = (
                    requires_finalization(overview.quorum_ids)
                    and not overview.finalization.completed
                )
                if not pending:
                    await self._complete_ticket(
                        session, ticket, claim, live_trades, middleman_id, closed_at
                    )

            if pending:
                logger.info(
                    "ticket.close_pending",
                    pending_ids=overview.finalization.pending_ids,
                )
                await self._after_commit(
                    "finalization_panel",
                    self._render_finalization_panel(overview, completed=False),
                )
                return CloseResult(closed=False, pending=True)

            logger.info("ticket.closed", trades_completed=len(live_trades))
            await self._finish_close(overview, middleman_id, closed_at)
            return CloseResult(closed=True, pending=False)

    async def _complete_ticket(
        self,
        session: AsyncSession,
        ticket: Ticket,
        claim: MiddlemanClaim,
        trades: list[Trade],
        middleman_id: int,
        closed_at: datetime,
    ) -> None:
        """The close transaction body. Any exception rolls all of it back."""
        trade_repo = TradeRepository(session)
        for trade in trades:
            # Confirmed by its party but still PENDING
            if trade.confirmed and trade.status == TradeStatus.PENDING.value:
                trade.confirm()
            if not trade.can_be_completed():
                raise TradesNotConfirmedError(ticket.id)
            trade.complete()
            await trade_repo.save(trade)

        if ticket.status == TicketStatus.CLAIMED.value:
            await self._advance(session, ticket, "confirm_trades")
        await self._advance(session, ticket, "close", closed_at=closed_at)
        await ClaimRepository(session).mark_closed(claim, closed_at)
        await MemberStatsRepository(session).record_completed_trade(middleman_id, closed_at)

    async def _finish_close(
        self,
        overview: TicketOverview,
        middleman_id: int,
        closed_at: datetime,
    ) -> None:
        """Post-commit steps. Each failure is logged; the ticket stays closed."""
        ticket = overview.ticket
        claim = overview.claim
        if requires_finalization(overview.quorum_ids) or (claim and claim.finalization_message_id):
            await self._after_commit(
                "finalization_panel",
                self._render_finalization_panel(overview, completed=True),
            )
        await self._after_commit("ledger_reset", self._reset_ledger(ticket.id))
        await self._refresh_trade_panel(ticket.id)
        await self._after_commit(
            "review_invite",
            self._send_review_invite(ticket, overview.quorum_ids, middleman_id, closed_at),
        )
        await self._notify(
            Notification(
                kind=NotificationKind.TICKET_CLOSED,
                ticket_id=ticket.id,
                channel_id=ticket.channel_id,
                mentions=tuple(overview.quorum_ids),
                data={"middleman_id": middleman_id},
            )
        )

    async def _reset_ledger(self, ticket_id: int) -> None:
        async with self._session_factory.begin() as session:
            await FinalizationRepository(session).reset(ticket_id)

    async def _send_review_invite(
        self,
        ticket: Ticket,
        members: list[int],
        middleman_id: int,
        requested_at: datetime,
    ) -> None:
        message_id = await self._chat.send_message(
            ticket.channel_id,
            OutboundMessage(
                title="How did it go?",
                description=(
                    f"The trade with <@{middleman_id}> is complete. "
                    "Share your experience with the button below."
                ),
                controls=(
                    ActionControl(
                        custom_id=review_control_id(ticket.id, middleman_id),
                        label="Leave a review",
                    ),
                ),
                content=" ".join(f"<@{user_id}>" for user_id in members) or None,
                mentions=tuple(members),
            ),
        )
        await self._invites.record(message_id, ticket_id=ticket.id, middleman_id=middleman_id)
        async with self._session_factory.begin() as session:
            await ClaimRepository(session).mark_review_requested(ticket.id, requested_at)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_ticket_overview(self, ticket_id: int) -> TicketOverview:
        """Ticket, participants, trades, claim and quorum state in one read."""
        async with self._session_factory() as session:
            ticket = await self._get_ticket_or_raise(session, ticket_id)
            return await self._load_overview(session, ticket)

    async def _load_overview(self, session: AsyncSession, ticket: Ticket) -> TicketOverview:
        participants = await TicketRepository(session).list_participants(ticket.id)
        trades = await TradeRepository(session).list_by_ticket(ticket.id)
        claim = await ClaimRepository(session).get_by_ticket(ticket.id)
        confirmed_ids = await FinalizationRepository(session).list_user_ids(ticket.id)
        members = quorum_members(
            ticket.owner_id,
            [(participant.user_id, participant.parsed_role) for participant in participants],
        )
        return TicketOverview(
            ticket=ticket,
            participants=participants,
            trades=trades,
            claim=claim,
            finalization=quorum_status(members, confirmed_ids),
        )

    async def _quorum_members(self, session: AsyncSession, ticket: Ticket) -> list[int]:
        participants = await TicketRepository(session).list_participants(ticket.id)
        return quorum_members(
            ticket.owner_id,
            [(participant.user_id, participant.parsed_role) for participant in participants],
        )

    @staticmethod
    def _all_trades_confirmed(overview: TicketOverview) -> bool:
        """Every quorum member has submitted a trade and confirmed it."""
        members = overview.quorum_ids
        if not members:
            return False
        for user_id in members:
            trade = overview.trade_for(user_id)
            if trade is None or not trade.confirmed:
                return False
        return True

    # ------------------------------------------------------------------
    # Panels
    # ------------------------------------------------------------------

    async def _render_trade_panel(self, ticket_id: int) -> str:
        overview = await self.get_ticket_overview(ticket_id)
        ticket = overview.ticket
        labels = await resolve_labels(self._chat, ticket.guild_id, overview.quorum_ids)
        known_id = overview.claim.panel_message_id if overview.claim else None
        message_id = await self._panels.render(
            ticket.channel_id,
            PanelKind.TRADE,
            build_trade_panel(overview, labels),
            known_message_id=known_id,
        )
        if overview.claim is not None and message_id != known_id:
            async with self._session_factory.begin() as session:
                await ClaimRepository(session).set_panel_message_id(ticket.id, message_id)
        return message_id

    async def _refresh_trade_panel(self, ticket_id: int) -> None:
        await self._after_commit("trade_panel", self._render_trade_panel(ticket_id))

    async def _render_finalization_panel(self, overview: TicketOverview, completed: bool) -> str:
        ticket = overview.ticket
        status = overview.finalization
        labels = await resolve_labels(
            self._chat, ticket.guild_id, [member.user_id for member in status.members]
        )
        known_id = overview.claim.finalization_message_id if overview.claim else None
        message_id = await self._panels.render(
            ticket.channel_id,
            PanelKind.FINALIZATION,
            build_finalization_panel(ticket.id, status, labels, completed),
            known_message_id=known_id,
        )
        if overview.claim is not None and message_id != known_id:
            async with self._session_factory.begin() as session:
                await ClaimRepository(session).set_finalization_message_id(ticket.id, message_id)
        return message_id

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_ticket_or_raise(
        self,
        session: AsyncSession,
        ticket_id: int,
        for_update: bool = False,
    ) -> Ticket:
        ticket = await TicketRepository(session).get_by_id(ticket_id, for_update=for_update)
        if ticket is None:
            raise TicketNotFoundError(ticket_id)
        return ticket

    async def _ensure_participant(
        self,
        session: AsyncSession,
        ticket: Ticket,
        user_id: int,
        action: str,
    ) -> None:
        if ticket.is_owned_by(user_id):
            return
        if not await TicketRepository(session).is_participant(ticket.id, user_id):
            raise UnauthorizedActionError(action)

    @staticmethod
    def _ensure_accepts_trade_changes(ticket: Ticket) -> None:
        status = TicketStatus(ticket.status)
        if status is TicketStatus.CLOSED:
            raise TicketClosedError(ticket.id)
        if not status.accepts_trade_changes:
            raise TradeLockedError(ticket.id)

    async def _advance(
        self,
        session: AsyncSession,
        ticket: Ticket,
        event_name: str,
        closed_at: datetime | None = None,
    ) -> None:
        """Fire a ticket transition and persist the new status."""
        new_status = self._fire_transition(ticket, event_name)
        await TicketRepository(session).update_status(ticket, new_status, closed_at=closed_at)

    def _fire_transition(self, ticket: Ticket, event_name: str) -> TicketStatus:
        """Validate and fire a state machine transition.

        Raises InvalidStateTransitionError if the transition is illegal.
        """
        sm = TicketStateMachine(current_status=ticket.status)
        event_method = getattr(sm, event_name, None)
        if event_method is None:
            raise InvalidStateTransitionError(ticket.status, event_name)
        try:
            event_method()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(ticket.status, event_name) from err
        return TicketStatus(sm.status)

    async def _safe_card(
        self,
        render: Awaitable[Attachment | None],
        ticket_id: int,
    ) -> Attachment | None:
        try:
            return await render
        except Exception:
            logger.exception("card.render_failed", ticket_id=ticket_id)
            return None

    async def _notify(self, notification: Notification) -> None:
        try:
            await self._notifier.publish(notification)
        except Exception:
            logger.exception(
                "notify.failed",
                kind=notification.kind.value,
                ticket_id=notification.ticket_id,
            )

    async def _after_commit(self, step: str, operation: Awaitable[Any]) -> Any:
        try:
            return await operation
        except Exception:
            logger.exception("ticket.post_commit_failed", step=step)
            return None
