"""Tests for status panels: the edit-or-replace contract and the builders."""

from __future__ import annotations

import pytest

from conftest import FakeChatPlatform, FakeKeyValueStore
from trade_mediator.domain.enums import TicketStatus, TradeStatus
from trade_mediator.domain.ports import OutboundMessage
from trade_mediator.domain.quorum import quorum_status
from trade_mediator.infrastructure.database.orm_models import Ticket, Trade
from trade_mediator.services.panels import (
    PanelKind,
    StatusPanelRenderer,
    build_finalization_panel,
    build_trade_panel,
    panel_key,
    resolve_labels,
)
from trade_mediator.services.results import TicketOverview

CHANNEL = "800000000000000001"


@pytest.fixture
def renderer(chat: FakeChatPlatform, store: FakeKeyValueStore) -> StatusPanelRenderer:
    return StatusPanelRenderer(chat, store)


def _trade(user_id: int, confirmed: bool = False) -> Trade:
    return Trade(
        ticket_id=1,
        user_id=user_id,
        external_username=f"player{user_id}",
        status=TradeStatus.ACTIVE.value if confirmed else TradeStatus.PENDING.value,
        confirmed=confirmed,
        items=[{"name": "Sword", "quantity": 1, "metadata": {"description": "Golden sword"}}],
    )


def _overview(status: TicketStatus, trades: list[Trade]) -> TicketOverview:
    ticket = Ticket(id=1, guild_id=1, channel_id=CHANNEL, owner_id=1, type="MM", status=status.value)
    return TicketOverview(
        ticket=ticket,
        participants=[],
        trades=trades,
        claim=None,
        finalization=quorum_status([1, 2], []),
    )


class TestStatusPanelRenderer:
    @pytest.mark.asyncio
    async def test_first_render_sends_and_stores(
        self, renderer: StatusPanelRenderer, chat: FakeChatPlatform, store: FakeKeyValueStore
    ) -> None:
        message_id = await renderer.render(CHANNEL, PanelKind.TRADE, OutboundMessage(title="v1"))

        assert store.data[panel_key(PanelKind.TRADE, CHANNEL)] == message_id
        assert chat.current(message_id).title == "v1"

    @pytest.mark.asyncio
    async def test_rerender_edits_in_place(
        self, renderer: StatusPanelRenderer, chat: FakeChatPlatform
    ) -> None:
        first = await renderer.render(CHANNEL, PanelKind.TRADE, OutboundMessage(title="v1"))
        second = await renderer.render(CHANNEL, PanelKind.TRADE, OutboundMessage(title="v2"))

        assert first == second
        assert len(chat.sent) == 1
        assert chat.current(first).title == "v2"

    @pytest.mark.asyncio
    async def test_failed_edit_replaces_message(
        self, renderer: StatusPanelRenderer, chat: FakeChatPlatform, store: FakeKeyValueStore
    ) -> None:
        await store.set(panel_key(PanelKind.TRADE, CHANNEL), "deleted-message")

        message_id = await renderer.render(CHANNEL, PanelKind.TRADE, OutboundMessage(title="v1"))

        assert message_id != "deleted-message"
        assert store.data[panel_key(PanelKind.TRADE, CHANNEL)] == message_id

    @pytest.mark.asyncio
    async def test_known_message_id_is_reused(
        self, renderer: StatusPanelRenderer, chat: FakeChatPlatform, store: FakeKeyValueStore
    ) -> None:
        existing = await chat.send_message(CHANNEL, OutboundMessage(title="old"))

        message_id = await renderer.render(
            CHANNEL,
            PanelKind.FINALIZATION,
            OutboundMessage(title="new"),
            known_message_id=existing,
        )

        assert message_id == existing
        assert chat.current(existing).title == "new"
        assert store.data[panel_key(PanelKind.FINALIZATION, CHANNEL)] == existing

    @pytest.mark.asyncio
    async def test_kinds_are_independent(self, renderer: StatusPanelRenderer) -> None:
        trade = await renderer.render(CHANNEL, PanelKind.TRADE, OutboundMessage(title="t"))
        final = await renderer.render(CHANNEL, PanelKind.FINALIZATION, OutboundMessage(title="f"))
        assert trade != final

    @pytest.mark.asyncio
    async def test_forget(self, renderer: StatusPanelRenderer, store: FakeKeyValueStore) -> None:
        await renderer.render(CHANNEL, PanelKind.TRADE, OutboundMessage(title="v1"))
        await renderer.forget(CHANNEL, PanelKind.TRADE)
        assert panel_key(PanelKind.TRADE, CHANNEL) not in store.data


class TestLabels:
    @pytest.mark.asyncio
    async def test_falls_back_to_user_id(self, chat: FakeChatPlatform) -> None:
        chat.display_names[1] = "Alice"
        labels = await resolve_labels(chat, 1, [1, 2, 1])
        assert labels == {1: "Alice", 2: "User 2"}

    @pytest.mark.asyncio
    async def test_lookup_errors_are_absorbed(self, chat: FakeChatPlatform) -> None:
        chat.fail_display_names = RuntimeError("rate limited")
        labels = await resolve_labels(chat, 1, [1])
        assert labels == {1: "User 1"}


class TestBuilders:
    def test_confirm_disabled_until_everyone_submitted(self) -> None:
        panel = build_trade_panel(_overview(TicketStatus.OPEN, [_trade(1)]), {1: "Alice"})

        data_control, confirm_control = panel.controls
        assert not data_control.disabled
        assert confirm_control.disabled
        assert panel.fields[0].name == "Alice"
        assert "Golden sword" in panel.fields[0].value
        assert "Not registered" in panel.fields[1].value

    def test_confirm_enabled_once_everyone_submitted(self) -> None:
        panel = build_trade_panel(_overview(TicketStatus.CLAIMED, [_trade(1), _trade(2)]), {})
        assert not any(control.disabled for control in panel.controls)

    def test_confirmed_ticket_is_ready(self) -> None:
        panel = build_trade_panel(
            _overview(TicketStatus.CONFIRMED, [_trade(1, True), _trade(2, True)]), {}
        )
        assert panel.description == "Trade ready for the middleman."
        assert all(control.disabled for control in panel.controls)
        assert "✅ Confirmed" in panel.fields[0].value

    def test_finalization_pending(self) -> None:
        panel = build_finalization_panel(7, quorum_status([1, 2], [1]), {1: "Alice"}, completed=False)

        assert panel.fields[0].name == "Confirmations (1/2)"
        assert panel.fields[0].value == "✅ Alice\n⏳ User 2"
        assert [control.custom_id for control in panel.controls] == [
            "finalization:confirm:7",
            "finalization:revoke:7",
        ]

    def test_finalization_completed(self) -> None:
        panel = build_finalization_panel(7, quorum_status([1, 2], [1, 2]), {}, completed=True)
        assert panel.controls == ()
        assert panel.description.startswith("Trade finalized")
