"""Tests for domain enumerations."""

from __future__ import annotations

from trade_mediator.domain.enums import (
    OPEN_TICKET_STATUSES,
    QUORUM_ROLES,
    NotificationKind,
    ParticipantRole,
    TicketStatus,
    TicketType,
    TradeStatus,
)


class TestTicketStatus:
    def test_all_statuses_exist(self) -> None:
        assert {s.value for s in TicketStatus} == {"OPEN", "CLAIMED", "CONFIRMED", "CLOSED"}

    def test_status_is_str_enum(self) -> None:
        assert isinstance(TicketStatus.OPEN, str)
        assert TicketStatus.OPEN == "OPEN"

    def test_open_statuses_exclude_closed(self) -> None:
        assert TicketStatus.CLOSED not in OPEN_TICKET_STATUSES
        assert all(status.is_open for status in OPEN_TICKET_STATUSES)
        assert not TicketStatus.CLOSED.is_open

    def test_trade_changes_only_before_confirmation(self) -> None:
        assert TicketStatus.OPEN.accepts_trade_changes
        assert TicketStatus.CLAIMED.accepts_trade_changes
        assert not TicketStatus.CONFIRMED.accepts_trade_changes
        assert not TicketStatus.CLOSED.accepts_trade_changes


class TestTradeStatus:
    def test_all_statuses_exist(self) -> None:
        assert {s.value for s in TradeStatus} == {"PENDING", "ACTIVE", "COMPLETED", "CANCELLED"}


class TestTicketType:
    def test_types(self) -> None:
        assert {t.value for t in TicketType} == {"BUY", "SELL", "ROBUX", "NITRO", "DECOR", "MM"}


class TestParticipantRole:
    def test_parse_is_case_insensitive(self) -> None:
        assert ParticipantRole.parse("partner") is ParticipantRole.PARTNER
        assert ParticipantRole.parse(" Trader ") is ParticipantRole.TRADER

    def test_parse_unset(self) -> None:
        assert ParticipantRole.parse(None) is None
        assert ParticipantRole.parse("   ") is None

    def test_unknown_role_is_other(self) -> None:
        assert ParticipantRole.parse("spectator") is ParticipantRole.OTHER

    def test_quorum_roles(self) -> None:
        assert QUORUM_ROLES == {
            ParticipantRole.OWNER,
            ParticipantRole.PARTNER,
            ParticipantRole.TRADER,
        }


class TestNotificationKind:
    def test_kinds(self) -> None:
        assert len(NotificationKind) == 6
        assert NotificationKind.TICKET_CLOSED in set(NotificationKind)
