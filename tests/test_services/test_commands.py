"""Tests for use-case input validation."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from trade_mediator.domain.enums import TicketType
from trade_mediator.domain.exceptions import ValidationFailedError
from trade_mediator.services.commands import (
    OpenTicketCommand,
    SubmitReviewCommand,
    SubmitTradeDataCommand,
    build_trade_item,
    parse_partner_tag,
)

OWNER = 100000000000000001
PARTNER = 200000000000000002


class TestPartnerTag:
    @pytest.mark.parametrize(
        "raw",
        [f"<@{PARTNER}>", f"<@!{PARTNER}>", str(PARTNER), f"  {PARTNER}  "],
    )
    def test_accepted_forms(self, raw: str) -> None:
        assert parse_partner_tag(raw) == PARTNER

    @pytest.mark.parametrize("raw", ["@bob", "12345", "<@abc>", ""])
    def test_rejected_forms(self, raw: str) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            parse_partner_tag(raw)
        assert "partner_tag" in exc_info.value.details


class TestOpenTicketCommand:
    def test_partner_resolved_from_mention(self) -> None:
        command = OpenTicketCommand.parse(guild_id=1, owner_id=OWNER, partner_tag=f" <@!{PARTNER}> ")

        assert command.partner_tag == f"<@!{PARTNER}>"
        assert command.partner_id == PARTNER
        assert command.ticket_type is TicketType.MM

    def test_context_is_a_field(self) -> None:
        command = OpenTicketCommand.parse(
            guild_id=1, owner_id=OWNER, partner_tag=str(PARTNER), context="Hat for a sword"
        )
        assert command.context == "Hat for a sword"

    def test_cannot_partner_with_self(self) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            OpenTicketCommand.parse(guild_id=1, owner_id=OWNER, partner_tag=f"<@{OWNER}>")
        assert set(exc_info.value.details) == {"partner_tag"}

    def test_unreadable_tag(self) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            OpenTicketCommand.parse(guild_id=1, owner_id=OWNER, partner_tag="@bob")
        assert "17-20 digit" in exc_info.value.details["partner_tag"]

    def test_commands_are_frozen(self) -> None:
        command = OpenTicketCommand.parse(guild_id=1, owner_id=OWNER, partner_tag=str(PARTNER))
        with pytest.raises(ValidationError):
            command.owner_id = PARTNER


class TestSubmitTradeData:
    def test_fields_are_trimmed(self) -> None:
        command = SubmitTradeDataCommand.parse(
            ticket_id=1,
            user_id=2,
            external_username="  builderman ",
            offer_description="  Two limited hats  ",
        )

        assert command.external_username == "builderman"
        assert command.offer_description == "Two limited hats"

    def test_collects_every_field_error(self) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            SubmitTradeDataCommand.parse(
                ticket_id=1, user_id=2, external_username="ab", offer_description="hat"
            )

        assert set(exc_info.value.details) == {"external_username", "offer_description"}

    def test_offer_limit_comes_from_context(self) -> None:
        command = SubmitTradeDataCommand.parse(
            ticket_id=1, user_id=2, external_username="builderman", offer_description="x" * 11
        )

        with pytest.raises(ValidationFailedError) as exc_info:
            command.validated(offer_max_length=10)

        assert exc_info.value.details["offer_description"] == (
            "The offer description cannot exceed 10 characters."
        )
        assert command.validated(offer_max_length=11) == command

    def test_trade_item_name_is_truncated(self) -> None:
        item = build_trade_item("A very long description", name_max_length=6)
        assert item == {
            "name": "A very",
            "quantity": 1,
            "metadata": {"description": "A very long description"},
        }


class TestSubmitReview:
    @pytest.mark.parametrize("rating", [0, 6])
    def test_rating_bounds(self, rating: int) -> None:
        with pytest.raises(ValidationFailedError) as exc_info:
            SubmitReviewCommand.parse(ticket_id=1, reviewer_id=2, middleman_id=3, rating=rating)
        assert "rating" in exc_info.value.details

    def test_blank_comment_becomes_none(self) -> None:
        command = SubmitReviewCommand.parse(
            ticket_id=1, reviewer_id=2, middleman_id=3, rating=4, comment="   "
        )
        assert command.comment is None

    def test_comment_too_long(self) -> None:
        command = SubmitReviewCommand.parse(
            ticket_id=1, reviewer_id=2, middleman_id=3, rating=4, comment="x" * 11
        )
        with pytest.raises(ValidationFailedError) as exc_info:
            command.validated(comment_max_length=10)
        assert "comment" in exc_info.value.details
