"""Use-case inputs.

Every caller (HTTP routes, chat interaction handlers) builds one of these with
`parse()` and hands it to a service. Field rules are pydantic constraints, so
a command that exists is well formed. Limits that come from settings are only
known to the service, which passes them as validation context through
`validated()`. A failure in either step raises ValidationFailedError with a
field -> message mapping, so the same rules apply no matter which surface the
request came from.
"""

from __future__ import annotations

import re
from typing import Any, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)
from pydantic_core import PydanticCustomError

from trade_mediator.domain.enums import TicketType
from trade_mediator.domain.exceptions import ValidationFailedError

# A mention (<@id> / <@!id>) or a raw snowflake
PARTNER_TAG_PATTERN = re.compile(r"^(?:<@!?(\d{17,20})>|(\d{17,20}))$")
PARTNER_TAG_MESSAGE = "Mention the partner or paste their 17-20 digit id."

EXTERNAL_USERNAME_MIN_LENGTH = 3
EXTERNAL_USERNAME_MAX_LENGTH = 50
OFFER_DESCRIPTION_MIN_LENGTH = 5


def parse_partner_tag(raw: str) -> int:
    """Resolve a partner mention or raw id to a user id."""
    match = PARTNER_TAG_PATTERN.match(raw.strip())
    if match is None:
        raise ValidationFailedError({"partner_tag": PARTNER_TAG_MESSAGE})
    return int(match.group(1) or match.group(2))


def validation_details(exc: ValidationError) -> dict[str, str]:
    """Flatten pydantic errors to the first message per field."""
    details: dict[str, str] = {}
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"]) or "command"
        details.setdefault(field, error["msg"])
    return details


def _context_limit(info: ValidationInfo, name: str) -> int | None:
    return (info.context or {}).get(name)


class Command(BaseModel):
    """Base for use-case inputs: immutable, whitespace-trimmed."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    @classmethod
    def parse(cls, limits: dict[str, int] | None = None, /, **fields: Any) -> Self:
        try:
            return cls.model_validate(fields, context=limits)
        except ValidationError as exc:
            raise ValidationFailedError(validation_details(exc)) from exc

    def validated(self, **limits: int) -> Self:
        """Check the command again against limits only the service knows."""
        return self.parse(limits, **self.model_dump())


class OpenTicketCommand(Command):
    guild_id: int = Field(..., gt=0)
    owner_id: int = Field(..., gt=0)
    partner_tag: str = Field(..., min_length=1)
    ticket_type: TicketType = TicketType.MM
    context: str | None = Field(default=None, max_length=1000)

    @field_validator("partner_tag")
    @classmethod
    def _partner_is_someone_else(cls, value: str, info: ValidationInfo) -> str:
        if PARTNER_TAG_PATTERN.match(value) is None:
            raise PydanticCustomError("partner_tag", PARTNER_TAG_MESSAGE)
        if parse_partner_tag(value) == info.data.get("owner_id"):
            raise PydanticCustomError("self_partner", "You cannot open a trade with yourself.")
        return value

    @property
    def partner_id(self) -> int:
        return parse_partner_tag(self.partner_tag)


class SubmitTradeDataCommand(Command):
    ticket_id: int
    user_id: int
    external_username: str = Field(
        ...,
        min_length=EXTERNAL_USERNAME_MIN_LENGTH,
        max_length=EXTERNAL_USERNAME_MAX_LENGTH,
    )
    offer_description: str = Field(..., min_length=OFFER_DESCRIPTION_MIN_LENGTH)

    @field_validator("offer_description")
    @classmethod
    def _offer_fits(cls, value: str, info: ValidationInfo) -> str:
        limit = _context_limit(info, "offer_max_length")
        if limit is not None and len(value) > limit:
            raise PydanticCustomError(
                "offer_too_long",
                "The offer description cannot exceed {limit} characters.",
                {"limit": limit},
            )
        return value


class SubmitReviewCommand(Command):
    ticket_id: int
    reviewer_id: int
    middleman_id: int
    rating: int = Field(..., ge=1, le=5)
    comment: str | None = None

    @field_validator("comment")
    @classmethod
    def _comment_fits(cls, value: str | None, info: ValidationInfo) -> str | None:
        if not value:
            return None
        limit = _context_limit(info, "comment_max_length")
        if limit is not None and len(value) > limit:
            raise PydanticCustomError(
                "comment_too_long",
                "The comment cannot exceed {limit} characters.",
                {"limit": limit},
            )
        return value


def build_trade_item(description: str, name_max_length: int) -> dict:
    """One offer item; the name is the description cut to the column width."""
    return {
        "name": description[:name_max_length],
        "quantity": 1,
        "metadata": {"description": description},
    }
