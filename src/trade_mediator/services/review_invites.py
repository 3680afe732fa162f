"""Review invitations recorded when a ticket closes.

The close step posts a review-request message; reviewers press a button on it
later, and the message id is all the interaction carries. This store maps that
id back to (ticket, middleman) for `review_invite_ttl_seconds`.

Usage:
    invites = ReviewInviteStore(store, ttl_seconds=7 * 24 * 3600)
    await invites.record("1200000000000000000", ticket_id=7, middleman_id=1001)
    invite = await invites.lookup("1200000000000000000")
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, ValidationError

from trade_mediator.logging_config import get_logger

if TYPE_CHECKING:
    from trade_mediator.domain.ports import KeyValueStore

logger = get_logger(__name__)


class ReviewInvite(BaseModel):
    ticket_id: int
    middleman_id: int


def invite_key(message_id: str) -> str:
    return f"review-invite:{message_id}"


class ReviewInviteStore:
    def __init__(self, store: KeyValueStore, ttl_seconds: int) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds

    async def record(self, message_id: str, ticket_id: int, middleman_id: int) -> ReviewInvite:
        invite = ReviewInvite(ticket_id=ticket_id, middleman_id=middleman_id)
        await self._store.set(
            invite_key(message_id),
            invite.model_dump_json(),
            ttl_seconds=self._ttl_seconds,
        )
        return invite

    async def lookup(self, message_id: str) -> ReviewInvite | None:
        """Return the invite, or None if unknown, expired or unreadable."""
        raw = await self._store.get(invite_key(message_id))
        if raw is None:
            return None
        try:
            return ReviewInvite.model_validate_json(raw)
        except ValidationError:
            logger.warning("review_invite.corrupt", message_id=message_id)
            await self._store.delete(invite_key(message_id))
            return None
