"""Finalization quorum rules.

Pure functions over plain ids: who must agree before a ticket closes, and
whether they all currently do. No I/O here; the lifecycle service feeds these
with rows read inside its transaction.

Usage:
    members = quorum_members(owner_id, [(2002, ParticipantRole.PARTNER)])
    status = quorum_status(members, confirmed_ids={1001})
    status.completed  # False
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from trade_mediator.domain.enums import QUORUM_ROLES

if TYPE_CHECKING:
    from collections.abc import Iterable

    from trade_mediator.domain.enums import ParticipantRole


def counts_toward_quorum(role: ParticipantRole | None) -> bool:
    """Allowlist check: OWNER, PARTNER, TRADER or unset roles count."""
    return role is None or role in QUORUM_ROLES


def quorum_members(
    owner_id: int,
    participants: Iterable[tuple[int, ParticipantRole | None]],
) -> list[int]:
    """Return the quorum member ids, owner first, in participant order.

    The owner is always a member, even without a participant row.
    """
    members = [owner_id]
    for user_id, role in participants:
        if user_id not in members and counts_toward_quorum(role):
            members.append(user_id)
    return members


def is_quorum_complete(members: list[int], confirmed_ids: Iterable[int]) -> bool:
    """Every member is in the confirmed set, and there is at least one member."""
    confirmed = set(confirmed_ids)
    return bool(members) and all(member in confirmed for member in members)


def requires_finalization(members: list[int]) -> bool:
    """Solo tickets have nothing to agree on."""
    return len(members) > 1


@dataclass(frozen=True)
class QuorumMember:
    user_id: int
    confirmed: bool


@dataclass(frozen=True)
class QuorumStatus:
    """Per-member view of the ledger, as shown on the finalization panel."""

    members: tuple[QuorumMember, ...]
    completed: bool

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def confirmed_count(self) -> int:
        return sum(1 for member in self.members if member.confirmed)

    @property
    def pending_ids(self) -> list[int]:
        return [member.user_id for member in self.members if not member.confirmed]


def quorum_status(members: list[int], confirmed_ids: Iterable[int]) -> QuorumStatus:
    """Combine quorum membership and the ledger into a QuorumStatus."""
    confirmed = set(confirmed_ids)
    return QuorumStatus(
        members=tuple(QuorumMember(user_id=m, confirmed=m in confirmed) for m in members),
        completed=is_quorum_complete(members, confirmed),
    )
