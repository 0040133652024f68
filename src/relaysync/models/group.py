"""
Immutable group membership and moderation state (NIP-29).

[GroupState][relaysync.models.group.GroupState] is the derived view produced
by [GroupReducer][relaysync.reducers.group.GroupReducer]. Callers only ever
see frozen snapshots; the reducer is the sole producer.

See Also:
    [relaysync.reducers.group][]: Authority-checked replay that produces
        these snapshots.
    [relaysync.nips.nip29][]: Tag parsing for group events.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType

from ._validation import validate_str_not_empty


class GroupRole(StrEnum):
    """Group role, ordered by authority.

    Unknown role names published by relays are treated as ``MEMBER``.
    """

    MEMBER = "member"
    MODERATOR = "moderator"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANK[self]

    def at_least(self, other: GroupRole) -> bool:
        """Whether this role carries at least the authority of *other*."""
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: str | None) -> GroupRole:
        """Map a role label from a ``p`` tag onto a known role."""
        if not value:
            return cls.MEMBER
        try:
            return cls(value.lower())
        except ValueError:
            return cls.MEMBER


_ROLE_RANK: dict[GroupRole, int] = {
    GroupRole.MEMBER: 1,
    GroupRole.MODERATOR: 2,
    GroupRole.ADMIN: 3,
}


class ModerationAction(StrEnum):
    """Action recorded in a group's moderation log."""

    CREATE_GROUP = "create_group"
    PUT_USER = "put_user"
    REMOVE_USER = "remove_user"
    EDIT_METADATA = "edit_metadata"
    DELETE_EVENT = "delete_event"
    DELETE_GROUP = "delete_group"
    JOIN = "join"
    LEAVE = "leave"
    MESSAGE = "message"


@dataclass(frozen=True, slots=True)
class ModerationEntry:
    """One applied (or rejected) action in a group's log.

    Attributes:
        event_id: Id of the event carrying the action.
        created_at: Logical timestamp of the action.
        actor: Public key of the acting principal.
        action: Kind of action.
        target: Affected principal or event id, if any.
        accepted: ``False`` when the authority check failed (no state change).
        reason: Short explanation for rejected entries.
    """

    event_id: str
    created_at: int
    actor: str
    action: ModerationAction
    target: str | None = None
    accepted: bool = True
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class GroupMetadata:
    """Group metadata edited by kind 9002 events."""

    name: str | None = None
    about: str | None = None
    picture: str | None = None
    is_private: bool = False
    is_closed: bool = False


@dataclass(frozen=True, slots=True)
class GroupState:
    """Frozen snapshot of a group's derived state.

    Attributes:
        group_id: Group identifier (the ``h`` tag value).
        members: Public key to role.
        removed: Principals removed by moderation; they cannot rejoin on
            their own.
        moderation_log: Ordered log of applied and rejected actions.
        metadata: Current group metadata.
        deleted_events: Event ids deleted by moderators.
        deleted: Whether the group was deleted.
        position: ``(created_at, id)`` of the last applied event, or
            ``None`` for a state with nothing applied.
    """

    group_id: str
    members: Mapping[str, GroupRole] = field(default_factory=dict)
    removed: frozenset[str] = frozenset()
    moderation_log: tuple[ModerationEntry, ...] = ()
    metadata: GroupMetadata = field(default_factory=GroupMetadata)
    deleted_events: frozenset[str] = frozenset()
    deleted: bool = False
    position: tuple[int, str] | None = None

    def __post_init__(self) -> None:
        validate_str_not_empty(self.group_id, "group_id")
        object.__setattr__(self, "members", MappingProxyType(dict(self.members)))
        object.__setattr__(self, "removed", frozenset(self.removed))
        object.__setattr__(self, "deleted_events", frozenset(self.deleted_events))
        object.__setattr__(self, "moderation_log", tuple(self.moderation_log))

    def role_of(self, pubkey: str) -> GroupRole | None:
        """Return the role of *pubkey*, or ``None`` if not a member."""
        return self.members.get(pubkey)

    def is_member(self, pubkey: str) -> bool:
        return pubkey in self.members

    def has_role(self, pubkey: str, required: GroupRole) -> bool:
        """Whether *pubkey* is a member holding at least *required*."""
        role = self.members.get(pubkey)
        return role is not None and role.at_least(required)

    @property
    def admins(self) -> frozenset[str]:
        return frozenset(pk for pk, role in self.members.items() if role is GroupRole.ADMIN)

    @property
    def rejected_entries(self) -> tuple[ModerationEntry, ...]:
        return tuple(entry for entry in self.moderation_log if not entry.accepted)
