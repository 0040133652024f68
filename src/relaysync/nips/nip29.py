"""
NIP-29 relay-based group events.

Tag extraction for group moderation and membership events. The
[GroupReducer][relaysync.reducers.group.GroupReducer] consumes these helpers;
nothing here evaluates authority.

Group events carry the group id in an ``h`` tag. Moderation events name
their target principals in ``p`` tags; kind 9000 may append a role label
after the public key (``["p", <pubkey>, "moderator"]``).
"""

from __future__ import annotations

from relaysync.models.constants import EventKind
from relaysync.models.event import Event
from relaysync.models.group import GroupMetadata, GroupRole


MODERATION_KINDS: frozenset[int] = frozenset(
    {
        EventKind.GROUP_PUT_USER,
        EventKind.GROUP_REMOVE_USER,
        EventKind.GROUP_EDIT_METADATA,
        EventKind.GROUP_DELETE_EVENT,
        EventKind.GROUP_CREATE,
        EventKind.GROUP_DELETE,
    }
)

MEMBERSHIP_KINDS: frozenset[int] = frozenset(
    {EventKind.GROUP_JOIN_REQUEST, EventKind.GROUP_LEAVE_REQUEST}
)

MESSAGE_KINDS: frozenset[int] = frozenset(
    {
        EventKind.GROUP_CHAT_MESSAGE,
        EventKind.GROUP_THREAD_REPLY,
        EventKind.GROUP_THREAD,
        EventKind.GROUP_THREAD_COMMENT,
    }
)

GROUP_KINDS: frozenset[int] = MODERATION_KINDS | MEMBERSHIP_KINDS | MESSAGE_KINDS


def group_id_of(event: Event) -> str | None:
    """Return the group id from the ``h`` tag, or ``None``."""
    value = event.first_tag_value("h")
    return value or None


def parse_put_user(event: Event) -> list[tuple[str, GroupRole]]:
    """Return ``(pubkey, role)`` pairs named by a kind 9000 event.

    A ``p`` tag with no role label grants plain membership. When several
    labels follow the key, the highest known role wins.
    """
    grants: list[tuple[str, GroupRole]] = []
    for tag in event.tags:
        if len(tag) < 2 or tag[0] != "p" or not tag[1]:  # noqa: PLR2004
            continue
        roles = [GroupRole.parse(label) for label in tag[2:]] or [GroupRole.MEMBER]
        grants.append((tag[1], max(roles, key=lambda role: role.rank)))
    return grants


def parse_targets(event: Event) -> list[str]:
    """Return the public keys named in ``p`` tags, deduplicated in order."""
    seen: dict[str, None] = {}
    for pubkey in event.tag_values("p"):
        if pubkey:
            seen.setdefault(pubkey, None)
    return list(seen)


def parse_deleted_event_ids(event: Event) -> list[str]:
    """Return the event ids named by a kind 9005 event."""
    return [event_id for event_id in event.tag_values("e") if event_id]


def apply_metadata_edit(current: GroupMetadata, event: Event) -> GroupMetadata:
    """Return *current* updated with the fields carried by a kind 9002 event.

    Recognized tags: ``name``, ``about``, ``picture`` (values) and the
    flag tags ``private``/``public`` and ``closed``/``open``.
    """
    name = event.first_tag_value("name")
    about = event.first_tag_value("about")
    picture = event.first_tag_value("picture")
    flags = {tag[0] for tag in event.tags if tag}

    is_private = current.is_private
    if "private" in flags:
        is_private = True
    elif "public" in flags:
        is_private = False

    is_closed = current.is_closed
    if "closed" in flags:
        is_closed = True
    elif "open" in flags:
        is_closed = False

    return GroupMetadata(
        name=name if name is not None else current.name,
        about=about if about is not None else current.about,
        picture=picture if picture is not None else current.picture,
        is_private=is_private,
        is_closed=is_closed,
    )
