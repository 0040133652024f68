"""Shared constants for the models layer.

Defines enumerations and kind-classification helpers that are used across
multiple model modules, the wire codec, and the reducers. Placing them here
avoids circular dependencies between the models and client layers.

See Also:
    [relaysync.models.relay][]: Uses [NetworkType][relaysync.models.constants.NetworkType]
        to classify relay URLs during construction.
    [relaysync.models.event][]: Uses [kind_class()][relaysync.models.constants.kind_class]
        to compute replaceable and addressable identity keys.
    [relaysync.reducers.group][]: Dispatches on the NIP-29 members of
        [EventKind][relaysync.models.constants.EventKind].
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class NetworkType(StrEnum):
    """Network type enum for relay classification.

    Each relay URL is classified into exactly one network type during
    [Relay][relaysync.models.relay.Relay] construction. The network decides
    which proxy (if any) the transport dials through.

    Attributes:
        CLEARNET: Public internet relay.
        TOR: Tor hidden service identified by a ``.onion`` hostname.
        I2P: I2P eepsite identified by a ``.i2p`` hostname.
        LOKI: Lokinet service identified by a ``.loki`` hostname.
        LOCAL: Loopback, private or reserved address. Allowed for client
            connections (development relays, LAN relays).
        UNKNOWN: Hostname that could not be classified (rejected during validation).

    Examples:
        ```python
        Relay("wss://relay.damus.io").network   # NetworkType.CLEARNET
        Relay("ws://abc123.onion").network       # NetworkType.TOR
        Relay("ws://localhost:7777").network     # NetworkType.LOCAL
        ```
    """

    CLEARNET = "clearnet"
    TOR = "tor"
    I2P = "i2p"
    LOKI = "loki"
    LOCAL = "local"
    UNKNOWN = "unknown"


class ServiceName(StrEnum):
    """Canonical service identifiers used in logging, metrics, and the CLI.

    Attributes:
        SYNCHRONIZER: Long-running relay synchronization service
            ([Synchronizer][relaysync.services.synchronizer.Synchronizer]).
    """

    SYNCHRONIZER = "synchronizer"


class KindClass(StrEnum):
    """Retention class of an event kind (NIP-01).

    Attributes:
        REGULAR: Stored by id, every version kept.
        REPLACEABLE: One event per ``(pubkey, kind)``.
        EPHEMERAL: Dispatched to listeners but never stored.
        ADDRESSABLE: One event per ``(pubkey, kind, d-tag)``.
    """

    REGULAR = "regular"
    REPLACEABLE = "replaceable"
    EPHEMERAL = "ephemeral"
    ADDRESSABLE = "addressable"


class EventKind(IntEnum):
    """Well-known Nostr event kinds used by the client core.

    Attributes:
        SET_METADATA: Kind 0 -- user profile metadata (NIP-01, replaceable).
        TEXT_NOTE: Kind 1 -- short text note (NIP-01).
        CONTACTS: Kind 3 -- contact list (NIP-02, replaceable).
        DELETION: Kind 5 -- deletion request (NIP-09).
        GROUP_CHAT_MESSAGE: Kind 9 -- group chat message (NIP-29).
        GROUP_THREAD_REPLY: Kind 10 -- group thread reply (NIP-29, legacy).
        GROUP_THREAD: Kind 11 -- group thread root (NIP-29).
        GROUP_THREAD_COMMENT: Kind 12 -- group thread comment (NIP-29, legacy).
        GROUP_PUT_USER: Kind 9000 -- add a member or change roles.
        GROUP_REMOVE_USER: Kind 9001 -- remove a member.
        GROUP_EDIT_METADATA: Kind 9002 -- edit group metadata.
        GROUP_DELETE_EVENT: Kind 9005 -- delete a group event.
        GROUP_CREATE: Kind 9007 -- create a group.
        GROUP_DELETE: Kind 9008 -- delete a group.
        GROUP_JOIN_REQUEST: Kind 9021 -- request to join.
        GROUP_LEAVE_REQUEST: Kind 9022 -- request to leave.
        RELAY_LIST: Kind 10002 -- NIP-65 relay list metadata.
        CLIENT_AUTH: Kind 22242 -- NIP-42 client authentication.

    See Also:
        ``EVENT_KIND_MAX``: Maximum valid event kind value (65535).
    """

    SET_METADATA = 0
    TEXT_NOTE = 1
    CONTACTS = 3
    DELETION = 5
    GROUP_CHAT_MESSAGE = 9
    GROUP_THREAD_REPLY = 10
    GROUP_THREAD = 11
    GROUP_THREAD_COMMENT = 12
    GROUP_PUT_USER = 9000
    GROUP_REMOVE_USER = 9001
    GROUP_EDIT_METADATA = 9002
    GROUP_DELETE_EVENT = 9005
    GROUP_CREATE = 9007
    GROUP_DELETE = 9008
    GROUP_JOIN_REQUEST = 9021
    GROUP_LEAVE_REQUEST = 9022
    RELAY_LIST = 10_002
    CLIENT_AUTH = 22_242


EVENT_KIND_MAX = 65_535

REPLACEABLE_RANGE = range(10_000, 20_000)
EPHEMERAL_RANGE = range(20_000, 30_000)
ADDRESSABLE_RANGE = range(30_000, 40_000)


def kind_class(kind: int) -> KindClass:
    """Classify *kind* into its NIP-01 retention class."""
    if kind in (EventKind.SET_METADATA, EventKind.CONTACTS) or kind in REPLACEABLE_RANGE:
        return KindClass.REPLACEABLE
    if kind in EPHEMERAL_RANGE:
        return KindClass.EPHEMERAL
    if kind in ADDRESSABLE_RANGE:
        return KindClass.ADDRESSABLE
    return KindClass.REGULAR
