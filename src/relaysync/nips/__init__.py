"""Nostr Implementation Possibilities -- protocol-specific encoding and parsing.

The NIPs layer sits in the middle of the diamond DAG, depending only on
[relaysync.models][relaysync.models] and the exception types in
[relaysync.core.exceptions][relaysync.core.exceptions]. It performs no I/O.

Attributes:
    nip01: Wire codec for ``REQ``/``EVENT``/``CLOSE``/``AUTH`` frames and
        typed relay messages.
    nip29: Relay-based group tag helpers.
    nip42: Client authentication event drafts.
    nip65: Relay list (inbox/outbox) parsing.
"""

from .nip01 import (
    AuthMessage,
    ClosedMessage,
    CountMessage,
    EoseMessage,
    EventMessage,
    MachinePrefix,
    NoticeMessage,
    OkMessage,
    RelayMessage,
    encode_auth,
    encode_close,
    encode_event,
    encode_req,
    parse_message,
    split_prefix,
)
from .nip29 import GROUP_KINDS, group_id_of
from .nip42 import CHALLENGE_TTL_SECONDS, build_auth_draft
from .nip65 import RelayList, parse_relay_list


__all__ = [
    "CHALLENGE_TTL_SECONDS",
    "GROUP_KINDS",
    "AuthMessage",
    "ClosedMessage",
    "CountMessage",
    "EoseMessage",
    "EventMessage",
    "MachinePrefix",
    "NoticeMessage",
    "OkMessage",
    "RelayList",
    "RelayMessage",
    "build_auth_draft",
    "encode_auth",
    "encode_close",
    "encode_event",
    "encode_req",
    "group_id_of",
    "parse_message",
    "parse_relay_list",
    "split_prefix",
]
