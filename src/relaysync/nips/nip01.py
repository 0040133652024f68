"""
NIP-01 wire protocol codec.

Encodes client-to-relay frames (``REQ``, ``EVENT``, ``CLOSE``, ``AUTH``) and
parses relay-to-client frames into typed, immutable messages:

| Frame | Message |
|---|---|
| ``["EVENT", <sub>, <event>]`` | [EventMessage][relaysync.nips.nip01.EventMessage] |
| ``["EOSE", <sub>]`` | [EoseMessage][relaysync.nips.nip01.EoseMessage] |
| ``["OK", <id>, <bool>, <msg>]`` | [OkMessage][relaysync.nips.nip01.OkMessage] |
| ``["NOTICE", <msg>]`` | [NoticeMessage][relaysync.nips.nip01.NoticeMessage] |
| ``["AUTH", <challenge>]`` | [AuthMessage][relaysync.nips.nip01.AuthMessage] |
| ``["CLOSED", <sub>, <msg>]`` | [ClosedMessage][relaysync.nips.nip01.ClosedMessage] |
| ``["COUNT", <sub>, {"count": n}]`` | [CountMessage][relaysync.nips.nip01.CountMessage] |

Every structural problem in an inbound frame raises
[ProtocolViolation][relaysync.core.exceptions.ProtocolViolation]. The
connection drops the frame and keeps the session alive. The envelope is
decoded with ``json``; event payloads are parsed by ``nostr_sdk`` through
[Event.from_dict()][relaysync.models.event.Event.from_dict]. Cryptographic
checks are not done here; they belong to the ingest pipeline.

See Also:
    [RelayConnection][relaysync.client.connection.RelayConnection]: Calls
        [parse_message()][relaysync.nips.nip01.parse_message] on every
        inbound text frame.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from relaysync.core.exceptions import ProtocolViolation
from relaysync.models.event import Event


if TYPE_CHECKING:
    from relaysync.models.filter import Filter


MAX_SUBSCRIPTION_ID_LENGTH = 64


class MachinePrefix(StrEnum):
    """Machine-readable prefixes carried by ``OK`` and ``CLOSED`` messages."""

    DUPLICATE = "duplicate"
    POW = "pow"
    BLOCKED = "blocked"
    RATE_LIMITED = "rate-limited"
    INVALID = "invalid"
    RESTRICTED = "restricted"
    MUTE = "mute"
    ERROR = "error"
    AUTH_REQUIRED = "auth-required"
    UNSUPPORTED = "unsupported"


def split_prefix(message: str) -> tuple[MachinePrefix | None, str]:
    """Split ``"prefix: text"`` into a known prefix and the remaining text.

    Unknown prefixes are left in the text and ``None`` is returned.
    """
    head, sep, tail = message.partition(":")
    if not sep:
        return None, message
    try:
        return MachinePrefix(head.strip().lower()), tail.strip()
    except ValueError:
        return None, message


# ---------------------------------------------------------------------------
# Inbound messages
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EventMessage:
    """An event delivered for a subscription."""

    subscription_id: str
    event: Event


@dataclass(frozen=True, slots=True)
class EoseMessage:
    """End of stored events for a subscription."""

    subscription_id: str


@dataclass(frozen=True, slots=True)
class OkMessage:
    """Acknowledgment of a published ``EVENT`` or ``AUTH``."""

    event_id: str
    accepted: bool
    message: str = ""

    @property
    def prefix(self) -> MachinePrefix | None:
        return split_prefix(self.message)[0]

    @property
    def auth_required(self) -> bool:
        return not self.accepted and self.prefix is MachinePrefix.AUTH_REQUIRED


@dataclass(frozen=True, slots=True)
class NoticeMessage:
    """Human-readable notice from the relay."""

    message: str


@dataclass(frozen=True, slots=True)
class AuthMessage:
    """NIP-42 authentication challenge."""

    challenge: str


@dataclass(frozen=True, slots=True)
class ClosedMessage:
    """The relay ended a subscription on its side."""

    subscription_id: str
    message: str = ""

    @property
    def prefix(self) -> MachinePrefix | None:
        return split_prefix(self.message)[0]

    @property
    def auth_required(self) -> bool:
        return self.prefix is MachinePrefix.AUTH_REQUIRED


@dataclass(frozen=True, slots=True)
class CountMessage:
    """NIP-45 count result."""

    subscription_id: str
    count: int


RelayMessage = (
    EventMessage
    | EoseMessage
    | OkMessage
    | NoticeMessage
    | AuthMessage
    | ClosedMessage
    | CountMessage
)


def _expect_str(value: Any, what: str) -> str:
    if not isinstance(value, str):
        raise ProtocolViolation(f"{what} must be a string, got {type(value).__name__}")
    return value


def _expect_len(frame: list[Any], minimum: int, label: str) -> None:
    if len(frame) < minimum:
        raise ProtocolViolation(f"{label} frame needs {minimum} elements, got {len(frame)}")


def _parse_event_frame(frame: list[Any]) -> EventMessage:
    _expect_len(frame, 3, "EVENT")
    sub_id = _expect_str(frame[1], "subscription id")
    try:
        event = Event.from_dict(frame[2])
    except (TypeError, ValueError) as e:
        raise ProtocolViolation(f"malformed event: {e}") from e
    return EventMessage(sub_id, event)


def _parse_ok_frame(frame: list[Any]) -> OkMessage:
    _expect_len(frame, 3, "OK")
    event_id = _expect_str(frame[1], "event id")
    if not isinstance(frame[2], bool):
        raise ProtocolViolation("OK status must be a boolean")
    message = _expect_str(frame[3], "OK message") if len(frame) > 3 else ""  # noqa: PLR2004
    return OkMessage(event_id, frame[2], message)


def _parse_count_frame(frame: list[Any]) -> CountMessage:
    _expect_len(frame, 3, "COUNT")
    sub_id = _expect_str(frame[1], "subscription id")
    body = frame[2]
    count = body.get("count") if isinstance(body, dict) else None
    if isinstance(count, bool) or not isinstance(count, int):
        raise ProtocolViolation("COUNT body must carry an integer count")
    return CountMessage(sub_id, count)


def parse_message(raw: str | bytes) -> RelayMessage:
    """Parse one inbound frame.

    Args:
        raw: Text (or UTF-8 bytes) of a WebSocket message.

    Returns:
        The typed message.

    Raises:
        ProtocolViolation: On invalid or too deeply nested JSON, a non-array
            frame, an unknown frame type, or elements of the wrong shape.
    """
    try:
        frame = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise ProtocolViolation(f"invalid JSON: {e}") from e
    except RecursionError as e:
        raise ProtocolViolation("invalid JSON: nested too deeply") from e

    if not isinstance(frame, list) or not frame:
        raise ProtocolViolation("frame must be a non-empty JSON array")

    label = _expect_str(frame[0], "frame type")

    if label == "EVENT":
        return _parse_event_frame(frame)
    if label == "EOSE":
        _expect_len(frame, 2, "EOSE")
        return EoseMessage(_expect_str(frame[1], "subscription id"))
    if label == "OK":
        return _parse_ok_frame(frame)
    if label == "NOTICE":
        _expect_len(frame, 2, "NOTICE")
        return NoticeMessage(_expect_str(frame[1], "notice"))
    if label == "AUTH":
        _expect_len(frame, 2, "AUTH")
        challenge = _expect_str(frame[1], "challenge")
        if not challenge:
            raise ProtocolViolation("AUTH challenge must not be empty")
        return AuthMessage(challenge)
    if label == "CLOSED":
        _expect_len(frame, 2, "CLOSED")
        sub_id = _expect_str(frame[1], "subscription id")
        message = _expect_str(frame[2], "CLOSED message") if len(frame) > 2 else ""  # noqa: PLR2004
        return ClosedMessage(sub_id, message)
    if label == "COUNT":
        return _parse_count_frame(frame)

    raise ProtocolViolation(f"unknown frame type: {label!r}")


# ---------------------------------------------------------------------------
# Outbound frames
# ---------------------------------------------------------------------------


def _dumps(frame: list[Any]) -> str:
    return json.dumps(frame, separators=(",", ":"), ensure_ascii=False)


def _check_subscription_id(subscription_id: str) -> None:
    if not subscription_id or len(subscription_id) > MAX_SUBSCRIPTION_ID_LENGTH:
        raise ValueError(
            f"subscription id must be 1-{MAX_SUBSCRIPTION_ID_LENGTH} characters"
        )


def encode_req(subscription_id: str, filters: Sequence[Filter]) -> str:
    """Encode ``["REQ", <sub>, <filter>...]``.

    Raises:
        ValueError: If the subscription id is empty or too long, or no
            filter is given.
    """
    _check_subscription_id(subscription_id)
    if not filters:
        raise ValueError("REQ needs at least one filter")
    return _dumps(["REQ", subscription_id, *(f.to_dict() for f in filters)])


def encode_close(subscription_id: str) -> str:
    """Encode ``["CLOSE", <sub>]``."""
    _check_subscription_id(subscription_id)
    return _dumps(["CLOSE", subscription_id])


def encode_event(event: Event) -> str:
    """Encode ``["EVENT", <event>]``."""
    return _dumps(["EVENT", event.to_dict()])


def encode_auth(event: Event) -> str:
    """Encode ``["AUTH", <signed kind 22242 event>]``."""
    return _dumps(["AUTH", event.to_dict()])
