"""
Immutable, content-addressed Nostr event backed by ``nostr_sdk``.

An [Event][relaysync.models.event.Event] is a frozen dataclass holding the
seven NIP-01 wire fields. Its identity is the SHA-256 of the canonical
serialization ``[0, pubkey, created_at, kind, tags, content]``, computed by
``nostr_sdk.EventId.compute()``. Wire parsing and signature verification go
through ``nostr_sdk.Event``, which each model parses once and caches; the
models layer never signs anything itself. Unsigned events are represented by
[EventDraft][relaysync.models.event.EventDraft] and become an ``Event`` only
through [EventDraft.finalize()][relaysync.models.event.EventDraft.finalize].

See Also:
    [relaysync.client.ingest][]: Validates, deduplicates, and orders events
        arriving from relays.
    [relaysync.utils.keys][]: Signer implementations that turn a draft into
        a signature.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from time import time
from typing import Any, NamedTuple

from nostr_sdk import Event as NostrEvent
from nostr_sdk import EventId, Kind, NostrSdkError, PublicKey, Tag, Timestamp

from ._validation import (
    freeze_tags,
    validate_hex,
    validate_int_range,
    validate_timestamp,
)
from .constants import EVENT_KIND_MAX, KindClass, kind_class


logger = logging.getLogger("relaysync.models.event")

_ID_LENGTH = 64
_PUBKEY_LENGTH = 64
_SIG_LENGTH = 128

_EVENT_FIELDS = ("id", "pubkey", "created_at", "kind", "tags", "content", "sig")

Tags = tuple[tuple[str, ...], ...]
SortKey = tuple[int, str]


def compute_event_id(
    pubkey: str,
    created_at: int,
    kind: int,
    tags: Tags | list[list[str]],
    content: str,
) -> str:
    """Return the lowercase hex NIP-01 id of the given fields.

    Raises:
        ValueError: If ``nostr_sdk`` rejects the public key or a tag.
    """
    try:
        event_id = EventId.compute(
            PublicKey.parse(pubkey),
            Timestamp.from_secs(created_at),
            Kind(kind),
            [Tag.parse(list(tag)) for tag in tags],
            content,
        )
    except NostrSdkError as e:
        raise ValueError(f"cannot compute event id: {e}") from e
    return event_id.to_hex()


class IdentityKey(NamedTuple):
    """Retention key for replaceable and addressable events.

    ``d`` is ``None`` for replaceable kinds and the (possibly empty) ``d`` tag
    value for addressable kinds.
    """

    pubkey: str
    kind: int
    d: str | None = None

    def __str__(self) -> str:
        if self.d is None:
            return f"{self.kind}:{self.pubkey}"
        return f"{self.kind}:{self.pubkey}:{self.d}"


def _tag_values(tags: Tags, name: str) -> list[str]:
    return [tag[1] for tag in tags if len(tag) >= 2 and tag[0] == name]  # noqa: PLR2004


@dataclass(frozen=True, slots=True)
class Event:
    """Immutable Nostr event.

    Structural validation runs in ``__post_init__`` (hex lengths, integer
    ranges, tag shapes). Cryptographic validation (id recomputation and
    signature check) is deliberately separate, see
    [has_valid_id()][relaysync.models.event.Event.has_valid_id] and
    [verify_signature()][relaysync.models.event.Event.verify_signature], so
    that malformed-but-parseable events can still be constructed, counted and
    rejected by the ingest pipeline.

    Attributes:
        id: 64-char lowercase hex event id.
        pubkey: 64-char lowercase hex author public key.
        created_at: Unix timestamp in seconds.
        kind: Event kind (0-65535).
        tags: Tuple of tag tuples; each tag is a tuple of strings.
        content: Arbitrary string content.
        sig: 128-char lowercase hex Schnorr signature.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a field is out of range or not valid hex.

    Examples:
        ```python
        event = Event.from_json(raw)
        event.sort_key        # (1700000000, "ab12...")
        event.identity_key    # IdentityKey(pubkey=..., kind=0, d=None)
        event.has_valid_id()  # True
        ```
    """

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: Tags
    content: str
    sig: str = field(repr=False)
    _nostr: NostrEvent | None = field(
        default=None, init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        validate_hex(self.id, _ID_LENGTH, "id")
        validate_hex(self.pubkey, _PUBKEY_LENGTH, "pubkey")
        validate_hex(self.sig, _SIG_LENGTH, "sig")
        validate_timestamp(self.created_at, "created_at")
        validate_int_range(self.kind, "kind", 0, EVENT_KIND_MAX)
        if not isinstance(self.content, str):
            raise TypeError(f"content must be a str, got {type(self.content).__name__}")
        object.__setattr__(self, "tags", freeze_tags(self.tags))

    # -------------------------------------------------------------------------
    # Identity and ordering
    # -------------------------------------------------------------------------

    @property
    def sort_key(self) -> SortKey:
        """Canonical ordering key ``(created_at, id)``."""
        return (self.created_at, self.id)

    @property
    def kind_class(self) -> KindClass:
        """Retention class derived from the kind number."""
        return kind_class(self.kind)

    @property
    def identity_key(self) -> IdentityKey | None:
        """Retention key for replaceable/addressable kinds, ``None`` otherwise."""
        cls = self.kind_class
        if cls is KindClass.REPLACEABLE:
            return IdentityKey(self.pubkey, self.kind)
        if cls is KindClass.ADDRESSABLE:
            return IdentityKey(self.pubkey, self.kind, self.first_tag_value("d") or "")
        return None

    def supersedes(self, other: Event) -> bool:
        """Whether this event should replace *other* under the same identity key.

        Newer ``created_at`` wins; on equal timestamps the lexically lower id wins.
        """
        if self.created_at != other.created_at:
            return self.created_at > other.created_at
        return self.id < other.id

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    def tag_values(self, name: str) -> list[str]:
        """Return the first value of every tag named *name*, in tag order."""
        return _tag_values(self.tags, name)

    def first_tag_value(self, name: str) -> str | None:
        """Return the first value of the first tag named *name*, or ``None``."""
        values = _tag_values(self.tags, name)
        return values[0] if values else None

    def referenced_event_ids(self) -> list[str]:
        """Ids referenced through ``e`` tags, resolved lazily by consumers."""
        return self.tag_values("e")

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def compute_id(self) -> str:
        """Recompute the id from the canonical serialization."""
        return compute_event_id(self.pubkey, self.created_at, self.kind, self.tags, self.content)

    def has_valid_id(self) -> bool:
        """Whether ``id`` equals the recomputed canonical hash."""
        try:
            return self.compute_id() == self.id
        except ValueError:
            return False

    def verify_signature(self) -> bool:
        """Verify the Schnorr signature over the id with ``nostr_sdk``.

        Returns:
            ``True`` when both the id and the signature verify. Malformed
            keys or signatures rejected by the SDK parser yield ``False``.
        """
        try:
            return bool(self.to_nostr().verify())
        except NostrSdkError as e:
            logger.debug("signature_parse_failed id=%s error=%s", self.id, e)
            return False

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Return the NIP-01 wire object."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def to_json(self) -> str:
        """Return the wire object as compact JSON."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    def to_nostr(self) -> NostrEvent:
        """Return the equivalent ``nostr_sdk.Event``, parsed once and cached.

        Raises:
            NostrSdkError: If the SDK rejects a field (e.g. an empty tag).
        """
        if self._nostr is None:
            object.__setattr__(self, "_nostr", NostrEvent.from_json(self.to_json()))
        return self._nostr  # type: ignore[return-value]

    @classmethod
    def from_nostr(cls, inner: NostrEvent) -> Event:
        """Build an event from a ``nostr_sdk.Event`` and keep it as the cached SDK form."""
        event = cls(
            id=inner.id().to_hex(),
            pubkey=inner.author().to_hex(),
            created_at=inner.created_at().as_secs(),
            kind=inner.kind().as_u16(),
            tags=[tag.to_vec() for tag in inner.tags()],
            content=inner.content(),
            sig=inner.signature(),
        )
        object.__setattr__(event, "_nostr", inner)
        return event

    @classmethod
    def from_dict(cls, data: Any) -> Event:
        """Build an event from a decoded NIP-01 wire object.

        The shape is checked here; field parsing is left to ``nostr_sdk``.

        Raises:
            TypeError: If *data* is not a mapping or a field has the wrong type.
            ValueError: If a required field is missing or invalid.
        """
        if not isinstance(data, dict):
            raise TypeError(f"event must be an object, got {type(data).__name__}")
        missing = [name for name in _EVENT_FIELDS if name not in data]
        if missing:
            raise ValueError(f"event missing fields: {', '.join(missing)}")
        tags = data["tags"]
        if not isinstance(tags, list):
            raise TypeError(f"tags must be a list, got {type(tags).__name__}")
        content = data["content"]
        if not isinstance(content, str):
            raise TypeError(f"content must be a str, got {type(content).__name__}")
        return cls.from_json(json.dumps(data, ensure_ascii=False))

    @classmethod
    def from_json(cls, raw: str) -> Event:
        """Parse a JSON-encoded wire object with ``nostr_sdk.Event.from_json()``.

        No id or signature check happens here.

        Raises:
            ValueError: On invalid JSON or fields the SDK or this model rejects.
            TypeError: On fields of the wrong type.
        """
        try:
            inner = NostrEvent.from_json(raw)
        except NostrSdkError as e:
            raise ValueError(f"invalid event: {e}") from e
        return cls.from_nostr(inner)


@dataclass(frozen=True, slots=True)
class EventDraft:
    """Unsigned event awaiting a signature from an external signer.

    Attributes:
        pubkey: Author public key the signer is expected to sign with.
        kind: Event kind.
        content: Event content.
        tags: Tag arrays.
        created_at: Creation timestamp (defaults to now).

    See Also:
        [Signer][relaysync.utils.keys.Signer]: Produces the signature for
            a draft.
    """

    pubkey: str
    kind: int
    content: str = ""
    tags: Tags = field(default=())
    created_at: int = field(default_factory=lambda: int(time()))

    def __post_init__(self) -> None:
        validate_hex(self.pubkey, _PUBKEY_LENGTH, "pubkey")
        validate_timestamp(self.created_at, "created_at")
        validate_int_range(self.kind, "kind", 0, EVENT_KIND_MAX)
        if not isinstance(self.content, str):
            raise TypeError(f"content must be a str, got {type(self.content).__name__}")
        object.__setattr__(self, "tags", freeze_tags(self.tags))

    def compute_id(self) -> str:
        """Return the id the signed event will carry."""
        return compute_event_id(self.pubkey, self.created_at, self.kind, self.tags, self.content)

    def to_unsigned_dict(self) -> dict[str, Any]:
        """Return the unsigned wire object (with ``id``, without ``sig``)."""
        return {
            "id": self.compute_id(),
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
        }

    def finalize(self, sig: str) -> Event:
        """Attach *sig* and return the signed [Event][relaysync.models.event.Event]."""
        return Event(
            id=self.compute_id(),
            pubkey=self.pubkey,
            created_at=self.created_at,
            kind=self.kind,
            tags=self.tags,
            content=self.content,
            sig=sig,
        )
