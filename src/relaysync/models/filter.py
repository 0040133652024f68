"""
Subscription filter (NIP-01) backed by ``nostr_sdk.Filter``.

A [Filter][relaysync.models.filter.Filter] is a frozen, validated view of a
``nostr_sdk.Filter``, built once at construction. The SDK filter renders the
wire form sent inside ``REQ`` frames and does the local matching in
[Filter.matches()][relaysync.models.filter.Filter.matches], which the pool
uses to route incoming events and drop events a relay should not have sent.

Examples:
    ```python
    f = Filter(kinds=(1,), authors=(pubkey,), tags={"t": ("nostr",)}, limit=50)
    f.to_dict()
    # {'authors': [...], 'kinds': [1], '#t': ['nostr'], 'limit': 50}
    f.matches(event)
    ```
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from nostr_sdk import EventId, Kind, NostrSdkError, PublicKey, SingleLetterTag, Timestamp
from nostr_sdk import Filter as NostrFilter

from ._validation import validate_hex, validate_int_range, validate_timestamp
from .constants import EVENT_KIND_MAX


if TYPE_CHECKING:
    from .event import Event


_HEX_LENGTH = 64
_LIST_FIELDS = ("ids", "authors", "kinds")


def _as_tuple(values: Iterable[Any] | None, name: str) -> tuple[Any, ...] | None:
    if values is None:
        return None
    if isinstance(values, str | bytes):
        raise TypeError(f"{name} must be a sequence, not a string")
    return tuple(values)


@dataclass(frozen=True, slots=True)
class Filter:
    """Immutable NIP-01 filter.

    ``None`` means "no constraint" for every field. An empty tuple is a
    constraint that nothing satisfies, matching relay behaviour; the SDK
    filter has no such notion, so it is kept on this side.

    Attributes:
        ids: Exact event ids.
        authors: Exact author public keys.
        kinds: Event kinds.
        since: Inclusive lower bound on ``created_at``.
        until: Inclusive upper bound on ``created_at``.
        tags: Single-letter tag name to accepted values (``#e``, ``#p``, ``#h``...).
        limit: Maximum number of stored events requested from each relay.
            Only meaningful for the initial backlog; not used in matching.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a value is out of range, not valid hex, or rejected
            by ``nostr_sdk``.
    """

    ids: tuple[str, ...] | None = None
    authors: tuple[str, ...] | None = None
    kinds: tuple[int, ...] | None = None
    since: int | None = None
    until: int | None = None
    tags: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    limit: int | None = None
    _nostr: NostrFilter = field(
        default=None,
        init=False,
        repr=False,
        compare=False,
        hash=False,  # type: ignore[assignment]
    )

    def __post_init__(self) -> None:
        ids = _as_tuple(self.ids, "ids")
        authors = _as_tuple(self.authors, "authors")
        kinds = _as_tuple(self.kinds, "kinds")
        for value in ids or ():
            validate_hex(value, _HEX_LENGTH, "ids")
        for value in authors or ():
            validate_hex(value, _HEX_LENGTH, "authors")
        for kind in kinds or ():
            validate_int_range(kind, "kinds", 0, EVENT_KIND_MAX)
        if self.since is not None:
            validate_timestamp(self.since, "since")
        if self.until is not None:
            validate_timestamp(self.until, "until")
        if self.limit is not None:
            validate_timestamp(self.limit, "limit")

        tags: dict[str, tuple[str, ...]] = {}
        for name, values in self.tags.items():
            key = name.removeprefix("#")
            if len(key) != 1 or not (key.isascii() and key.isalpha()):
                raise ValueError(f"Tag filter name must be a single letter: {name!r}")
            tag_values = _as_tuple(values, f"#{key}") or ()
            if not all(isinstance(v, str) for v in tag_values):
                raise TypeError(f"#{key} values must be str")
            tags[key] = tag_values

        object.__setattr__(self, "ids", ids)
        object.__setattr__(self, "authors", authors)
        object.__setattr__(self, "kinds", kinds)
        object.__setattr__(self, "tags", MappingProxyType(tags))
        try:
            object.__setattr__(self, "_nostr", self._build())
        except NostrSdkError as e:
            raise ValueError(f"invalid filter: {e}") from e

    def _build(self) -> NostrFilter:
        f = NostrFilter()
        if self.ids:
            f = f.ids([EventId.parse(value) for value in self.ids])
        if self.authors:
            f = f.authors([PublicKey.parse(value) for value in self.authors])
        if self.kinds:
            f = f.kinds([Kind(kind) for kind in self.kinds])
        if self.since is not None:
            f = f.since(Timestamp.from_secs(self.since))
        if self.until is not None:
            f = f.until(Timestamp.from_secs(self.until))
        if self.limit is not None:
            f = f.limit(self.limit)
        for name, values in self.tags.items():
            if values:
                f = f.custom_tags(SingleLetterTag.from_byte(ord(name)), list(values))
        return f

    @property
    def unsatisfiable(self) -> bool:
        """Whether an empty constraint rules out every event."""
        if any(getattr(self, name) == () for name in _LIST_FIELDS):
            return True
        return any(not values for values in self.tags.values())

    def to_nostr(self) -> NostrFilter:
        """Return the underlying ``nostr_sdk.Filter``."""
        return self._nostr

    def matches(self, event: Event) -> bool:
        """Whether *event* satisfies every constraint of this filter.

        Events the SDK cannot represent never match.
        """
        if self.unsatisfiable:
            return False
        try:
            return bool(self._nostr.match_event(event.to_nostr()))
        except NostrSdkError:
            return False

    def with_since(self, since: int | None) -> Filter:
        """Return a copy with a new ``since`` bound (used for resubscription)."""
        return Filter(
            ids=self.ids,
            authors=self.authors,
            kinds=self.kinds,
            since=since,
            until=self.until,
            tags=dict(self.tags),
            limit=self.limit,
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the wire form, omitting unconstrained fields.

        Rendered by ``nostr_sdk``, so set-valued fields come out sorted and
        deduplicated.
        """
        data: dict[str, Any] = json.loads(self._nostr.as_json())
        for name in _LIST_FIELDS:
            if getattr(self, name) == ():
                data[name] = []
        for name, values in self.tags.items():
            if not values:
                data[f"#{name}"] = []
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Filter:
        """Build a filter from its wire form.

        Raises:
            ValueError: On unknown keys or invalid values.
            TypeError: On values of the wrong type.
        """
        known = {"ids", "authors", "kinds", "since", "until", "limit"}
        tags: dict[str, list[str]] = {}
        for key, value in data.items():
            if key.startswith("#"):
                tags[key[1:]] = value
            elif key not in known:
                raise ValueError(f"Unknown filter field: {key!r}")
        return cls(
            ids=data.get("ids"),
            authors=data.get("authors"),
            kinds=data.get("kinds"),
            since=data.get("since"),
            until=data.get("until"),
            tags=tags,
            limit=data.get("limit"),
        )
