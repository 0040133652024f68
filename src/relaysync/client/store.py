"""
In-memory event store with canonical ordering and replaceable retention.

The store is the single source of truth downstream of the ingest pipeline.
It holds each event once (keyed by id), keeps a timeline sorted by
``(created_at, id)``, and retains at most one event per
[IdentityKey][relaysync.models.event.IdentityKey] for replaceable and
addressable kinds: newer ``created_at`` wins, and on equal timestamps the
lower id wins. The surviving version is the same for every arrival order.

All mutation happens synchronously on the event loop through
[add()][relaysync.client.store.EventStore.add], so concurrent deliveries of
the same event from different relays cannot interleave.

Examples:
    ```python
    store = EventStore()
    outcome, replaced = store.add(event)
    store.get_replaceable(pubkey, 0)                   # latest profile
    store.query(Filter(kinds=(1,), limit=20))          # newest 20 notes, ascending
    referenced = await store.wait_for(event_id, 5.0)   # lazy e-tag resolution
    ```
"""

from __future__ import annotations

import asyncio
import bisect
from collections.abc import Iterable, Iterator
from enum import StrEnum

from relaysync.models.event import Event, IdentityKey, SortKey
from relaysync.models.filter import Filter


class StoreOutcome(StrEnum):
    """Result of [EventStore.add()][relaysync.client.store.EventStore.add].

    Attributes:
        STORED: The event is new and is now part of the store.
        DUPLICATE: An event with the same id is already stored.
        STALE: A better version under the same identity key is retained
            (or this exact id was superseded earlier).
    """

    STORED = "stored"
    DUPLICATE = "duplicate"
    STALE = "stale"


class EventStore:
    """Deduplicated, ordered, in-memory event store."""

    def __init__(self) -> None:
        self._events: dict[str, Event] = {}
        self._timeline: list[SortKey] = []
        self._replaceable: dict[IdentityKey, Event] = {}
        self._superseded: set[str] = set()
        self._waiters: dict[str, list[asyncio.Future[Event]]] = {}

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._events

    def __iter__(self) -> Iterator[Event]:
        """Iterate over stored events in canonical ascending order."""
        for _, event_id in list(self._timeline):
            yield self._events[event_id]

    def is_known(self, event_id: str) -> bool:
        """Whether *event_id* is stored or was superseded by a better version."""
        return event_id in self._events or event_id in self._superseded

    def get(self, event_id: str) -> Event | None:
        return self._events.get(event_id)

    def get_replaceable(self, pubkey: str, kind: int, d: str | None = None) -> Event | None:
        """Return the retained version for a replaceable or addressable key.

        Pass ``d`` (``""`` when the event carries no ``d`` tag) for
        addressable kinds; leave it ``None`` for replaceable kinds.
        """
        return self._replaceable.get(IdentityKey(pubkey, kind, d))

    # -------------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------------

    def add(self, event: Event) -> tuple[StoreOutcome, Event | None]:
        """Insert a validated event.

        Returns:
            The outcome and, when a replaceable version was displaced, the
            displaced event.
        """
        if event.id in self._events:
            return StoreOutcome.DUPLICATE, None
        if event.id in self._superseded:
            return StoreOutcome.STALE, None

        replaced: Event | None = None
        key = event.identity_key
        if key is not None:
            current = self._replaceable.get(key)
            if current is not None:
                if not event.supersedes(current):
                    self._superseded.add(event.id)
                    return StoreOutcome.STALE, None
                self._remove(current)
                self._superseded.add(current.id)
                replaced = current
            self._replaceable[key] = event

        self._events[event.id] = event
        bisect.insort(self._timeline, event.sort_key)
        self._resolve_waiters(event)
        return StoreOutcome.STORED, replaced

    def _remove(self, event: Event) -> None:
        self._events.pop(event.id, None)
        index = bisect.bisect_left(self._timeline, event.sort_key)
        if index < len(self._timeline) and self._timeline[index] == event.sort_key:
            del self._timeline[index]

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def query(self, filters: Filter | Iterable[Filter], limit: int | None = None) -> list[Event]:
        """Return stored events matching any of *filters*, in ascending order.

        A filter's ``limit`` (or the *limit* argument, whichever is smaller)
        keeps the newest events, still returned oldest first.
        """
        filter_list = [filters] if isinstance(filters, Filter) else list(filters)
        matched: dict[str, Event] = {}
        for flt in filter_list:
            hits = [event for event in self if flt.matches(event)]
            if flt.limit is not None:
                hits = hits[-flt.limit :] if flt.limit else []
            for event in hits:
                matched[event.id] = event
        result = sorted(matched.values(), key=lambda event: event.sort_key)
        if limit is not None:
            result = result[-limit:] if limit else []
        return result

    def latest(self, count: int) -> list[Event]:
        """Return the newest *count* events in ascending order."""
        if count <= 0:
            return []
        return [self._events[event_id] for _, event_id in self._timeline[-count:]]

    # -------------------------------------------------------------------------
    # Lazy references
    # -------------------------------------------------------------------------

    async def wait_for(self, event_id: str, timeout: float) -> Event | None:  # noqa: ASYNC109
        """Return the event with *event_id*, waiting up to *timeout* seconds.

        Returns ``None`` if the event has not arrived in time.
        """
        event = self._events.get(event_id)
        if event is not None:
            return event

        future: asyncio.Future[Event] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(event_id, []).append(future)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            return None
        finally:
            waiters = self._waiters.get(event_id)
            if waiters is not None:
                if future in waiters:
                    waiters.remove(future)
                if not waiters:
                    del self._waiters[event_id]

    def _resolve_waiters(self, event: Event) -> None:
        for future in self._waiters.pop(event.id, []):
            if not future.done():
                future.set_result(event)
