"""
Validation, deduplication and dispatch of inbound events.

Every event delivered by any relay passes through
[EventIngestPipeline.ingest()][relaysync.client.ingest.EventIngestPipeline.ingest]:

1. **Dedup** -- ids already stored (or superseded) are dropped before
   signature verification. The first copy to validate is authoritative; a
   later copy counts as a duplicate only if it equals the stored event (or,
   with nothing stored, if its id still hashes), otherwise it is invalid.
2. **Validate** -- recompute the id, verify the signature, reject events
   dated too far in the future.
3. **Retain** -- ephemeral kinds are dispatched but never stored; every
   other kind goes to the [EventStore][relaysync.client.store.EventStore]
   (replaceable retention included).
4. **Dispatch** -- listeners (reducers, consumers) see each stored or
   ephemeral event exactly once.

The pipeline is synchronous and runs on the event loop, so deliveries from
concurrent relay sessions are serialized and cannot double-store.

See Also:
    [RelayPool][relaysync.client.pool.RelayPool]: Feeds every ``EVENT``
        frame into the pipeline and uses the returned
        [IngestResult][relaysync.client.ingest.IngestResult] for relay
        health and subscription delivery.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import StrEnum

from relaysync.core.exceptions import InvalidEvent
from relaysync.core.logger import Logger
from relaysync.core.metrics import INGEST_EVENTS_TOTAL
from relaysync.models.constants import KindClass
from relaysync.models.event import Event

from .configs import IngestConfig
from .store import EventStore, StoreOutcome


EventListener = Callable[[Event], None]


class IngestOutcome(StrEnum):
    STORED = "stored"
    DUPLICATE = "duplicate"
    STALE = "stale"
    INVALID = "invalid"
    EPHEMERAL = "ephemeral"


@dataclass(frozen=True, slots=True)
class IngestResult:
    """Outcome of ingesting one delivery.

    Attributes:
        outcome: What happened to the event.
        event: The delivered event.
        relay_url: Relay that delivered it, if known.
        replaced: Replaceable version displaced by this event.
        error: Validation failure reason for ``INVALID``.
    """

    outcome: IngestOutcome
    event: Event
    relay_url: str | None = None
    replaced: Event | None = None
    error: str | None = None

    @property
    def dispatched(self) -> bool:
        """Whether this delivery was the first valid copy (stored or ephemeral)."""
        return self.outcome in (IngestOutcome.STORED, IngestOutcome.EPHEMERAL)

    @property
    def valid(self) -> bool:
        return self.outcome is not IngestOutcome.INVALID


@dataclass(slots=True)
class IngestStats:
    """Cumulative per-outcome counters."""

    stored: int = 0
    duplicate: int = 0
    stale: int = 0
    invalid: int = 0
    ephemeral: int = 0
    per_relay: dict[str, int] = field(default_factory=dict)

    def record(self, result: IngestResult) -> None:
        name = result.outcome.value
        setattr(self, name, getattr(self, name) + 1)
        if result.relay_url is not None:
            self.per_relay[result.relay_url] = self.per_relay.get(result.relay_url, 0) + 1

    def as_dict(self) -> dict[str, int]:
        return {
            "stored": self.stored,
            "duplicate": self.duplicate,
            "stale": self.stale,
            "invalid": self.invalid,
            "ephemeral": self.ephemeral,
        }


class EventIngestPipeline:
    """Validate, deduplicate, store and dispatch events.

    Args:
        store: Destination store (a fresh one by default).
        config: Validation settings.
        logger: Structured logger.
        metrics_enabled: Update ``INGEST_EVENTS_TOTAL`` for each outcome.
    """

    def __init__(
        self,
        store: EventStore | None = None,
        config: IngestConfig | None = None,
        *,
        logger: Logger | None = None,
        metrics_enabled: bool = False,
    ) -> None:
        self._store = store if store is not None else EventStore()
        self._config = config or IngestConfig()
        self._logger = logger or Logger("relaysync.client.ingest")
        self._metrics_enabled = metrics_enabled
        self._listeners: list[EventListener] = []
        self._ephemeral_seen: OrderedDict[str, None] = OrderedDict()
        self.stats = IngestStats()

    @property
    def store(self) -> EventStore:
        return self._store

    def add_listener(self, listener: EventListener) -> Callable[[], None]:
        """Register *listener* for every dispatched event.

        Returns:
            A callable that unregisters the listener.
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self, event: Event) -> None:
        """Check the event's cryptographic integrity and timestamp.

        Raises:
            InvalidEvent: If the id does not match the canonical hash, the
                signature does not verify, or ``created_at`` is too far in
                the future.
        """
        if not event.has_valid_id():
            raise InvalidEvent("id does not match the canonical serialization", event.id)
        max_future = self._config.max_future_seconds
        if max_future is not None and event.created_at > int(time.time()) + max_future:
            raise InvalidEvent("created_at is too far in the future", event.id)
        if self._config.verify_signatures and not event.verify_signature():
            raise InvalidEvent("signature does not verify", event.id)

    # -------------------------------------------------------------------------
    # Ingest
    # -------------------------------------------------------------------------

    def ingest(self, event: Event, relay_url: str | None = None) -> IngestResult:
        """Run one delivery through the pipeline.

        Never raises for bad input: invalid events produce an ``INVALID``
        result.
        """
        result = self._process(event, relay_url)
        self.stats.record(result)
        if self._metrics_enabled:
            INGEST_EVENTS_TOTAL.labels(outcome=result.outcome.value).inc()
        if result.dispatched:
            self._dispatch(event)
        return result

    def _process(self, event: Event, relay_url: str | None) -> IngestResult:
        ephemeral = event.kind_class is KindClass.EPHEMERAL
        stored = self._store.get(event.id)
        if stored is not None:
            # Only an exact copy of the validated event counts as a duplicate.
            if stored != event:
                return self._invalid(
                    event,
                    InvalidEvent("copy differs from the stored event", event.id),
                    relay_url,
                )
            return IngestResult(IngestOutcome.DUPLICATE, event, relay_url)
        if (ephemeral and event.id in self._ephemeral_seen) or self._store.is_known(event.id):
            if not event.has_valid_id():
                return self._invalid(
                    event,
                    InvalidEvent("id does not match the canonical serialization", event.id),
                    relay_url,
                )
            if ephemeral and event.id in self._ephemeral_seen:
                return IngestResult(IngestOutcome.DUPLICATE, event, relay_url)
            return IngestResult(IngestOutcome.STALE, event, relay_url)

        try:
            self.validate(event)
        except InvalidEvent as e:
            return self._invalid(event, e, relay_url)

        if ephemeral:
            self._remember_ephemeral(event.id)
            return IngestResult(IngestOutcome.EPHEMERAL, event, relay_url)

        outcome, replaced = self._store.add(event)
        if outcome is StoreOutcome.DUPLICATE:
            return IngestResult(IngestOutcome.DUPLICATE, event, relay_url)
        if outcome is StoreOutcome.STALE:
            return IngestResult(IngestOutcome.STALE, event, relay_url)
        return IngestResult(IngestOutcome.STORED, event, relay_url, replaced=replaced)

    def _invalid(self, event: Event, error: InvalidEvent, relay_url: str | None) -> IngestResult:
        self._logger.debug("event_invalid", event_id=event.id, relay=relay_url, error=str(error))
        return IngestResult(IngestOutcome.INVALID, event, relay_url, error=str(error))

    def _remember_ephemeral(self, event_id: str) -> None:
        self._ephemeral_seen[event_id] = None
        while len(self._ephemeral_seen) > self._config.ephemeral_cache_size:
            self._ephemeral_seen.popitem(last=False)

    def _dispatch(self, event: Event) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # Intentionally broad: a consumer bug must not stop ingest
                self._logger.exception("listener_failed", event_id=event.id)
