"""
Merged multi-relay subscription handle.

A [Subscription][relaysync.client.subscription.Subscription] is returned by
[RelayPool.subscribe()][relaysync.client.pool.RelayPool.subscribe] before
any relay has answered. It merges the event streams of every relay it fans
out to into one stream that is:

* **deduplicated** -- each event id is delivered at most once;
* **ordered** -- stored events (the backlog) are buffered until the logical
  EOSE and flushed sorted by ``(created_at, id)``. After that, live events
  advance a delivery watermark. A live event at or below the watermark is
  *late*: it goes to ``on_late`` instead of the main stream, so the main
  stream never goes backwards;
* **bounded** -- the logical EOSE fires exactly once, when every relay has
  sent ``EOSE`` (or ``CLOSED``) or when ``eose_timeout`` elapses, whichever
  comes first. ``eose_reason`` records which.

Consumers either pass callbacks or iterate. Without an ``on_event`` callback
the main stream is queued from the start; with one, events are only queued
once iteration begins:

```python
subscription = await pool.subscribe([Filter(kinds=(1,))])
async for event in subscription:
    ...
```

After [close()][relaysync.client.subscription.Subscription.close] nothing
more is delivered, including frames already in flight. Once the logical EOSE
has fired, deduplication remembers the most recent ``seen_limit`` ids.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from collections.abc import Callable, Sequence
from enum import StrEnum
from typing import TYPE_CHECKING

from relaysync.core.logger import Logger
from relaysync.models.event import Event, SortKey


if TYPE_CHECKING:
    from relaysync.models.filter import Filter


EventCallback = Callable[[Event], None]
EoseCallback = Callable[["Subscription"], None]


class EoseReason(StrEnum):
    ALL_RELAYS = "all_relays"
    TIMEOUT = "timeout"
    NO_RELAYS = "no_relays"


class Subscription:
    """Handle for one logical subscription across several relays.

    Args:
        subscription_id: Wire subscription id (shared by every relay).
        filters: Filters sent in the ``REQ``.
        relays: Normalized URLs the subscription fans out to.
        on_event: Called for each event on the main (ordered) stream.
        on_eose: Called once when the logical EOSE fires.
        on_late: Called for live events behind the delivery watermark.
        on_close: Called once by ``close()``; used by the pool to release
            the subscription.
        seen_limit: Event ids remembered for deduplication after the
            logical EOSE. The backlog is always fully deduplicated.
        logger: Structured logger.

    Attributes:
        eose_reason: Why the logical EOSE fired, or ``None`` before it did.
        delivered: Number of events delivered on the main stream.
        late: Number of events routed to the late channel.
    """

    def __init__(
        self,
        subscription_id: str,
        filters: Sequence[Filter],
        relays: Sequence[str],
        *,
        on_event: EventCallback | None = None,
        on_eose: EoseCallback | None = None,
        on_late: EventCallback | None = None,
        on_close: Callable[[Subscription], None] | None = None,
        seen_limit: int = 10_000,
        logger: Logger | None = None,
    ) -> None:
        self.id = subscription_id
        self.filters = tuple(filters)
        self.relays = tuple(relays)
        self._on_event = on_event
        self._on_eose = on_eose
        self._on_late = on_late
        self._on_close = on_close
        self._logger = (logger or Logger("relaysync.client.subscription")).bind(
            subscription=subscription_id
        )

        self._seen: OrderedDict[str, None] = OrderedDict()
        self._seen_limit = seen_limit
        self._backlog: list[Event] = []
        self._watermark: SortKey | None = None
        self._relays_done: set[str] = set()
        self._auth_retried: set[str] = set()
        self._queue: asyncio.Queue[Event | None] = asyncio.Queue()
        self._queued = on_event is None
        self._eose = asyncio.Event()
        self._timer: asyncio.TimerHandle | None = None
        self._closed = False

        self.eose_reason: EoseReason | None = None
        self.delivered = 0
        self.late = 0

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def eose_fired(self) -> bool:
        return self.eose_reason is not None

    @property
    def watermark(self) -> SortKey | None:
        """Sort key of the last event delivered on the main stream."""
        return self._watermark

    @property
    def relays_done(self) -> frozenset[str]:
        """Relays that sent ``EOSE`` or ``CLOSED``."""
        return frozenset(self._relays_done)

    def matches(self, event: Event) -> bool:
        return any(flt.matches(event) for flt in self.filters)

    def resume_filters(self) -> list[Filter]:
        """Filters to re-send after a reconnect, narrowed to the watermark."""
        if self._watermark is None:
            return list(self.filters)
        since = self._watermark[0]
        return [flt.with_since(max(since, flt.since or 0)) for flt in self.filters]

    # -------------------------------------------------------------------------
    # Pool-facing input
    # -------------------------------------------------------------------------

    def start_timer(self, timeout: float) -> None:
        """Arm the EOSE aggregation timeout; with no relays fire immediately."""
        loop = asyncio.get_running_loop()
        if not self.relays:
            loop.call_soon(self.fire_eose, EoseReason.NO_RELAYS)
            return
        self._timer = loop.call_later(timeout, self.fire_eose, EoseReason.TIMEOUT)

    def deliver(self, event: Event) -> bool:
        """Offer a validated event. Returns ``True`` if it was accepted.

        Events already seen, delivered after close, or not matching any
        filter are ignored.
        """
        if self._closed or event.id in self._seen or not self.matches(event):
            return False
        self._seen[event.id] = None

        if not self.eose_fired:
            self._backlog.append(event)
            return True
        self._trim_seen()

        if self._watermark is not None and event.sort_key <= self._watermark:
            self.late += 1
            self._logger.debug("late_event", event_id=event.id, created_at=event.created_at)
            if self._on_late is not None:
                self._call(self._on_late, event)
            return True

        self._emit(event)
        return True

    def relay_finished(self, url: str) -> None:
        """Record ``EOSE`` or ``CLOSED`` from *url*."""
        if self._closed or url not in self.relays:
            return
        self._relays_done.add(url)
        if not self.eose_fired and self._relays_done.issuperset(self.relays):
            self.fire_eose(EoseReason.ALL_RELAYS)

    def mark_auth_retry(self, url: str) -> bool:
        """Return ``True`` the first time *url* asks for auth on this subscription."""
        if url in self._auth_retried:
            return False
        self._auth_retried.add(url)
        return True

    def fire_eose(self, reason: EoseReason) -> None:
        """Fire the logical EOSE once and flush the sorted backlog."""
        if self._closed or self.eose_fired:
            return
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.eose_reason = reason

        backlog, self._backlog = sorted(self._backlog, key=lambda e: e.sort_key), []
        for event in backlog:
            self._emit(event)

        self._logger.debug(
            "logical_eose",
            reason=reason,
            backlog=len(backlog),
            relays_done=len(self._relays_done),
            relays=len(self.relays),
        )
        self._trim_seen()
        self._eose.set()
        if self._on_eose is not None:
            self._call(self._on_eose, self)

    def _emit(self, event: Event) -> None:
        self._watermark = event.sort_key
        self.delivered += 1
        if self._queued:
            self._queue.put_nowait(event)
        if self._on_event is not None:
            self._call(self._on_event, event)

    def _trim_seen(self) -> None:
        while len(self._seen) > self._seen_limit:
            self._seen.popitem(last=False)

    def _call(self, callback: Callable[..., None], arg: object) -> None:
        try:
            callback(arg)
        except Exception:  # Intentionally broad: consumer callbacks must not break the pool
            self._logger.exception("subscription_callback_failed")

    # -------------------------------------------------------------------------
    # Consumer API
    # -------------------------------------------------------------------------

    async def wait_eose(self, timeout: float | None = None) -> EoseReason | None:  # noqa: ASYNC109
        """Wait for the logical EOSE and return its reason (``None`` on timeout or close)."""
        try:
            await asyncio.wait_for(self._eose.wait(), timeout=timeout)
        except TimeoutError:
            return None
        return self.eose_reason

    def close(self) -> None:
        """Stop delivery immediately. Idempotent."""
        if self._closed:
            return
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._backlog.clear()
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)
        self._eose.set()
        if self._on_close is not None:
            self._on_close(self)
        self._logger.debug("subscription_closed", delivered=self.delivered, late=self.late)

    def __aiter__(self) -> Subscription:
        self._queued = True
        return self

    async def __anext__(self) -> Event:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        event = await self._queue.get()
        if event is None or self._closed:
            raise StopAsyncIteration
        return event
