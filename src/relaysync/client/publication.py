"""
Per-relay publish tracking.

[RelayPool.publish()][relaysync.client.pool.RelayPool.publish] returns a
[Publication][relaysync.client.publication.Publication] immediately and
sends the event to each selected relay in the background. Every relay ends
with exactly one [PublishOutcome][relaysync.client.publication.PublishOutcome]:

| Outcome | Meaning |
|---|---|
| ``ACCEPTED`` | ``["OK", id, true, ...]`` |
| ``REJECTED`` | ``["OK", id, false, msg]`` or authentication refused |
| ``TIMEOUT`` | no ``OK`` within ``publish_timeout`` |
| ``ERROR`` | not connected, or the send failed |

Examples:
    ```python
    publication = await pool.publish(event)
    first = await publication.accepted()      # raises PublishingError if all fail
    results = await publication.completed()   # {url: RelayPublishResult}
    ```
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from relaysync.core.exceptions import PublishingError
from relaysync.models.event import Event
from relaysync.nips.nip01 import OkMessage


class PublishOutcome(StrEnum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class RelayPublishResult:
    """Final publish outcome for one relay, with the relay's message."""

    url: str
    outcome: PublishOutcome
    message: str = ""


class Publication:
    """Handle for an event being published to several relays."""

    def __init__(self, event: Event, relays: Sequence[str]) -> None:
        loop = asyncio.get_running_loop()
        self.event = event
        self.relays = tuple(relays)
        self._results: dict[str, RelayPublishResult] = {}
        self._acks: dict[str, asyncio.Future[OkMessage]] = {}
        self._accepted: asyncio.Future[str] = loop.create_future()
        self._completed: asyncio.Future[dict[str, RelayPublishResult]] = loop.create_future()
        if not self.relays:
            self._finish()

    @property
    def done(self) -> bool:
        return self._completed.done()

    @property
    def results(self) -> dict[str, RelayPublishResult]:
        """Outcomes recorded so far."""
        return dict(self._results)

    @property
    def outcomes(self) -> dict[str, PublishOutcome]:
        return {url: result.outcome for url, result in self._results.items()}

    async def accepted(self) -> str:
        """Wait for the first relay to accept and return its URL.

        Raises:
            PublishingError: If every relay finished without accepting.
        """
        return await asyncio.shield(self._accepted)

    async def completed(self) -> dict[str, RelayPublishResult]:
        """Wait until every relay has an outcome and return the full map."""
        return await asyncio.shield(self._completed)

    # -------------------------------------------------------------------------
    # Pool-facing
    # -------------------------------------------------------------------------

    def expect_ack(self, url: str) -> asyncio.Future[OkMessage]:
        """Return a future resolved by the next ``OK`` from *url*."""
        future: asyncio.Future[OkMessage] = asyncio.get_running_loop().create_future()
        self._acks[url] = future
        return future

    def resolve_ack(self, url: str, message: OkMessage) -> bool:
        future = self._acks.pop(url, None)
        if future is None or future.done():
            return False
        future.set_result(message)
        return True

    def record(self, url: str, outcome: PublishOutcome, message: str = "") -> None:
        """Record the final outcome for *url*. Later records for the same relay are ignored."""
        if url in self._results or url not in self.relays:
            return
        self._results[url] = RelayPublishResult(url, outcome, message)
        if outcome is PublishOutcome.ACCEPTED and not self._accepted.done():
            self._accepted.set_result(url)
        if len(self._results) == len(self.relays):
            self._finish()

    def abort(self, message: str) -> None:
        """Record ``ERROR`` for every relay still pending."""
        for url in self.relays:
            self.record(url, PublishOutcome.ERROR, message)
        for future in self._acks.values():
            future.cancel()
        self._acks.clear()

    def _finish(self) -> None:
        if not self._accepted.done():
            self._accepted.set_exception(
                PublishingError(
                    f"no relay accepted event {self.event.id}",
                    outcomes=self.outcomes,
                )
            )
            # Mark retrieved: callers that only await completed() must not log it.
            self._accepted.exception()
        if not self._completed.done():
            self._completed.set_result(dict(self._results))
