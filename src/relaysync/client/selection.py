"""
Relay endpoints, rolling health, and per-author relay selection.

[RelayEndpoint][relaysync.client.selection.RelayEndpoint] is the pool's
record for one relay: its validated URL, declared capabilities, the authors
it serves as inbox or outbox, and a
[RelayHealth][relaysync.client.selection.RelayHealth] window.

[RelaySelector][relaysync.client.selection.RelaySelector] implements the
inbox/outbox policy:

* **Reading** an author's events uses the relays assigned as that author's
  *inbox* role.
* **Publishing** an author's events uses the author's *outbox* relays.
* Authors without an assignment use the pool's default relays, then the
  well-known fallback relays.

Per author at most ``max_relays_per_author`` relays are used. Healthy relays
come first; unhealthy relays are appended only as needed to reach
``min_relays``. Unhealthy relays are never removed, and a probe in the pool
re-admits them once they recover.

Note:
    Role assignments are supplied from outside (configuration or NIP-65
    relay lists through
    [RelayPool.ingest_relay_list()][relaysync.client.pool.RelayPool.ingest_relay_list]).
    When ingesting a NIP-65 list, the author's ``write`` relays are where
    their events are published and read from, so they become both the
    outbox and the inbox role for that author.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from relaysync.models.filter import Filter
from relaysync.models.relay import Relay, normalize_relay_url

from .configs import HealthConfig, SelectionConfig


class RelayRole(StrEnum):
    INBOX = "inbox"
    OUTBOX = "outbox"


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class RelayHealth:
    """Rolling success/error window for one relay.

    Successes are connects, accepted publishes and valid deliveries
    (duplicates included); failures are connect errors, publish timeouts and
    rejections, and invalid events.
    """

    def __init__(self, config: HealthConfig | None = None) -> None:
        self._config = config or HealthConfig()
        self._window: deque[bool] = deque(maxlen=self._config.window_size)
        self.successes = 0
        self.failures = 0
        self.events_received = 0
        self.duplicates = 0
        self.invalid_events = 0
        self.last_success_at: float | None = None
        self.last_failure_at: float | None = None
        self.last_error: str | None = None

    @property
    def score(self) -> float:
        """Success ratio over the window (``1.0`` with no samples)."""
        if not self._window:
            return 1.0
        return sum(self._window) / len(self._window)

    @property
    def samples(self) -> int:
        return len(self._window)

    @property
    def is_healthy(self) -> bool:
        if len(self._window) < self._config.min_samples:
            return True
        return self.score >= self._config.unhealthy_threshold

    def record_success(self) -> None:
        self._window.append(True)
        self.successes += 1
        self.last_success_at = time.time()

    def record_failure(self, reason: str | None = None) -> None:
        self._window.append(False)
        self.failures += 1
        self.last_failure_at = time.time()
        self.last_error = reason

    def record_delivery(self, *, duplicate: bool = False, valid: bool = True) -> None:
        """Count one delivered event toward liveness."""
        self.events_received += 1
        if not valid:
            self.invalid_events += 1
            self.record_failure("invalid event")
            return
        if duplicate:
            self.duplicates += 1
        self.record_success()

    def readmit(self) -> None:
        """Clear the window after a successful probe."""
        self._window.clear()
        self.record_success()


# ---------------------------------------------------------------------------
# Endpoint
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class RelayEndpoint:
    """Pool record for one relay.

    Attributes:
        relay: Validated relay URL.
        capabilities: Declared capability flags (``"nip-42"``, ``"nip-29"``...).
        auth_required: The relay demands authentication for reads.
        inbox_for: Authors whose events are read from this relay.
        outbox_for: Authors whose events are published to this relay.
        health: Rolling health window.
    """

    relay: Relay
    capabilities: set[str] = field(default_factory=set)
    auth_required: bool = False
    inbox_for: set[str] = field(default_factory=set)
    outbox_for: set[str] = field(default_factory=set)
    health: RelayHealth = field(default_factory=RelayHealth)

    @property
    def url(self) -> str:
        return self.relay.url

    def roles_for(self, pubkey: str) -> set[RelayRole]:
        roles: set[RelayRole] = set()
        if pubkey in self.inbox_for:
            roles.add(RelayRole.INBOX)
        if pubkey in self.outbox_for:
            roles.add(RelayRole.OUTBOX)
        return roles


# ---------------------------------------------------------------------------
# Selection
# ---------------------------------------------------------------------------


def _dedupe(urls: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for url in urls:
        seen.setdefault(url, None)
    return list(seen)


class RelaySelector:
    """Inbox/outbox relay selection with health ordering.

    Args:
        endpoints: The pool's registry, keyed by normalized URL. Read-only
            here; used for health lookups.
        default_relays: Pool-wide relays used when no role applies.
        config: Caps and fallbacks.
    """

    def __init__(
        self,
        endpoints: Mapping[str, RelayEndpoint],
        default_relays: Iterable[str] = (),
        config: SelectionConfig | None = None,
    ) -> None:
        self._endpoints = endpoints
        self._defaults = _dedupe(normalize_relay_url(url) for url in default_relays)
        self._config = config or SelectionConfig()
        self._inbox: dict[str, list[str]] = {}
        self._outbox: dict[str, list[str]] = {}

    @property
    def default_relays(self) -> list[str]:
        return list(self._defaults)

    def set_roles(
        self,
        pubkey: str,
        *,
        inbox: Iterable[str] | None = None,
        outbox: Iterable[str] | None = None,
    ) -> None:
        """Assign *pubkey*'s inbox and/or outbox relays (URLs are normalized)."""
        if inbox is not None:
            self._inbox[pubkey] = _dedupe(normalize_relay_url(url) for url in inbox)
        if outbox is not None:
            self._outbox[pubkey] = _dedupe(normalize_relay_url(url) for url in outbox)

    def inbox_of(self, pubkey: str) -> list[str]:
        return list(self._inbox.get(pubkey, ()))

    def outbox_of(self, pubkey: str) -> list[str]:
        return list(self._outbox.get(pubkey, ()))

    def authors_with_inbox(self, url: str) -> list[str]:
        return [pubkey for pubkey, urls in self._inbox.items() if url in urls]

    def authors_with_outbox(self, url: str) -> list[str]:
        return [pubkey for pubkey, urls in self._outbox.items() if url in urls]

    def _is_healthy(self, url: str) -> bool:
        endpoint = self._endpoints.get(url)
        return endpoint is None or endpoint.health.is_healthy

    def rank(self, urls: Iterable[str], limit: int | None = None) -> list[str]:
        """Order *urls* healthy-first and cap the result at *limit*.

        Unhealthy relays are kept only while fewer than ``min_relays``
        healthy relays are selected.
        """
        candidates = _dedupe(urls)
        healthy = [url for url in candidates if self._is_healthy(url)]
        unhealthy = [url for url in candidates if not self._is_healthy(url)]
        if limit is not None:
            healthy = healthy[:limit]
        selected = list(healthy)
        for url in unhealthy:
            if len(selected) >= self._config.min_relays:
                break
            if limit is not None and len(selected) >= limit:
                break
            selected.append(url)
        return selected

    def _baseline(self) -> list[str]:
        return self._defaults or list(self._config.fallback_relays)

    def read_relays_for(self, pubkey: str) -> list[str]:
        """Relays to read *pubkey*'s events from."""
        assigned = self._inbox.get(pubkey) or self._baseline()
        return self.rank(assigned, self._config.max_relays_per_author)

    def write_relays_for(self, pubkey: str) -> list[str]:
        """Relays to publish *pubkey*'s events to."""
        assigned = self._outbox.get(pubkey) or self._baseline()
        return self.rank(assigned, self._config.max_relays_per_author)

    def relays_for_filters(self, filters: Iterable[Filter]) -> list[str]:
        """Union of inbox relays relevant to *filters*.

        Filters naming ``authors`` fan out to each author's inbox relays;
        filters without authors use the default relays.
        """
        urls: list[str] = []
        for flt in filters:
            if flt.authors:
                for pubkey in flt.authors:
                    urls.extend(self.read_relays_for(pubkey))
            else:
                urls.extend(self._baseline())
        return self.rank(urls)
