"""Synchronizer service for relaysync.

Keeps a [RelayPool][relaysync.client.pool.RelayPool] subscribed to the
configured filters for the life of the service and feeds every dispatched
event through a [ReducerRegistry][relaysync.reducers.registry.ReducerRegistry]
into the configured reducers.

The service lifecycle is:

1. ``__aenter__`` builds the pool (with a signer when keys are configured),
   registers the [GroupReducer][relaysync.reducers.group.GroupReducer] when
   ``groups`` is set, starts the pool, optionally fetches the authors' NIP-65
   relay lists, and opens one long-lived subscription.
2. Each [run()][relaysync.services.synchronizer.Synchronizer.run] cycle waits
   for the initial backlog (first cycle only), then reports ingest counters,
   relay liveness and group counts to the log and to Prometheus gauges.
3. ``__aexit__`` closes the pool, which closes the subscription and stops
   every dispatch.

Note:
    Relay failures never fail a cycle: the pool isolates them and redials.
    A cycle only reports them, and warns when every relay is offline.

See Also:
    [SynchronizerConfig][relaysync.services.synchronizer.SynchronizerConfig]:
        Configuration model for the pool, filters, keys and groups.
    [BaseService][relaysync.core.base_service.BaseService]: Abstract base
        class providing ``run_forever()`` and ``from_yaml()``.

Examples:
    ```python
    from relaysync.services import Synchronizer

    sync = Synchronizer.from_yaml("config/synchronizer.yaml")

    async with sync:
        await sync.run_forever()
    ```
"""

from __future__ import annotations

import time
from types import TracebackType
from typing import TYPE_CHECKING, ClassVar, Self

from relaysync.client.pool import RelayPool
from relaysync.core.base_service import BaseService
from relaysync.models.constants import EventKind, ServiceName
from relaysync.models.filter import Filter
from relaysync.reducers.group import GroupReducer
from relaysync.reducers.registry import ReducerRegistry

from .configs import SynchronizerConfig


if TYPE_CHECKING:
    from relaysync.client.subscription import Subscription
    from relaysync.models.event import Event
    from relaysync.utils.transport import Transport


class Synchronizer(BaseService[SynchronizerConfig]):
    """Relay synchronization service.

    Args:
        config: Service configuration (defaults from ``SynchronizerConfig``).
        transport: WebSocket factory handed to the pool; the aiohttp
            transport is used when omitted.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.SYNCHRONIZER
    CONFIG_CLASS: ClassVar[type[SynchronizerConfig]] = SynchronizerConfig

    def __init__(
        self,
        config: SynchronizerConfig | None = None,
        *,
        transport: Transport | None = None,
    ) -> None:
        super().__init__(config=config)
        self._config: SynchronizerConfig
        self._transport = transport
        self._pool: RelayPool | None = None
        self._registry = ReducerRegistry()
        self._groups: GroupReducer | None = None
        self._subscription: Subscription | None = None
        self._late_events = 0
        self._backlog_reported = False

    @property
    def pool(self) -> RelayPool | None:
        return self._pool

    @property
    def groups(self) -> GroupReducer | None:
        return self._groups

    @property
    def registry(self) -> ReducerRegistry:
        return self._registry

    @property
    def subscription(self) -> Subscription | None:
        return self._subscription

    def _filters(self) -> list[Filter]:
        filters = [flt.to_filter() for flt in self._config.filters]
        if self._groups is not None:
            filters.extend(self._groups.filters())
        return filters

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        await super().__aenter__()
        self._pool = RelayPool(
            self._config.pool,
            transport=self._transport,
            signer=self._config.keys.signer(),
            logger=self._logger,
            metrics_enabled=self._config.metrics.enabled,
        )
        if self._config.groups is not None:
            self._groups = GroupReducer(self._config.groups, logger=self._logger)
            self._groups.register(self._registry)
        self._pool.ingest.add_listener(self._registry.dispatch)
        await self._pool.start()

        filters = self._filters()
        if not filters:
            self._logger.warning("no_filters_configured")
            return self

        if self._config.fetch_relay_lists:
            await self._fetch_relay_lists(filters)
        self._subscription = await self._pool.subscribe(
            filters, on_eose=self._on_eose, on_late=self._on_late
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._pool is not None:
            await self._pool.close()
        self._pool = None
        self._subscription = None
        await super().__aexit__(exc_type, exc_val, exc_tb)

    async def _fetch_relay_lists(self, filters: list[Filter]) -> None:
        authors = sorted({pubkey for flt in filters for pubkey in flt.authors or ()})
        if not authors or self._pool is None:
            return
        # Relay lists dispatched by the ingest pipeline update the selector.
        lists = await self._pool.fetch(
            Filter(kinds=(EventKind.RELAY_LIST,), authors=tuple(authors))
        )
        self._logger.info("relay_lists_fetched", authors=len(authors), lists=len(lists))

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def _on_eose(self, subscription: Subscription) -> None:
        reason = subscription.eose_reason
        self._logger.info(
            "backlog_completed",
            reason=reason.value if reason is not None else None,
            events=subscription.delivered,
        )

    def _on_late(self, event: Event) -> None:
        self._late_events += 1
        self._logger.debug("late_event", event_id=event.id, created_at=event.created_at)

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Report one cycle of synchronization statistics.

        Raises:
            RuntimeError: If the service context was not entered.
        """
        if self._pool is None:
            raise RuntimeError("Synchronizer must be entered before run()")

        cycle_start = time.monotonic()
        if self._subscription is not None and not self._backlog_reported:
            await self._subscription.wait_eose()
            self._backlog_reported = True

        stats = self._pool.ingest.stats.as_dict()
        liveness = self._pool.liveness()
        group_stats = self._groups.stats() if self._groups is not None else {}

        for name, value in stats.items():
            self.set_gauge(f"events_{name}", value)
        self.set_gauge("events_late", self._late_events)
        self.set_gauge("relays_total", liveness.total)
        self.set_gauge("relays_connected", liveness.connected)
        self.set_gauge("relays_degraded", liveness.degraded)
        self.set_gauge("relays_unhealthy", liveness.unhealthy)
        for name, value in group_stats.items():
            self.set_gauge(f"groups_{name}", value)

        if liveness.offline:
            self._logger.warning("all_relays_offline", relays=liveness.total)

        self._logger.info(
            "cycle_completed",
            **stats,
            late=self._late_events,
            relays_connected=liveness.connected,
            relays_total=liveness.total,
            groups=group_stats.get("groups", 0),
            duration_s=round(time.monotonic() - cycle_start, 2),
        )
