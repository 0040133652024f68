"""
Prometheus collectors and the /metrics endpoint.

All collectors are module-level singletons registered in the default
registry on import, so this module must be imported once per process.
They are only written to when metrics are enabled:

* the service base class writes cycle outcomes and durations, and
  services add values through ``set_gauge()``/``inc_counter()``;
* [RelayPool][relaysync.client.pool.RelayPool] writes ``RELAY_GAUGE``
  (``health_score``, ``connected``, ``degraded`` per relay URL);
* the ingest pipeline counts every event by outcome in
  ``INGEST_EVENTS_TOTAL``.

[MetricsServer][relaysync.core.metrics.MetricsServer] serves the default
registry over aiohttp for scraping.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MetricsConfig(BaseModel):
    """Metrics settings. Nothing is recorded or served unless ``enabled``."""

    enabled: bool = Field(default=False, description="Enable metrics collection")
    port: int = Field(default=8000, ge=1024, le=65535, description="Metrics HTTP port")
    host: str = Field(default="127.0.0.1", description="Metrics HTTP bind address")
    path: str = Field(default="/metrics", description="Metrics endpoint path")


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

SERVICE_INFO = Info(
    "relaysync_service",
    "Name of the running relaysync service",
)

CYCLE_DURATION_SECONDS = Histogram(
    "relaysync_cycle_duration_seconds",
    "Wall time of one service cycle",
    ["service"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60),
)

SERVICE_GAUGE = Gauge(
    "relaysync_service_gauge",
    "Named point-in-time values reported by a service",
    ["service", "name"],
)

SERVICE_COUNTER = Counter(
    "relaysync_service_counter",
    "Named cumulative totals reported by a service",
    ["service", "name"],
)


# ---------------------------------------------------------------------------
# Client core
# ---------------------------------------------------------------------------

RELAY_GAUGE = Gauge(
    "relaysync_relay_gauge",
    "Per-relay health values (health_score, connected, degraded)",
    ["relay", "name"],
)

INGEST_EVENTS_TOTAL = Counter(
    "relaysync_ingest_events_total",
    "Events seen by the ingest pipeline, by outcome",
    ["outcome"],
)


# ---------------------------------------------------------------------------
# Exposition
# ---------------------------------------------------------------------------


class MetricsServer:
    """aiohttp application serving ``generate_latest()`` on ``config.path``."""

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Bind and serve; no-op when metrics are disabled.

        Raises:
            OSError: If the port is already in use or binding fails.
        """
        if not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, self._handle_metrics)

        self._runner = web.AppRunner(app, access_log=None)
        await self._runner.setup()

        site = web.TCPSite(self._runner, self._config.host, self._config.port)
        await site.start()

    async def stop(self) -> None:
        """Stop the HTTP server. Idempotent."""
        if self._runner:
            await self._runner.cleanup()
            self._runner = None

    @staticmethod
    async def _handle_metrics(_request: web.Request) -> web.Response:
        return web.Response(
            body=generate_latest(),
            headers={"Content-Type": CONTENT_TYPE_LATEST},
        )


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """Start a [MetricsServer][relaysync.core.metrics.MetricsServer]; the caller stops it."""
    server = MetricsServer(config or MetricsConfig())
    await server.start()
    return server
