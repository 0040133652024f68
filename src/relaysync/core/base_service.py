"""
Lifecycle base class for long-running relaysync services.

A service is entered as an async context manager, which acquires whatever
it owns (the relay pool, for the
[Synchronizer][relaysync.services.synchronizer.Synchronizer]), and is then
driven either by a single [run()][relaysync.core.base_service.BaseService.run]
(``--once``) or by [run_forever()][relaysync.core.base_service.BaseService.run_forever],
which repeats ``run()`` every ``interval`` seconds until shutdown is
requested.

``run_forever()`` is the error boundary of the process: a failing cycle is
logged, counted and retried on the next interval, and only
``max_consecutive_failures`` failures in a row stop the loop. Cancellation
and interpreter exit always propagate.

See Also:
    [BaseServiceConfig][relaysync.core.base_service.BaseServiceConfig]:
        Interval, failure limit and metrics settings.
    [MetricsConfig][relaysync.core.metrics.MetricsConfig]: Prometheus
        exposition used by ``set_gauge()`` and ``inc_counter()``.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from relaysync.models.constants import ServiceName

from .logger import Logger
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
)
from .yaml import load_yaml


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class BaseServiceConfig(BaseModel):
    """Settings shared by every service; subclass to add service fields."""

    interval: float = Field(default=60.0, ge=1.0, description="Seconds between run cycles")
    max_consecutive_failures: int = Field(
        default=5,
        ge=0,
        description="Stop after this many failed cycles in a row (0 = never stop)",
    )
    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig, description="Prometheus metrics configuration"
    )


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class BaseService(ABC, Generic[ConfigT]):
    """Base class for relaysync services.

    Subclasses set ``SERVICE_NAME`` and ``CONFIG_CLASS`` and implement
    [run()][relaysync.core.base_service.BaseService.run]. Subclasses that own
    resources extend ``__aenter__``/``__aexit__`` and call ``super()``.

    Attributes:
        SERVICE_NAME: Identifier used as logger name and metrics label.
        CONFIG_CLASS: Pydantic model built by ``from_dict()``/``from_yaml()``.
        cycles: Cycles run by ``run_forever()``, failed ones included.
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, config: ConfigT | None = None) -> None:
        if config is None:
            config = cast("ConfigT", self.CONFIG_CLASS())
        self._config: ConfigT = config
        self._logger = Logger(self.SERVICE_NAME)
        self._stopping = asyncio.Event()
        self._consecutive_failures = 0
        self.cycles = 0

    @property
    def config(self) -> ConfigT:
        return self._config

    @property
    def is_running(self) -> bool:
        """``False`` once shutdown has been requested."""
        return not self._stopping.is_set()

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @abstractmethod
    async def run(self) -> None:
        """Do one bounded unit of work and return."""

    def request_shutdown(self) -> None:
        """Ask ``run_forever()`` to stop after the current cycle. Signal-handler safe."""
        self._stopping.set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Sleep up to *timeout* seconds; return ``True`` if shutdown cut it short."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=timeout)
        except TimeoutError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Cycling
    # -------------------------------------------------------------------------

    async def run_forever(self) -> None:
        """Repeat [run()][relaysync.core.base_service.BaseService.run] until stopped.

        Records ``cycles_success``/``cycles_failed``/``errors_<Type>``
        counters, ``consecutive_failures``/``last_cycle_timestamp`` gauges
        and the ``CYCLE_DURATION_SECONDS`` histogram when metrics are enabled.
        """
        interval = self._config.interval
        limit = self._config.max_consecutive_failures
        if self._config.metrics.enabled:
            SERVICE_INFO.info({"service": self.SERVICE_NAME})
        self._logger.info("run_forever_started", interval=interval, max_consecutive_failures=limit)

        while self.is_running:
            if not await self._cycle() and 0 < limit <= self._consecutive_failures:
                self._logger.critical(
                    "max_consecutive_failures_reached",
                    failures=self._consecutive_failures,
                    limit=limit,
                )
                break
            if await self.wait(interval):
                break

        self._logger.info("run_forever_stopped", cycles=self.cycles)

    async def _cycle(self) -> bool:
        """Run one cycle and record its outcome. Returns ``True`` on success."""
        self.cycles += 1
        started = time.monotonic()
        try:
            await self.run()
        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            raise
        except Exception as e:  # Intentionally broad: top-level error boundary for run_forever
            self._consecutive_failures += 1
            self.inc_counter("cycles_failed")
            self.inc_counter(f"errors_{type(e).__name__}")
            self.set_gauge("consecutive_failures", self._consecutive_failures)
            self._logger.error(
                "run_cycle_error",
                error=str(e),
                error_type=type(e).__name__,
                consecutive_failures=self._consecutive_failures,
            )
            return False

        self._consecutive_failures = 0
        self.inc_counter("cycles_success")
        self.set_gauge("consecutive_failures", 0)
        self.set_gauge("last_cycle_timestamp", time.time())
        if self._config.metrics.enabled:
            CYCLE_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(
                time.monotonic() - started
            )
        self._logger.debug("cycle_finished", next_cycle_s=self._config.interval)
        return True

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_yaml(cls, config_path: str, **kwargs: Any) -> Self:
        """Build the service from a YAML file (see ``from_dict()``)."""
        return cls.from_dict(load_yaml(config_path), **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], **kwargs: Any) -> Self:
        """Build the service from a config mapping.

        Args:
            data: Parsed into ``CONFIG_CLASS``.
            **kwargs: Passed to the constructor (e.g. ``transport``).

        Raises:
            pydantic.ValidationError: If *data* does not fit ``CONFIG_CLASS``.
        """
        return cls(config=cast("ConfigT", cls.CONFIG_CLASS.model_validate(data)), **kwargs)

    # -------------------------------------------------------------------------
    # Context Manager
    # -------------------------------------------------------------------------

    async def __aenter__(self) -> Self:
        self._stopping.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self._stopping.set()
        self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set the service gauge *name*; no-op with metrics disabled."""
        if self._config.metrics.enabled:
            SERVICE_GAUGE.labels(service=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        """Increment the service counter *name*; no-op with metrics disabled."""
        if self._config.metrics.enabled:
            SERVICE_COUNTER.labels(service=self.SERVICE_NAME, name=name).inc(value)
