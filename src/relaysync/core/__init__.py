"""Core layer providing the infrastructure shared by the client and services.

Sits in the middle of the diamond DAG -- depends only on
``relaysync.models`` and is depended upon by ``relaysync.client``,
``relaysync.reducers``, and ``relaysync.services``.

Attributes:
    BaseService: Abstract generic base class with lifecycle management,
        factory methods, and Prometheus metrics integration.
    Logger: Structured logger supporting key=value and JSON output modes
        and bound context fields.
    MetricsServer: Prometheus ``/metrics`` HTTP endpoint.
    exceptions: Typed error hierarchy rooted at
        [RelaySyncError][relaysync.core.exceptions.RelaySyncError].
    YAML: Safe YAML loading with ``yaml.safe_load()``.
"""

from .base_service import (
    BaseService,
    BaseServiceConfig,
    ConfigT,
)
from .exceptions import (
    AuthRejected,
    ConfigurationError,
    ConnectivityError,
    InvalidEvent,
    ProtocolViolation,
    PublishingError,
    RelayConnectionError,
    RelaySyncError,
    RelayTimeoutError,
    SignerError,
    SignerRejected,
    SignerUnavailable,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CYCLE_DURATION_SECONDS,
    INGEST_EVENTS_TOTAL,
    RELAY_GAUGE,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .yaml import load_yaml


__all__ = [
    "CYCLE_DURATION_SECONDS",
    "INGEST_EVENTS_TOTAL",
    "RELAY_GAUGE",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "AuthRejected",
    "BaseService",
    "BaseServiceConfig",
    "ConfigT",
    "ConfigurationError",
    "ConnectivityError",
    "InvalidEvent",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "ProtocolViolation",
    "PublishingError",
    "RelayConnectionError",
    "RelaySyncError",
    "RelayTimeoutError",
    "SignerError",
    "SignerRejected",
    "SignerUnavailable",
    "StructuredFormatter",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
