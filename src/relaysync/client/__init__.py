"""Relay client core: connections, authentication, ingest, and the relay pool.

Depends on [relaysync.models][relaysync.models], [relaysync.core][relaysync.core],
[relaysync.nips][relaysync.nips] and [relaysync.utils][relaysync.utils].

Attributes:
    RelayPool: Registry of relay endpoints with subscription and publish
        fan-out, EOSE aggregation and health tracking.
    RelayConnection: Supervised WebSocket session with backoff.
    AuthSession: Per-connection NIP-42 state machine.
    EventIngestPipeline: Validation, dedup and dispatch of inbound events.
    EventStore: Ordered in-memory store with replaceable retention.
    Subscription: Merged, ordered multi-relay event stream.
    Publication: Per-relay publish outcomes.
"""

from .auth import AuthSession, AuthState, AuthTrigger, next_state
from .configs import (
    FALLBACK_RELAYS,
    AuthConfig,
    AuthPreference,
    ConnectionConfig,
    HealthConfig,
    IngestConfig,
    RelayPoolConfig,
    RetryConfig,
    SelectionConfig,
)
from .connection import ConnectionListener, ConnectionState, RelayConnection, backoff_delay
from .ingest import EventIngestPipeline, IngestOutcome, IngestResult, IngestStats
from .pool import PoolLiveness, RelayPool, RelayStatus
from .publication import Publication, PublishOutcome, RelayPublishResult
from .selection import RelayEndpoint, RelayHealth, RelayRole, RelaySelector
from .store import EventStore, StoreOutcome
from .subscription import EoseReason, Subscription


__all__ = [
    "FALLBACK_RELAYS",
    "AuthConfig",
    "AuthPreference",
    "AuthSession",
    "AuthState",
    "AuthTrigger",
    "ConnectionConfig",
    "ConnectionListener",
    "ConnectionState",
    "EoseReason",
    "EventIngestPipeline",
    "EventStore",
    "HealthConfig",
    "IngestConfig",
    "IngestOutcome",
    "IngestResult",
    "IngestStats",
    "PoolLiveness",
    "Publication",
    "PublishOutcome",
    "RelayConnection",
    "RelayEndpoint",
    "RelayHealth",
    "RelayPool",
    "RelayPoolConfig",
    "RelayPublishResult",
    "RelayRole",
    "RelaySelector",
    "RelayStatus",
    "RetryConfig",
    "SelectionConfig",
    "StoreOutcome",
    "Subscription",
    "backoff_delay",
    "next_state",
]
