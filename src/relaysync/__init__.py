r"""relaysync -- Nostr relay synchronization client core.

Opens and authenticates concurrent sessions to a configurable relay set,
merges their independently ordered event streams into one deduplicated,
ordered view, and derives NIP-29 group state from a log that arrives out of
order, duplicated, and partially contradicted.

Architecture follows a **diamond DAG** dependency structure where imports
flow strictly downward:

```text
                services          Long-running services and the CLI
                   |
           client  |  reducers    Relay pool, ingest, and state reducers
             \     |     /
          core   nips   utils     Infrastructure, protocol, and helpers
             \     |     /
                models            Pure frozen dataclasses (zero I/O)
```

Attributes:
    models: Pure frozen dataclasses. Zero I/O.
    core: Base service, exceptions, logging, metrics, YAML.
    nips: NIP-01 wire codec, NIP-42 auth events, NIP-65 relay lists,
        NIP-29 group tags.
    utils: WebSocket transport, overlay network settings, signing.
    client: Relay connections, auth sessions, the relay pool, ingest and
        the event store.
    reducers: Reducer registry and the NIP-29 group reducer.
    services: The Synchronizer service.

Note:
    Top-level imports (``from relaysync import RelayPool``) use lazy loading
    and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("relaysync")

__all__ = [
    "AuthSession",
    "BaseService",
    "Event",
    "EventDraft",
    "EventIngestPipeline",
    "EventStore",
    "Filter",
    "GroupReducer",
    "GroupState",
    "Logger",
    "Publication",
    "ReducerRegistry",
    "Relay",
    "RelayConnection",
    "RelayPool",
    "RelayPoolConfig",
    "Subscription",
    "Synchronizer",
    "SynchronizerConfig",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "BaseService": ("relaysync.core", "BaseService"),
    "Logger": ("relaysync.core", "Logger"),
    "Event": ("relaysync.models", "Event"),
    "EventDraft": ("relaysync.models", "EventDraft"),
    "Filter": ("relaysync.models", "Filter"),
    "GroupState": ("relaysync.models", "GroupState"),
    "Relay": ("relaysync.models", "Relay"),
    "AuthSession": ("relaysync.client", "AuthSession"),
    "EventIngestPipeline": ("relaysync.client", "EventIngestPipeline"),
    "EventStore": ("relaysync.client", "EventStore"),
    "Publication": ("relaysync.client", "Publication"),
    "RelayConnection": ("relaysync.client", "RelayConnection"),
    "RelayPool": ("relaysync.client", "RelayPool"),
    "RelayPoolConfig": ("relaysync.client", "RelayPoolConfig"),
    "Subscription": ("relaysync.client", "Subscription"),
    "GroupReducer": ("relaysync.reducers", "GroupReducer"),
    "ReducerRegistry": ("relaysync.reducers", "ReducerRegistry"),
    "Synchronizer": ("relaysync.services", "Synchronizer"),
    "SynchronizerConfig": ("relaysync.services", "SynchronizerConfig"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'relaysync' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
