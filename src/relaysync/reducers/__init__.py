"""State reducers fed by the ingest pipeline.

Attributes:
    ReducerRegistry: Kind-to-handler dispatch with range entries.
    GroupReducer: Authority-checked NIP-29 group state with replay of late
        events.
"""

from .group import GroupReducer, GroupReducerConfig, GroupTimeline, reduce_event
from .registry import ReducerHandler, ReducerRegistry


__all__ = [
    "GroupReducer",
    "GroupReducerConfig",
    "GroupTimeline",
    "ReducerHandler",
    "ReducerRegistry",
    "reduce_event",
]
