"""Long-running services built on the relay client core.

Attributes:
    Synchronizer: Keeps a relay pool subscribed to the configured filters and
        feeds the reducers.
"""

from .synchronizer import FilterConfig, Synchronizer, SynchronizerConfig


__all__ = [
    "FilterConfig",
    "Synchronizer",
    "SynchronizerConfig",
]
