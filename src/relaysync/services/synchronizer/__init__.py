"""Synchronizer service package.

Re-exports all public symbols::

    from relaysync.services.synchronizer import Synchronizer, SynchronizerConfig
"""

from .configs import FilterConfig, SynchronizerConfig
from .service import Synchronizer


__all__ = [
    "FilterConfig",
    "Synchronizer",
    "SynchronizerConfig",
]
