"""
Data-driven dispatch of events to state reducers by kind.

Handlers are registered for exact kinds or half-open kind ranges. Lookup
prefers an exact kind, then the first matching range in registration order,
then the default handler (a no-op unless one is given). Reducers that are
not configured are simply not registered; their kinds fall through to the
default.

Examples:
    ```python
    registry = ReducerRegistry()
    registry.register(GROUP_KINDS, group_reducer.apply)
    registry.register_range(30_000, 40_000, addressable_index.apply)
    pool.ingest.add_listener(registry.dispatch)
    ```
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import Any

from relaysync.models.constants import EVENT_KIND_MAX
from relaysync.models.event import Event


ReducerHandler = Callable[[Event], Any]


def _ignore(_event: Event) -> None:
    return None


class ReducerRegistry:
    """Kind-to-handler mapping with range entries and a default handler."""

    def __init__(self, default: ReducerHandler | None = None) -> None:
        self._exact: dict[int, ReducerHandler] = {}
        self._ranges: list[tuple[range, ReducerHandler]] = []
        self._default: ReducerHandler = default or _ignore

    def register(self, kinds: int | Iterable[int], handler: ReducerHandler) -> None:
        """Register *handler* for one kind or several.

        Raises:
            ValueError: If a kind is outside 0-65535 or already registered.
        """
        kind_list = [kinds] if isinstance(kinds, int) else list(kinds)
        for kind in kind_list:
            if not 0 <= kind <= EVENT_KIND_MAX:
                raise ValueError(f"kind out of range: {kind}")
            if kind in self._exact:
                raise ValueError(f"kind {kind} already has a reducer")
        for kind in kind_list:
            self._exact[kind] = handler

    def register_range(self, start: int, stop: int, handler: ReducerHandler) -> None:
        """Register *handler* for kinds in ``[start, stop)``."""
        if not 0 <= start < stop <= EVENT_KIND_MAX + 1:
            raise ValueError(f"invalid kind range: [{start}, {stop})")
        self._ranges.append((range(start, stop), handler))

    def handler_for(self, kind: int) -> ReducerHandler:
        handler = self._exact.get(kind)
        if handler is not None:
            return handler
        for kinds, range_handler in self._ranges:
            if kind in kinds:
                return range_handler
        return self._default

    def __contains__(self, kind: object) -> bool:
        if not isinstance(kind, int):
            return False
        return kind in self._exact or any(kind in kinds for kinds, _ in self._ranges)

    def dispatch(self, event: Event) -> Any:
        """Hand *event* to its reducer and return the reducer's result."""
        return self.handler_for(event.kind)(event)
