"""
Unit tests for reducers.registry module.

Tests:
- Exact-kind and range registration
- Lookup precedence: exact, range, default
- Validation of kinds and ranges
- dispatch() returns the handler result
"""

import pytest

from relaysync.reducers.registry import ReducerRegistry


class TestRegister:
    """Registration rules."""

    def test_single_and_many(self) -> None:
        registry = ReducerRegistry()
        registry.register(1, lambda event: "one")
        registry.register([9000, 9001], lambda event: "group")
        assert 1 in registry
        assert 9001 in registry
        assert 2 not in registry
        assert "1" not in registry

    def test_duplicate_rejected(self) -> None:
        registry = ReducerRegistry()
        registry.register(1, lambda event: None)
        with pytest.raises(ValueError, match="already"):
            registry.register([2, 1], lambda event: None)
        assert 2 not in registry

    def test_out_of_range(self) -> None:
        with pytest.raises(ValueError, match="out of range"):
            ReducerRegistry().register(70_000, lambda event: None)

    @pytest.mark.parametrize(("start", "stop"), [(10, 10), (20, 10), (-1, 5), (0, 65_537)])
    def test_invalid_range(self, start: int, stop: int) -> None:
        with pytest.raises(ValueError, match="invalid kind range"):
            ReducerRegistry().register_range(start, stop, lambda event: None)


class TestDispatch:
    """Handler lookup and dispatch."""

    def test_precedence(self, make_event) -> None:
        registry = ReducerRegistry(default=lambda event: "default")
        registry.register_range(30_000, 40_000, lambda event: "addressable")
        registry.register(30_023, lambda event: "article")

        assert registry.dispatch(make_event(kind=30_023)) == "article"
        assert registry.dispatch(make_event(kind=30_001)) == "addressable"
        assert registry.dispatch(make_event(kind=1)) == "default"

    def test_first_range_wins(self, make_event) -> None:
        registry = ReducerRegistry()
        registry.register_range(0, 100, lambda event: "first")
        registry.register_range(50, 150, lambda event: "second")
        assert registry.dispatch(make_event(kind=75)) == "first"
        assert registry.dispatch(make_event(kind=120)) == "second"

    def test_default_ignores(self, make_event) -> None:
        assert ReducerRegistry().dispatch(make_event(kind=1)) is None
