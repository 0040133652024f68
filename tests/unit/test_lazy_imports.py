"""Tests for the lazy import system in relaysync.__init__."""

from __future__ import annotations

import importlib
import sys

import pytest


class TestLazyImports:
    """Test PEP 562 lazy loading in relaysync.__init__."""

    def test_lazy_import_does_not_eagerly_load(self) -> None:
        saved = {name: mod for name, mod in sys.modules.items() if name.startswith("relaysync")}
        for name in saved:
            del sys.modules[name]
        try:
            importlib.import_module("relaysync")

            assert "relaysync.client" not in sys.modules
            assert "relaysync.reducers" not in sys.modules
            assert "relaysync.services" not in sys.modules
        finally:
            # Re-importing relaysync.core.metrics would register its collectors twice.
            for name in [name for name in sys.modules if name.startswith("relaysync")]:
                del sys.modules[name]
            sys.modules.update(saved)

    def test_lazy_import_resolves_on_access(self) -> None:
        from relaysync import RelayPool
        from relaysync.client.pool import RelayPool as DirectRelayPool

        assert RelayPool is DirectRelayPool

    def test_lazy_import_caches_after_first_access(self) -> None:
        import relaysync

        _ = relaysync.Filter
        assert "Filter" in vars(relaysync)

    def test_lazy_import_invalid_attribute(self) -> None:
        import relaysync

        with pytest.raises(AttributeError, match="no_such_thing"):
            _ = getattr(relaysync, "no_such_thing")  # noqa: B009

    def test_all_exports_are_in_lazy_imports(self) -> None:
        import relaysync

        assert set(relaysync.__all__) == set(relaysync._LAZY_IMPORTS)

    def test_dir_returns_all(self) -> None:
        import relaysync

        assert dir(relaysync) == relaysync.__all__

    def test_version_is_accessible(self) -> None:
        import relaysync

        assert isinstance(relaysync.__version__, str)
        assert relaysync.__version__
