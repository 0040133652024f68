"""
Unit tests for the relaysync.__main__ CLI module.

Tests:
- parse_args argument parsing
- setup_logging configuration
- run_service one-shot and continuous modes
- load_service_dict relay overrides
- main config loading and exit codes
- SERVICE_REGISTRY completeness
"""

import logging
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from relaysync.__main__ import (
    CONFIG_BASE,
    SERVICE_REGISTRY,
    load_service_dict,
    main,
    parse_args,
    run_service,
    setup_logging,
)
from relaysync.core.base_service import BaseService
from relaysync.core.logger import StructuredFormatter
from relaysync.services import Synchronizer


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def restore_root_logger():
    """Undo handler and level changes made by setup_logging()."""
    handlers = list(logging.root.handlers)
    level = logging.root.level
    yield
    logging.root.handlers[:] = handlers
    logging.root.setLevel(level)


@pytest.fixture
def mock_service() -> MagicMock:
    """Service class double whose instances are async context managers."""
    service = MagicMock()
    service.__aenter__ = AsyncMock(return_value=service)
    service.__aexit__ = AsyncMock(return_value=None)
    service.run = AsyncMock()
    service.run_forever = AsyncMock()
    service.config.metrics.enabled = False
    service_class = MagicMock(return_value=service)
    service_class.from_dict = MagicMock(return_value=service)
    return service_class


# ============================================================================
# SERVICE_REGISTRY Tests
# ============================================================================


class TestServiceRegistry:
    """Tests for SERVICE_REGISTRY."""

    def test_synchronizer_registered(self) -> None:
        assert set(SERVICE_REGISTRY) == {"synchronizer"}
        entry = SERVICE_REGISTRY["synchronizer"]
        assert entry.cls is Synchronizer
        assert entry.config_path == CONFIG_BASE / "synchronizer.yaml"

    def test_entries_are_services(self) -> None:
        for name, (service_class, config_path) in SERVICE_REGISTRY.items():
            assert issubclass(service_class, BaseService), name
            assert config_path.suffix == ".yaml", name


# ============================================================================
# parse_args Tests
# ============================================================================


class TestParseArgs:
    """Tests for parse_args function."""

    def test_service_required(self) -> None:
        with pytest.raises(SystemExit):
            parse_args([])

    def test_invalid_service_rejected(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["invalid"])

    def test_defaults(self) -> None:
        args = parse_args(["synchronizer"])
        assert args.service == "synchronizer"
        assert args.config is None
        assert args.log_level == "INFO"
        assert args.relays == []
        assert args.once is False

    def test_combined_arguments(self) -> None:
        args = parse_args(
            ["--log-level", "DEBUG", "synchronizer", "--once", "--config", "custom.yaml"]
        )
        assert args.config == Path("custom.yaml")
        assert args.log_level == "DEBUG"
        assert args.once is True

    def test_relay_repeatable(self) -> None:
        args = parse_args(
            ["synchronizer", "--relay", "wss://a.example.com", "--relay", "wss://b.example.com"]
        )
        assert args.relays == ["wss://a.example.com", "wss://b.example.com"]

    def test_log_level_case_sensitive(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["synchronizer", "--log-level", "debug"])


# ============================================================================
# setup_logging Tests
# ============================================================================


class TestSetupLogging:
    """Tests for setup_logging function."""

    @pytest.mark.usefixtures("restore_root_logger")
    def test_structured_handler_installed(self) -> None:
        setup_logging("WARNING")
        assert logging.root.level == logging.WARNING
        assert isinstance(logging.root.handlers[-1].formatter, StructuredFormatter)


# ============================================================================
# run_service Tests
# ============================================================================


class TestRunService:
    """Tests for run_service function."""

    async def test_once_success(self, mock_service: MagicMock) -> None:
        code = await run_service("synchronizer", mock_service, {"interval": 5}, once=True)
        assert code == 0
        mock_service.from_dict.assert_called_once_with({"interval": 5})
        mock_service.return_value.run.assert_awaited_once()
        mock_service.return_value.run_forever.assert_not_awaited()

    async def test_once_without_config(self, mock_service: MagicMock) -> None:
        await run_service("synchronizer", mock_service, {}, once=True)
        mock_service.assert_called_once_with()
        mock_service.from_dict.assert_not_called()

    async def test_once_failure(self, mock_service: MagicMock) -> None:
        mock_service.return_value.run.side_effect = RuntimeError("boom")
        assert await run_service("synchronizer", mock_service, {}, once=True) == 1

    async def test_continuous(self, mock_service: MagicMock) -> None:
        metrics_server = MagicMock()
        metrics_server.stop = AsyncMock()
        with patch(
            "relaysync.__main__.start_metrics_server",
            AsyncMock(return_value=metrics_server),
        ):
            code = await run_service("synchronizer", mock_service, {}, once=False)

        assert code == 0
        mock_service.return_value.run_forever.assert_awaited_once()
        metrics_server.stop.assert_awaited_once()

    async def test_continuous_failure_stops_metrics(self, mock_service: MagicMock) -> None:
        mock_service.return_value.run_forever.side_effect = RuntimeError("boom")
        metrics_server = MagicMock()
        metrics_server.stop = AsyncMock()
        with patch(
            "relaysync.__main__.start_metrics_server",
            AsyncMock(return_value=metrics_server),
        ):
            code = await run_service("synchronizer", mock_service, {}, once=False)

        assert code == 1
        metrics_server.stop.assert_awaited_once()


# ============================================================================
# main Tests
# ============================================================================


class TestMain:
    """Tests for main function."""

    @pytest.mark.usefixtures("restore_root_logger")
    async def test_loads_config_file(self, tmp_path: Path) -> None:
        config = tmp_path / "sync.yaml"
        config.write_text("interval: 5\n")
        run = AsyncMock(return_value=0)
        with patch("relaysync.__main__.run_service", run):
            code = await main(["synchronizer", "--once", "--config", str(config)])

        assert code == 0
        kwargs = run.call_args.kwargs
        assert kwargs["service_dict"] == {"interval": 5}
        assert kwargs["service_class"] is Synchronizer
        assert kwargs["once"] is True

    @pytest.mark.usefixtures("restore_root_logger")
    async def test_missing_config_uses_defaults(self, tmp_path: Path) -> None:
        run = AsyncMock(return_value=0)
        with patch("relaysync.__main__.run_service", run):
            await main(["synchronizer", "--config", str(tmp_path / "missing.yaml")])
        assert run.call_args.kwargs["service_dict"] == {}

    @pytest.mark.usefixtures("restore_root_logger")
    async def test_keyboard_interrupt(self) -> None:
        with patch("relaysync.__main__.run_service", AsyncMock(side_effect=KeyboardInterrupt)):
            assert await main(["synchronizer", "--once"]) == 130

    @pytest.mark.usefixtures("restore_root_logger")
    async def test_relay_flag_reaches_pool(self, tmp_path: Path) -> None:
        run = AsyncMock(return_value=0)
        with patch("relaysync.__main__.run_service", run):
            await main(
                [
                    "synchronizer",
                    "--config",
                    str(tmp_path / "missing.yaml"),
                    "--relay",
                    "wss://relay.example.com",
                ]
            )
        assert run.call_args.kwargs["service_dict"] == {
            "pool": {"relays": ["wss://relay.example.com"]}
        }


# ============================================================================
# load_service_dict Tests
# ============================================================================


class TestLoadServiceDict:
    """Tests for load_service_dict function."""

    def test_missing_file(self, tmp_path: Path) -> None:
        assert load_service_dict(tmp_path / "missing.yaml", []) == {}

    def test_relays_appended(self, tmp_path: Path) -> None:
        config = tmp_path / "sync.yaml"
        config.write_text("interval: 5\npool:\n  relays:\n    - wss://a.example.com\n")
        data = load_service_dict(config, ["wss://b.example.com"])
        assert data["interval"] == 5
        assert data["pool"]["relays"] == ["wss://a.example.com", "wss://b.example.com"]

    def test_no_relays_leaves_config(self, tmp_path: Path) -> None:
        config = tmp_path / "sync.yaml"
        config.write_text("interval: 5\n")
        assert load_service_dict(config, []) == {"interval": 5}
