"""Command-line runner for relaysync services.

```bash
python -m relaysync synchronizer                        # config/synchronizer.yaml, run forever
python -m relaysync synchronizer --once --log-level DEBUG
python -m relaysync synchronizer --config sync.yaml --relay wss://nos.lol
```

``--once`` enters the service, runs one cycle (for the synchronizer: until
the initial backlog is in) and exits. Without it the Prometheus endpoint is
started and the service cycles until SIGINT or SIGTERM.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, NamedTuple

from relaysync.core import start_metrics_server
from relaysync.core.base_service import BaseService
from relaysync.core.logger import Logger, StructuredFormatter
from relaysync.core.yaml import load_yaml
from relaysync.models.constants import ServiceName
from relaysync.services.synchronizer import Synchronizer


CONFIG_BASE = Path("config")


class ServiceEntry(NamedTuple):
    cls: type[BaseService[Any]]
    config_path: Path


SERVICE_REGISTRY: dict[str, ServiceEntry] = {
    ServiceName.SYNCHRONIZER: ServiceEntry(Synchronizer, CONFIG_BASE / "synchronizer.yaml"),
}

logger = Logger("cli")


# ---------------------------------------------------------------------------
# Running
# ---------------------------------------------------------------------------


async def _run_once(service_name: str, service: BaseService[Any]) -> int:
    try:
        async with service:
            await service.run()
    except Exception as e:  # Intentionally broad: CLI error boundary for one-shot mode
        logger.error(f"{service_name}_failed", error=str(e), error_type=type(e).__name__)
        return 1
    logger.info(f"{service_name}_completed")
    return 0


async def _run_continuous(service_name: str, service: BaseService[Any]) -> int:
    metrics = service.config.metrics
    metrics_server = await start_metrics_server(metrics)
    if metrics.enabled:
        logger.info("metrics_server_started", host=metrics.host, port=metrics.port, path=metrics.path)

    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)

    def on_signal(sig: signal.Signals) -> None:
        logger.info("shutdown_signal", signal=sig.name)
        service.request_shutdown()

    for sig in signals:
        loop.add_signal_handler(sig, on_signal, sig)
    try:
        async with service:
            await service.run_forever()
    except Exception as e:  # Intentionally broad: CLI error boundary for continuous mode
        logger.error(f"{service_name}_failed", error=str(e), error_type=type(e).__name__)
        return 1
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        await metrics_server.stop()
        if metrics.enabled:
            logger.info("metrics_server_stopped")
    return 0


async def run_service(
    service_name: str,
    service_class: type[BaseService[Any]],
    service_dict: dict[str, Any],
    *,
    once: bool,
) -> int:
    """Build *service_class* from *service_dict* and run it.

    Returns:
        Process exit code, ``0`` on success and ``1`` if the service failed.
    """
    service = service_class.from_dict(service_dict) if service_dict else service_class()
    if once:
        return await _run_once(service_name, service)
    return await _run_continuous(service_name, service)


# ---------------------------------------------------------------------------
# Arguments and configuration
# ---------------------------------------------------------------------------


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="relaysync", description="Run a relaysync service")
    parser.add_argument("service", choices=list(SERVICE_REGISTRY), help="Service to run")
    parser.add_argument(
        "--config",
        type=Path,
        help="Service config path (default: config/<service>.yaml)",
    )
    parser.add_argument(
        "--relay",
        dest="relays",
        action="append",
        default=[],
        metavar="URL",
        help="Extra default relay; may be repeated",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one cycle and exit (default: run until signalled)",
    )
    return parser.parse_args(argv)


def setup_logging(level: str) -> None:
    """Render every record, ``Logger`` or plain ``logging``, through ``StructuredFormatter``."""
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter())
    logging.root.addHandler(handler)
    logging.root.setLevel(getattr(logging, level))


def load_service_dict(path: Path, relays: list[str]) -> dict[str, Any]:
    """Read the service YAML (``{}`` when absent) and append ``--relay`` URLs to the pool."""
    if path.exists():
        data = load_yaml(str(path))
    else:
        logger.warning("config_not_found", path=str(path))
        data = {}
    if relays:
        pool = dict(data.get("pool") or {})
        pool["relays"] = [*(pool.get("relays") or []), *relays]
        data = {**data, "pool": pool}
    return data


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_level)

    entry = SERVICE_REGISTRY[args.service]
    service_dict = load_service_dict(args.config or entry.config_path, args.relays)
    try:
        return await run_service(
            service_name=args.service,
            service_class=entry.cls,
            service_dict=service_dict,
            once=args.once,
        )
    except KeyboardInterrupt:
        logger.info("interrupted")
        return 130


def cli() -> None:
    """``relaysync`` console script."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
