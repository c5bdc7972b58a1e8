"""Command-line entry point for the heartbeat monitor.

Usage:
    heartbeat-monitor                      # Poll forever (every POLL_INTERVAL_SECONDS)
    heartbeat-monitor --once               # Run a single cycle and exit
    heartbeat-monitor --config path.yaml   # Read settings from a YAML file first

Required environment: ELASTICSEARCH_URI, ELASTICSEARCH_INDEX, SIGNALFX_API_KEY,
METRIC_NAME, COMPONENT_NAME, DEPLOY_ENV.
"""

import argparse
import logging
import signal
import sys
from typing import List, Optional

import structlog

from .config import MonitorConfig, load_config
from .errors import ConfigurationError
from .inventory import InventoryCache
from .log_store import HeartbeatFetcher
from .metrics import MetricsEmitter
from .reconcile import ReconciliationPolicy
from .scheduler import MonitorLoop


logger = structlog.get_logger(__name__)


def configure_logging(level: str = "INFO", fmt: str = "console"):
    """Configure structured logging for the process."""
    renderer = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level.upper(), logging.INFO)),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_loop(config: MonitorConfig) -> MonitorLoop:
    """Wire the components for one process from its configuration."""
    inventory = InventoryCache.from_config(config)
    policy = ReconciliationPolicy(inventory, prefixes=config.address_host_prefixes)
    return MonitorLoop(
        fetcher=HeartbeatFetcher(config),
        policy=policy,
        emitter=MetricsEmitter(config),
        interval_seconds=config.poll_interval_seconds,
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="heartbeat-monitor",
        description="Report per-host heartbeat lag from Elasticsearch to SignalFx",
    )
    parser.add_argument("--config", default=None, help="YAML settings file (environment variables override it)")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = parse_args(argv)

    try:
        config = load_config(args.config)
        configure_logging(config.log_level, config.log_format)
        loop = build_loop(config)
    except ConfigurationError as e:
        configure_logging()
        logger.error("Invalid configuration", operation="startup", error=str(e))
        return 1

    logger.info(
        "Heartbeat monitor starting",
        index=config.elasticsearch_index,
        metric=config.metric_name,
        component=config.component_name,
        environment=config.environment,
    )

    try:
        if args.once:
            return 0 if loop.run_cycle().ok else 1

        signal.signal(signal.SIGTERM, lambda signum, frame: loop.stop())
        try:
            loop.run_forever()
        except KeyboardInterrupt:
            loop.stop()
        return 0
    finally:
        loop.fetcher.close()
        loop.emitter.close()


if __name__ == "__main__":
    sys.exit(main())
