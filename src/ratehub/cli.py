"""
Script: cli.py
Created: 2026-10-16
Purpose: CLI entry point for the RateHub server
Keywords: cli, argparse, uvicorn, entrypoint, ratehub
Status: active
Prerequisites:
  - uvicorn
Changelog:
  - 2026-10-16: Builds the hub explicitly; saves history and exits non-zero
    when the server cannot bind
See-Also: app.py, config.py
"""

import argparse
import dataclasses
import logging
import sys
from typing import Any, Dict

from . import __version__
from .aggregator import AggregationMode
from .config import RATEHUB_LOG_LEVEL, Settings, build_hub


logger = logging.getLogger("ratehub")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="RateHub - feed throughput aggregation and live metrics streaming server"
    )
    try:
        defaults = Settings()
    except ValueError as exc:
        parser.error(str(exc))

    parser.add_argument("--host", default=defaults.host, help=f"Host to bind (default: {defaults.host})")
    parser.add_argument("--port", type=int, default=defaults.port, help=f"Port to bind (default: {defaults.port})")
    parser.add_argument(
        "--mode", choices=[m.value for m in AggregationMode], default=defaults.mode.value,
        help=f"Aggregation mode (default: {defaults.mode.value})",
    )
    parser.add_argument("--data-file", default=defaults.data_file, help=f"History file (default: {defaults.data_file})")
    parser.add_argument("--log-dir", default=defaults.log_dir, help=f"Sample log directory (default: {defaults.log_dir})")
    parser.add_argument("--log-level", default=RATEHUB_LOG_LEVEL, help=f"Log level (default: {RATEHUB_LOG_LEVEL})")
    return parser.parse_args(argv)


def server_options(settings: Settings, log_level: str = "info") -> Dict[str, Any]:
    """
    Keyword arguments for uvicorn.run.

    Transport ping/pong covers every WebSocket, receive-only viewers
    included; browsers answer these pings on their own.
    """
    ping_timeout = None
    if settings.max_missed_probes > 0:
        ping_timeout = settings.heartbeat_interval * settings.max_missed_probes
    return {
        "host": settings.host,
        "port": settings.port,
        "log_level": log_level.lower(),
        "ws_ping_interval": settings.heartbeat_interval,
        "ws_ping_timeout": ping_timeout,
    }


def main(argv=None):
    """CLI entry point for the ratehub-server command."""
    import uvicorn

    from .app import create_app

    args = parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = dataclasses.replace(
        Settings(),
        host=args.host,
        port=args.port,
        mode=AggregationMode(args.mode),
        data_file=args.data_file,
        log_dir=args.log_dir,
    )
    hub = build_hub(settings)

    logger.info("RateHub v%s", __version__)
    logger.info("Starting on ws://%s:%d%s (mode=%s)", settings.host, settings.port, settings.ws_path, settings.mode.value)
    logger.info("History file: %s, sample logs: %s", settings.data_file, settings.log_dir)

    try:
        uvicorn.run(create_app(hub), **server_options(settings, args.log_level))
    except SystemExit as exc:
        # uvicorn exits non-zero when the socket cannot be bound
        if exc.code not in (None, 0):
            logger.error("Server failed to start (exit %s), saving history", exc.code)
            hub.persistence.save()
        raise
    except OSError as exc:
        logger.error("Server failed to start: %s, saving history", exc)
        hub.persistence.save()
        sys.exit(1)


if __name__ == "__main__":
    main()
