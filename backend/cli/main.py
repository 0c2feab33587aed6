#!/usr/bin/env python3
"""
WatchX Command Line.

Runs a set of commands and restarts them when files change.
Requires Python 3.11+.

Usage:
    watchx run --config watchx.yaml
"""

import argparse
import signal
import sys
from collections.abc import Sequence

from pydantic import ValidationError

from cli.session import EXIT_FAILURE, WatchSession
from utils.config import (
    DEFAULT_CONFIG_PATH,
    ConfigError,
    Settings,
    WatcherSettings,
    get_settings,
    load_watch_config,
)
from utils.logger import configure_logging, get_logger


logger = get_logger("watchx")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="watchx",
        description="Run commands and restart them when watched files change",
    )
    subcommands = parser.add_subparsers(dest="command", required=True)

    run = subcommands.add_parser("run", help="Run the application with hot reloading")
    run.add_argument(
        "-c",
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the config file (default: {DEFAULT_CONFIG_PATH})",
    )
    run.add_argument(
        "--log-level",
        default=None,
        help="Log level (default: LOG_LEVEL or INFO)",
    )
    run.add_argument(
        "--debounce-ms",
        type=int,
        default=None,
        help="Minimum milliseconds between two restarts",
    )
    return parser


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Lay command line options over the settings, validating them the same way."""
    if args.debounce_ms is None:
        return settings
    try:
        watcher = WatcherSettings.model_validate(
            {**settings.watcher.model_dump(), "debounce_ms": args.debounce_ms}
        )
    except ValidationError as e:
        raise ConfigError(f"invalid --debounce-ms {args.debounce_ms}: {e}") from e
    return settings.model_copy(update={"watcher": watcher})


def run(args: argparse.Namespace) -> int:
    """Load the configuration and run a watch session."""
    logger.info("loading_config", path=args.config)
    try:
        config = load_watch_config(args.config)
        settings = _apply_overrides(get_settings(), args)
    except ConfigError as e:
        logger.error("config_error", error=str(e))
        return EXIT_FAILURE

    session = WatchSession(config, settings=settings)

    def handle_signal(signum: int, frame: object) -> None:
        logger.info("stop_requested", signal=signal.Signals(signum).name)
        session.request_stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    return session.run()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "run":
        return run(args)
    return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
