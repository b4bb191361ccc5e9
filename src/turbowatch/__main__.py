"""Entry point for running turbowatch.

Usage:
    python -m turbowatch
    python -m turbowatch --config path/to/turbowatch.yaml --verbose 3

Loads the trigger configuration, watches the project until SIGINT or
SIGTERM, then lets running handlers settle and tears every trigger down.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from pathlib import Path

from turbowatch.cancellation import CancellationToken
from turbowatch.config import Config, load_config
from turbowatch.errors import ConfigError
from turbowatch.logging import get_logger, setup_logging
from turbowatch.watching import watch

log = get_logger()


def _install_signal_handlers(shutdown: CancellationToken) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        name = signal.Signals(signum).name
        try:
            loop.add_signal_handler(signum, shutdown.cancel, name)
        except NotImplementedError:
            # Windows event loops do not support add_signal_handler
            signal.signal(
                signum,
                lambda *_args, name=name: loop.call_soon_threadsafe(shutdown.cancel, name),
            )


async def _main(config: Config) -> None:
    shutdown = CancellationToken()
    _install_signal_handlers(shutdown)

    watcher = await watch(config, abort_signal=shutdown)
    log.info("Ready (%d trigger(s))", len(watcher.subscriptions))

    reason = await shutdown.wait()
    log.info("Received %s, shutting down...", reason)
    await watcher.shutdown()


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="turbowatch",
        description="Run handlers when files change",
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to turbowatch.yaml")
    parser.add_argument("--project", type=Path, default=None, help="Project root to watch")
    parser.add_argument(
        "--verbose", type=int, default=None, help="Verbosity 0 (errors) to 4 (trace)"
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Run turbowatch until interrupted."""
    args = _parse_args(argv)

    try:
        config = load_config(path=args.config, project=args.project)
    except ConfigError as e:
        print(f"turbowatch: {e}", file=sys.stderr)
        sys.exit(1)

    if args.verbose is not None:
        config.logging.verbose = args.verbose
    setup_logging(config.logging)

    if not config.triggers:
        print("turbowatch: no triggers configured", file=sys.stderr)
        sys.exit(1)

    # Handlers are referenced as "module:function" relative to the project
    sys.path.insert(0, config.project)

    try:
        asyncio.run(_main(config))
    except ConfigError as e:
        print(f"turbowatch: {e}", file=sys.stderr)
        sys.exit(1)
    log.info("Exiting...")


if __name__ == "__main__":
    main()
