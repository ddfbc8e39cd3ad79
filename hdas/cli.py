"""Command line entry point: ``hdas [--listen-addr ADDR] [--collector-addr ADDR] [--db URL]``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from . import __version__
from .config import Settings, load_settings, parse_address
from .errors import HdasError
from .main import App
from .shutdown import ShutdownNotifier

logger = logging.getLogger("hdas")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hdas", description="Health Data API Server")
    parser.add_argument("--version", action="version", version=f"hdas {__version__}")
    parser.add_argument("--listen-addr", metavar="ADDR", help="listening address (HOST:PORT)")
    parser.add_argument("--collector-addr", metavar="ADDR", help="collector address (HOST:PORT)")
    parser.add_argument("--db", metavar="URL", help="database URL")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    return parser


def _settings_from_args(args: argparse.Namespace) -> Settings:
    return load_settings().with_overrides(
        database_url=args.db,
        listen_addr=parse_address(args.listen_addr) if args.listen_addr else None,
        collector_addr=parse_address(args.collector_addr) if args.collector_addr else None,
        log_level=args.log_level.upper() if args.log_level else None,
    )


async def _serve(settings: Settings) -> None:
    notifier = ShutdownNotifier(capacity=3)

    def _handle_signal(signum: int) -> None:
        logger.debug("signal %d received, starting graceful shutdown", signum)
        notifier.trigger()

    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, _handle_signal, signum)

    await App(settings).run(notifier)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = _settings_from_args(args)
    except HdasError as e:
        print(f"hdas: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    logger.info("listen addr: %s:%d", *settings.listen_addr)
    logger.info("collector addr: %s:%d", *settings.collector_addr)

    try:
        asyncio.run(_serve(settings))
    except HdasError as e:
        logger.error("unable to serve: %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
