"""
printbridge entry point.
"""

import argparse
import asyncio
import logging
import os
import sys

from printbridge.config import (
    AUTOSHUTDOWN_AVAHI,
    AUTOSHUTDOWN_OFF,
    AUTOSHUTDOWN_ON,
    BrowsedConfig,
    load_config,
)
from printbridge.daemon import BrowsedDaemon
from printbridge.spooler.base import SpoolerBase
from printbridge.spooler.mock import MockSpooler
from printbridge.startup import print_startup_banner, run_startup_checks

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _timeout(value: str) -> int:
    seconds = int(value)
    if seconds < 0:
        raise argparse.ArgumentTypeError(f"invalid timeout value: {value}")
    return seconds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Make remote printers available as local print queues"
    )
    parser.add_argument(
        "-c", "--config",
        help="Path to config file (default: config/default.yaml)"
    )
    parser.add_argument(
        "-d", "--debug",
        action="store_true",
        help="Enable debug logging"
    )
    parser.add_argument(
        "--autoshutdown",
        choices=[AUTOSHUTDOWN_ON, AUTOSHUTDOWN_OFF, AUTOSHUTDOWN_AVAHI],
        help="Exit when no remote printers are left (avahi: only while DNS-SD is unavailable)"
    )
    parser.add_argument(
        "--autoshutdown-timeout",
        type=_timeout,
        help="Seconds to wait before an auto shutdown"
    )
    parser.add_argument(
        "--skip-checks",
        action="store_true",
        help="Skip startup checks (not recommended)"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Use an in-memory spooler instead of CUPS"
    )
    return parser


def create_spooler(config: BrowsedConfig, dry_run: bool = False) -> SpoolerBase:
    if dry_run:
        return MockSpooler()

    from printbridge.spooler.cups_adapter import CUPSSpooler

    server = config.spooler_server()
    if server != "localhost":
        # Child processes (filters, backends) reach the same spooler
        os.environ["CUPS_SERVER"] = server
    return CUPSSpooler(server, config.browse.port)


async def run(config: dict, args: argparse.Namespace) -> None:
    browsed_config = BrowsedConfig.from_dict(config)
    spooler = create_spooler(browsed_config, args.dry_run)

    if not args.skip_checks:
        await run_startup_checks(config, spooler)

    print_startup_banner(browsed_config, spooler)

    poll_spooler_factory = (lambda server, port: MockSpooler(server, port)) if args.dry_run else None
    daemon = BrowsedDaemon(browsed_config, spooler, poll_spooler_factory=poll_spooler_factory)
    await daemon.run()


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    # Load configuration
    try:
        config = load_config(args.config)
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    # Apply CLI overrides before validation
    if args.autoshutdown:
        config["autoshutdown"] = args.autoshutdown
    if args.autoshutdown_timeout is not None:
        config["autoshutdown_timeout"] = args.autoshutdown_timeout

    try:
        asyncio.run(run(config, args))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error(f"Daemon error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
