"""Command-line entry points for operators and cron.

    vibephoto sweep [--json]   run one polling sweep
    vibephoto init-db          create database tables
"""

import argparse
import asyncio
import json
import logging
import sys

from vibephoto.config import settings
from vibephoto.database import init_db
from vibephoto.logging_config import configure_logging
from vibephoto.wiring import build_services

logger = logging.getLogger(__name__)


def _sweep(args: argparse.Namespace) -> int:
    services = build_services(settings)
    summary = asyncio.run(services.sweeper.run())
    data = summary.as_dict()
    if args.json:
        print(json.dumps(data))
    else:
        print(
            f"checked={data['checked']} completed={data['completed']} "
            f"failed={data['failed']} stillProcessing={data['stillProcessing']} "
            f"errored={data['errored']}"
        )
    return 1 if summary.errored else 0


def _init_db(args: argparse.Namespace) -> int:
    init_db()
    print("Database initialised")
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="vibephoto", description="VibePhoto job engine operations"
    )
    parser.add_argument(
        "--log-level",
        default=settings.log_level,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sweep = sub.add_parser("sweep", help="Reconcile stale in-flight jobs once")
    sweep.add_argument("--json", action="store_true", help="Print the summary as JSON")
    sweep.set_defaults(func=_sweep)

    init = sub.add_parser("init-db", help="Create database tables")
    init.set_defaults(func=_init_db)

    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
