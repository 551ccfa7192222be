"""Command-line entry point.

Usage:
    python -m memecoin_lifecycle_tracker run
    python -m memecoin_lifecycle_tracker init-db
    python -m memecoin_lifecycle_tracker stats
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from memecoin_lifecycle_tracker.config import Settings, get_settings
from memecoin_lifecycle_tracker.engine import LifecycleEngine

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="memecoin-lifecycle-tracker",
        description="Lifecycle tracking for memecoin signals and smart-money candidates.",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override LOG_LEVEL from the environment",
    )
    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("run", help="Run the signal tracker and candidate evaluator until interrupted")
    commands.add_parser("init-db", help="Create database tables")
    commands.add_parser("stats", help="Print engine statistics as JSON")
    return parser


def configure_logging(settings: Settings, override: str | None = None) -> None:
    level = getattr(logging, override) if override else settings.get_logging_level()
    logging.basicConfig(level=level, format=LOG_FORMAT)


async def _run(settings: Settings) -> None:
    await LifecycleEngine(settings).run()


async def _init_db(settings: Settings) -> None:
    engine = LifecycleEngine(settings)
    try:
        await engine.init_schema()
    finally:
        await engine.close()


async def _stats(settings: Settings) -> dict[str, object]:
    engine = LifecycleEngine(settings)
    try:
        return await engine.get_stats()
    finally:
        await engine.close()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings, args.log_level)
    logger.debug("Settings: %s", settings.redacted_summary())

    if args.command == "run":
        try:
            asyncio.run(_run(settings))
        except KeyboardInterrupt:
            logger.info("Interrupted")
    elif args.command == "init-db":
        asyncio.run(_init_db(settings))
        logger.info("Database schema ready")
    elif args.command == "stats":
        print(json.dumps(asyncio.run(_stats(settings)), indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
