"""Command line entry point.

Usage:
    python -m token_whale_tracker run-job whales:detect
    python -m token_whale_tracker serve
    python -m token_whale_tracker init-db
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from aiohttp import web
from pydantic import ValidationError

from token_whale_tracker.config import Settings, get_settings
from token_whale_tracker.errors import ConfigurationError, UnknownJobError
from token_whale_tracker.jobs import (
    JOB_ALERTS_SEND,
    JOB_MARKET_REFRESH,
    JOB_WHALES_DETECT,
    JOB_WHALES_TOP,
)
from token_whale_tracker.pipeline import Pipeline
from token_whale_tracker.server import create_app
from token_whale_tracker.storage.database import DatabaseManager

logger = logging.getLogger("token_whale_tracker")

JOB_CHOICES = (JOB_MARKET_REFRESH, JOB_WHALES_TOP, JOB_WHALES_DETECT, JOB_ALERTS_SEND)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="token-whale-tracker",
        description="Token intelligence and whale alert pipeline",
    )
    parser.add_argument("--dry-run", action="store_true", help="Log notifications instead of sending")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run-job", help="Run one job and print its summary")
    run_parser.add_argument("job", choices=JOB_CHOICES, help="Job name")

    serve_parser = subparsers.add_parser("serve", help="Serve the cron trigger endpoints")
    serve_parser.add_argument("--host", help="Bind host (default: CRON_HOST)")
    serve_parser.add_argument("--port", type=int, help="Bind port (default: CRON_PORT)")

    subparsers.add_parser("init-db", help="Create database tables")
    return parser


async def _run_job(settings: Settings, job_name: str, dry_run: bool | None) -> int:
    pipeline = Pipeline(settings, dry_run=dry_run)
    await pipeline.start()
    try:
        result = await pipeline.run_job(job_name)
    finally:
        await pipeline.stop()
    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.ok else 1


async def _init_db(settings: Settings) -> int:
    db = DatabaseManager(settings.database.url)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()
    logger.info("Database schema initialized")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        settings.validate_requirements(command=args.command)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 2
    logger.debug("Settings: %s", settings.redacted_summary())

    dry_run = True if args.dry_run else None

    if args.command == "init-db":
        return asyncio.run(_init_db(settings))

    if args.command == "run-job":
        try:
            return asyncio.run(_run_job(settings, args.job, dry_run))
        except UnknownJobError as e:
            logger.error("%s", e)
            return 2

    # serve
    secret = settings.cron.secret
    if secret is None:
        logger.error("CRON_SECRET is required to serve")
        return 2
    app = create_app(
        Pipeline(settings, dry_run=dry_run),
        cron_secret=secret.get_secret_value(),
    )
    web.run_app(app, host=args.host or settings.cron.host, port=args.port or settings.cron.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
