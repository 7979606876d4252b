#!/usr/bin/env python3
"""Kindle Reading Sync housekeeping CLI.

Runs one janitor sweep against the configured database and exits. Meant to
be scheduled externally, e.g. every five minutes from cron.

Usage:
    kindlesync-janitor
    kindlesync-janitor --json

Exit Codes:
    0 - Success
    1 - Sweep failed
    2 - Configuration error
"""

import argparse
import asyncio
import json
import sys

from pydantic import ValidationError as SettingsError

from kindlesync.config import get_settings
from kindlesync.core.janitor import Janitor, SweepReport
from kindlesync.core.logging import get_logger, log_context, setup_logging
from kindlesync.database import close_db, get_session_maker, init_db

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


async def run_sweep() -> SweepReport:
    with log_context(job="janitor"):
        await init_db()
        try:
            async with get_session_maker()() as db:
                return await Janitor(db).run()
        finally:
            await close_db()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kindlesync-janitor",
        description="Expire stale authorization sessions and purge expired tokens.",
    )
    parser.add_argument("--json", action="store_true", help="Print the sweep report as JSON")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = get_settings()
    except SettingsError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    setup_logging(json_output=settings.log_json, level=settings.log_level)

    try:
        report = asyncio.run(run_sweep())
    except Exception as e:
        logger.error("Janitor sweep failed", error=str(e), exc_info=True)
        return EXIT_FAILED

    if args.json:
        print(json.dumps(report.to_dict()))
    else:
        print(f"Expired sessions: {report.sessions_expired}")
        print(f"Purged tokens:    {report.tokens_purged}")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
