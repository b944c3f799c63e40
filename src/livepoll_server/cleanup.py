"""Maintenance CLI — ``livepoll-cleanup``.

Connects to the database and drops rows that no longer influence any
decision: rate-limit ledger entries older than the window, and verification
codes / deletion tokens that are expired or already used.  Intended for
cron jobs.

Examples::

    # Purge both the usage ledger and spent credentials
    uv run livepoll-cleanup

    # Keep an hour of usage history (for debugging abuse reports)
    uv run livepoll-cleanup --keep-seconds 3600

    # Only the usage ledger
    uv run livepoll-cleanup --skip-credentials
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)


async def run_cleanup(
    *,
    keep_seconds: int = int(os.getenv("USAGE_RETENTION_SECONDS", "60")),
    credentials: bool = True,
) -> int:
    """Run the purge and return the total number of deleted rows.

    ``keep_seconds`` is clamped to the rate-limit window, since purging
    younger rows would loosen the limiter.
    """
    from livepoll_core.constants import RATE_LIMIT_WINDOW_SECONDS
    from livepoll_db.engine import dispose_engine, get_session_factory
    from livepoll_db.repository import LivePollRepository

    repo = LivePollRepository()
    factory = get_session_factory()
    keep_seconds = max(keep_seconds, RATE_LIMIT_WINDOW_SECONDS)
    now = datetime.now(timezone.utc)

    try:
        async with factory() as db:
            usage = await repo.purge_usage_before(db, now - timedelta(seconds=keep_seconds))
            spent = await repo.purge_spent_credentials(db, now) if credentials else 0
            await db.commit()

        logger.info(
            "Cleanup complete: usage_rows=%d, credential_rows=%d, keep_seconds=%d",
            usage, spent, keep_seconds,
        )
        return usage + spent
    finally:
        await dispose_engine()


def cli() -> None:
    """Console-script entry point: ``livepoll-cleanup``."""
    parser = argparse.ArgumentParser(
        prog="livepoll-cleanup",
        description="Purge stale rate-limit usage and spent account credentials.",
    )
    parser.add_argument(
        "--keep-seconds",
        type=int,
        default=int(os.getenv("USAGE_RETENTION_SECONDS", "60")),
        help="Usage rows younger than this are kept (minimum: the rate-limit window)",
    )
    parser.add_argument(
        "--skip-credentials",
        action="store_true",
        default=False,
        help="Leave verification codes and deletion tokens untouched",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    affected = asyncio.run(
        run_cleanup(keep_seconds=args.keep_seconds, credentials=not args.skip_credentials)
    )

    print(f"Affected rows: {affected}")
    sys.exit(0)
