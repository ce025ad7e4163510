"""
Process due recurring transactions once and print the summary.

Usage:
    python -m backend.process_recurring [--as-of YYYY-MM-DD]

Meant for cron or manual operator runs. Exits 1 when any parent failed.
"""

import argparse
import asyncio
import json
import sys
from datetime import date
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from backend.app.core.observability import configure_logging
from backend.app.db.session import AsyncSessionLocal, engine, Base
from backend.app.domain.recurring.scheduler import RecurringScheduler
from backend.app.services.ledger_notifier import InAppLedgerNotifier

# Import models to ensure they are registered with Base
from backend.app.models.category import Category
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.notification import Notification


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate due recurring transactions")
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Process occurrences due on or before this date (default: today, UTC)",
    )
    return parser.parse_args(argv)


async def process_recurring(as_of: date = None, session_factory=AsyncSessionLocal) -> dict:
    """Run one processing pass and return {processed, created, failed[]}."""
    scheduler = RecurringScheduler(
        session_factory,
        notifier=InAppLedgerNotifier(session_factory),
    )
    summary = await scheduler.process_due(as_of=as_of)
    return summary.to_dict()


async def _main(as_of: date = None) -> dict:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        return await process_recurring(as_of)
    finally:
        await engine.dispose()


def main(argv=None) -> int:
    args = parse_args(argv)
    configure_logging()
    summary = asyncio.run(_main(args.as_of))
    print(json.dumps(summary, indent=2))
    return 1 if summary["failed"] else 0


if __name__ == "__main__":
    sys.exit(main())
