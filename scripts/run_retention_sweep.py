#!/usr/bin/env python3
"""
Delete pageviews older than the retention window.

Meant for cron or a one-off cleanup; the API process runs the same sweep
daily when RUN_SCHEDULER is enabled.

Usage:
    # Count what would be deleted
    python scripts/run_retention_sweep.py --dry-run

    # Sweep with the configured DATA_RETENTION_MONTHS
    python scripts/run_retention_sweep.py

    # Override the window and batch size
    python scripts/run_retention_sweep.py --months 12 --batch-size 5000

Exit status is 1 when the sweep aborted on a connection error.
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import func
from sqlmodel import Session, select

from pagepulse.core.config import settings
from pagepulse.db import create_db_engine
from pagepulse.models import Pageview
from pagepulse.services.retention import BATCH_SIZE, RetentionSweeper, retention_cutoff


def count_expired(engine, months: int) -> int:
    cutoff = retention_cutoff(months)
    with Session(engine) as session:
        return session.exec(select(func.count()).select_from(Pageview).where(Pageview.added_iso < cutoff)).one()


def main() -> int:
    parser = argparse.ArgumentParser(description="Delete pageviews older than the retention window")
    parser.add_argument("--months", type=int, default=settings.DATA_RETENTION_MONTHS, help="Retention window in months")
    parser.add_argument("--batch-size", type=int, default=BATCH_SIZE, help="Rows deleted per transaction")
    parser.add_argument("--dry-run", action="store_true", help="Only count expired pageviews")
    args = parser.parse_args()

    if args.months < 1:
        parser.error("--months must be at least 1")

    engine = create_db_engine(settings.DATABASE_URL, settings.DB_TRANSACTION_TIMEOUT_SECONDS)
    try:
        if args.dry_run:
            expired = count_expired(engine, args.months)
            print(f"{expired} pageviews older than {retention_cutoff(args.months).isoformat()} would be deleted")
            return 0

        result = RetentionSweeper(engine, args.months, batch_size=args.batch_size).run()
    finally:
        engine.dispose()

    print(json.dumps(result.to_dict(), indent=2))
    return 1 if result.aborted else 0


if __name__ == "__main__":
    sys.exit(main())
