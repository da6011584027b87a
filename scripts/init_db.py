#!/usr/bin/env python3
"""
Create the pageviews and events tables if they do not exist.

Usage:
    python scripts/init_db.py
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pagepulse.core.config import settings
from pagepulse.db import create_db_and_tables, create_db_engine


def main() -> None:
    engine = create_db_engine(settings.DATABASE_URL, settings.DB_TRANSACTION_TIMEOUT_SECONDS)
    try:
        create_db_and_tables(engine)
    finally:
        engine.dispose()
    print("Tables created (existing tables left untouched).")


if __name__ == "__main__":
    main()
