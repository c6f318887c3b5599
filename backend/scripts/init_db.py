#!/usr/bin/env python3
"""
Initialize the trip database.

Usage:
    USE_DATABASE=true DATABASE_URL=... python scripts/init_db.py [--reset]

Checks the connection and creates the trip, student, passenger status,
profile, audit and bulk operation tables if they do not exist.
"""

import argparse
import logging
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import config
from db.database import create_tables, drop_tables, is_database_available, USE_DATABASE
from db.models import Base

logger = logging.getLogger("init_db")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create the trip database tables")
    parser.add_argument("--reset", action="store_true", help="drop all tables before creating them")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    if not USE_DATABASE:
        logger.warning("Database is disabled (USE_DATABASE=false); nothing to do")
        return 0

    logger.info(f"Database URL: {config.DATABASE_URL.split('@')[-1]}")
    if not is_database_available():
        logger.error("Failed to connect to database, check DATABASE_URL")
        return 1

    if args.reset:
        drop_tables()
    create_tables()
    logger.info(f"Tables ready: {', '.join(sorted(Base.metadata.tables))}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
