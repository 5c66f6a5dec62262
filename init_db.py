#!/usr/bin/env python3
"""
Database initialization script for the product image pipeline.

This script:
1. Verifies database connection
2. Creates all tables defined in models
3. Seeds the occasion catalogue used for occasion linking

Usage:
    python init_db.py [--verbose] [--check-only]
"""

import argparse
import logging
import sys

from db.database import (
    dispose_engine,
    get_db_info,
    init_db,
    missing_tables,
    verify_connection,
)
from db.models import Base
from db.operations import seed_occasions
from pipeline.errors import ConfigurationError

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def main() -> int:
    """Initialize the database."""
    parser = argparse.ArgumentParser(
        description="Initialize the product image pipeline database"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show detailed output including connection info"
    )
    parser.add_argument(
        "--check-only",
        action="store_true",
        help="Only verify connection, don't create tables"
    )
    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    print("=" * 60)
    print("Product Image Pipeline - Database Initialization")
    print("=" * 60)
    print()

    try:
        # Show connection info (with password masked)
        if args.verbose:
            print("Connection Settings:")
            for key, value in get_db_info().items():
                print(f"  {key}: {value}")
            print()

        # Step 1: Verify connection
        print("[1/3] Verifying database connection...")
        if not verify_connection():
            print()
            print("ERROR: Could not connect to database!")
            print()
            print("Please check:")
            print("  1. The database server is running")
            print("  2. The target database exists")
            print("  3. .env file has correct DATABASE_URL or DB_* credentials")
            print()
            return 1

        print("  -> Connection successful!")
        print()

        if args.check_only:
            missing = missing_tables()
            if missing:
                print(f"Missing tables: {', '.join(missing)}")
                return 1
            print("Check-only mode: all tables present.")
            return 0

        # Step 2: Create tables
        print("[2/3] Creating missing tables...")
        created_tables = init_db()
        if created_tables is None:
            print()
            print("ERROR: Failed to create tables!")
            print("Check the logs above for details.")
            return 1

        if created_tables:
            print(f"  -> Created: {', '.join(created_tables)}")
        else:
            print("  -> All tables already exist")
        print()

        # Step 3: Occasions
        print("[3/3] Seeding occasions...")
        created = seed_occasions()
        print(f"  -> {created} occasion(s) created")
        print()

    except ConfigurationError as e:
        print(f"ERROR: {e}")
        return 1
    finally:
        dispose_engine()

    # Summary
    print("=" * 60)
    print("Database initialization complete!")
    print("=" * 60)
    print()
    print("Tables:")
    for table in Base.metadata.sorted_tables:
        print(f"  - {table.name}")
    print()
    print("Next steps:")
    print("  1. Put source photos in a directory")
    print("  2. Run: python run_pipeline.py /path/to/photos --dry-run")
    print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
