#!/usr/bin/env python3
"""
Apply the ReviewHarvest schema (jobs, reviews, sightings, agents).
Idempotent - safe to run multiple times.
"""
import os
import sys
import argparse
import logging

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv
import psycopg2

from pipeline.store import ReviewStore, SCHEMA_SQL

load_dotenv()

logging.basicConfig(level=logging.INFO)


def get_db_url():
    """Get database URL"""
    db_url = os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL")
    if not db_url:
        raise ValueError("SUPABASE_DB_URL or DATABASE_URL not set")
    return db_url


def main():
    parser = argparse.ArgumentParser(
        description="Apply the ReviewHarvest schema",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python apply_schema.py              # Apply schema
  python apply_schema.py --print      # Print the DDL without connecting
        """
    )
    parser.add_argument(
        "--print",
        dest="print_only",
        action="store_true",
        help="Print the schema SQL and exit",
    )
    args = parser.parse_args()

    if args.print_only:
        print(SCHEMA_SQL)
        return

    try:
        db_url = get_db_url()
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("ReviewHarvest Database Setup")
    print("=" * 60)

    try:
        ReviewStore(db_url).ensure_schema()
    except psycopg2.Error as e:
        print(f"✗ Failed to apply schema: {e}")
        sys.exit(1)

    print("✓ Schema applied (scraping_jobs, reviews, review_sightings, recurring_agents)")


if __name__ == "__main__":
    main()
