#!/usr/bin/env python3
"""
Run recurring agents once: every active agent due today, or one agent by id.
Suitable for an external cron when the in-process scheduler is disabled.
"""
import os
import sys
import json
import argparse
import asyncio
import logging

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from core.errors import AgentNotFound
from orchestrator import AgentScheduler
from pipeline.store import ReviewStore

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def get_db_url():
    """Get database URL"""
    db_url = os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL")
    if not db_url:
        raise ValueError("SUPABASE_DB_URL or DATABASE_URL not set")
    return db_url


def main():
    parser = argparse.ArgumentParser(description="Run due recurring agents once")
    parser.add_argument("--agent-id", default=None, help="Run this agent regardless of its run day")
    args = parser.parse_args()

    try:
        scheduler = AgentScheduler(ReviewStore(get_db_url()))
        result = asyncio.run(scheduler.run_due_agents_once(args.agent_id))
    except (ValueError, AgentNotFound) as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(json.dumps(result, indent=2, default=str))

    failed = [r for r in result.get('results', []) if r['status'] == 'failed']
    if failed:
        sys.exit(2)


if __name__ == "__main__":
    main()
