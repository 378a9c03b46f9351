#!/usr/bin/env python3
"""
Scrape every review of one app listing from the command line.

Creates a job and keeps passing the continuation token back until the crawl
completes, the same loop a browser client runs against POST /api/scrape.
"""
import os
import sys
import argparse
import asyncio
import logging

# Add backend to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dotenv import load_dotenv

from app.validators import extract_app_slug, is_valid_app_url, normalize_app_url
from core.errors import ReviewHarvestError
from crawler.review_crawler import ReviewCrawler
from pipeline.store import ReviewStore

load_dotenv()

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def get_db_url():
    """Get database URL"""
    db_url = os.getenv("SUPABASE_DB_URL") or os.getenv("DATABASE_URL")
    if not db_url:
        raise ValueError("SUPABASE_DB_URL or DATABASE_URL not set")
    return db_url


def print_progress(result):
    print(f"  ... page {result.next_page - 1}/{result.total_pages}, {result.total_reviews} reviews so far")


async def scrape(app_url: str, pages_per_batch=None, show_reviews: bool = False):
    store = ReviewStore(get_db_url())
    crawler = ReviewCrawler(store, pages_per_batch=pages_per_batch)

    app_url = normalize_app_url(app_url)
    job = store.create_job(app_url, extract_app_slug(app_url))
    print(f"Created job {job['id']} for {job['app_slug']}")

    result = await crawler.run_to_completion(job['id'], on_batch=print_progress)

    print("=" * 60)
    print(f"✓ Completed: {result.total_pages} pages, {result.total_reviews} reviews")

    if show_reviews:
        for review in store.get_reviews(job['id']):
            print(f"- [{review['star_rating']}★] {review['reviewer_name'] or '?'} ({review['review_date'] or 'no date'})")
            print(f"  {(review['review_content'] or '')[:200]}")


def main():
    parser = argparse.ArgumentParser(description="Scrape all reviews of an app listing")
    parser.add_argument("app_url", help="Listing URL, e.g. https://apps.shopify.com/my-app")
    parser.add_argument("--batch-size", type=int, default=None, help="Pages per invocation")
    parser.add_argument("--show", action="store_true", help="Print the stored reviews when done")
    args = parser.parse_args()

    if not is_valid_app_url(args.app_url):
        print("Error: Invalid app URL. Expected https://apps.shopify.com/<app-name>")
        sys.exit(1)

    try:
        asyncio.run(scrape(args.app_url, args.batch_size, args.show))
    except (ValueError, ReviewHarvestError) as e:
        print(f"✗ {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
