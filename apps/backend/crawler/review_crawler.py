"""
Batch crawler for paginated review listings.

A crawl is split across many short invocations. Each call to crawl() handles
at most one batch of pages and keeps nothing in memory afterwards: progress
lives on the scraping_jobs row, and the caller re-invokes with the returned
next_page until the job completes.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional

from app.config import PAGES_PER_BATCH, PAGE_DELAY_SECONDS
from app.validators import build_reviews_url
from core.errors import JobFailure, JobNotFound
from core.net import RenderClient
from pipeline.extractor import ReviewExtractor
from pipeline.pagination import PaginationEstimator

logger = logging.getLogger(__name__)

STATUS_COMPLETED = 'completed'
STATUS_CONTINUING = 'continuing'


class CrawlResult:
    """Outcome of one invocation: completed, or a continuation token."""

    def __init__(self, status: str, total_pages: int, total_reviews: int, next_page: Optional[int] = None):
        self.status = status
        self.total_pages = total_pages
        self.total_reviews = total_reviews
        self.next_page = next_page

    @property
    def is_complete(self) -> bool:
        return self.status == STATUS_COMPLETED

    def to_dict(self) -> Dict:
        if self.is_complete:
            return {
                "success": True,
                "status": STATUS_COMPLETED,
                "total_pages": self.total_pages,
                "total_reviews": self.total_reviews,
            }
        return {
            "success": True,
            "status": STATUS_CONTINUING,
            "next_page": self.next_page,
            "total_pages": self.total_pages,
            "reviews_so_far": self.total_reviews,
        }


class ReviewCrawler:
    """
    Coordinates fetching, extraction and pagination for one scrape job.

    The store is the only shared state. Replaying a continuation token is
    safe: re-fetched pages insert nothing new because reviews are keyed by
    content hash.
    """

    def __init__(
        self,
        store,
        fetcher=None,
        extractor: Optional[ReviewExtractor] = None,
        estimator: Optional[PaginationEstimator] = None,
        pages_per_batch: Optional[int] = None,
        page_delay: Optional[float] = None,
        sleep: Callable = asyncio.sleep,
    ):
        self.store = store
        self.fetcher = fetcher or RenderClient()
        self.extractor = extractor or ReviewExtractor()
        self.estimator = estimator or PaginationEstimator()
        self.pages_per_batch = max(1, pages_per_batch or PAGES_PER_BATCH)
        self.page_delay = PAGE_DELAY_SECONDS if page_delay is None else page_delay
        self._sleep = sleep

    async def crawl(self, job_id: str, start_page: Optional[int] = None) -> CrawlResult:
        """
        Process one batch of pages for a job.

        start_page of None or 1 (re)starts the job from the first page.
        Raises JobNotFound for unknown jobs and JobFailure when the job cannot
        make progress; the failure is already recorded on the job row.
        """
        job = self.store.get_job(job_id)
        if not job:
            raise JobNotFound(f"Job not found: {job_id}")

        if job['status'] == 'failed':
            raise JobFailure(job.get('error_message') or 'Job previously failed')

        if job['status'] == 'completed':
            # Late replay of a token for a finished job
            return CrawlResult(STATUS_COMPLETED, job['total_pages'], job['total_reviews_found'])

        start_page = start_page or 1

        try:
            if start_page <= 1:
                total_pages = await self._initiate(job)
                start_page = 2
            else:
                if job['status'] != 'running' or not job.get('total_pages'):
                    raise JobFailure(f"Cannot resume job {job_id} from page {start_page}: first page was never processed")
                total_pages = job['total_pages']

            end_page = min(start_page + self.pages_per_batch - 1, total_pages)
            if start_page <= end_page:
                logger.info(f"[crawler] Job {job_id}: processing pages {start_page}-{end_page} of {total_pages}")
            await self._process_batch(job, start_page, end_page, total_pages)

            # Duplicates across pages and batches never inflate this
            review_count = self.store.count_reviews(job_id)

            next_page = max(end_page, start_page - 1) + 1
            if next_page <= total_pages:
                self.store.set_review_count(job_id, review_count)
                logger.info(f"[crawler] Job {job_id}: batch done, continuing from page {next_page} ({review_count} reviews so far)")
                return CrawlResult(STATUS_CONTINUING, total_pages, review_count, next_page=next_page)

            self.store.complete_job(job_id, total_pages, review_count)
            logger.info(f"[crawler] Job {job_id}: completed, {total_pages} pages, {review_count} reviews")
            return CrawlResult(STATUS_COMPLETED, total_pages, review_count)

        except JobFailure:
            raise
        except Exception as e:
            logger.error(f"[crawler] Job {job_id} failed: {e}", exc_info=True)
            self._fail(job_id, str(e))
            raise JobFailure(str(e)) from e

    async def run_to_completion(self, job_id: str, on_batch: Optional[Callable[[CrawlResult], None]] = None) -> CrawlResult:
        """Loop continuation tokens until the job completes. Each step is a fresh crawl() call."""
        result = await self.crawl(job_id)
        while not result.is_complete:
            if on_batch:
                on_batch(result)
            result = await self.crawl(job_id, start_page=result.next_page)
        return result

    async def _initiate(self, job: Dict) -> int:
        """Reset target history, fetch page 1, fix total_pages. Any failure here ends the job."""
        job_id = job['id']
        app_url = job['app_url']

        try:
            self.store.clear_previous_runs(app_url, job_id)
        except Exception as e:
            logger.error(f"[crawler] Could not clear previous runs for {app_url}: {e}")

        self.store.mark_job_running(job_id)

        first_page_url = build_reviews_url(app_url, 1)
        logger.info(f"[crawler] Job {job_id}: fetching first page {first_page_url}")
        try:
            html = await self.fetcher.fetch(first_page_url)
            pagination = self.estimator.estimate(html)
            self.store.set_total_pages(job_id, pagination.total_pages)

            reviews = self.extractor.extract(html)
            inserted = self.store.insert_reviews(job_id, app_url, reviews)
            self.store.record_progress(job_id, 1, self.store.count_reviews(job_id))
        except Exception as e:
            message = f"Failed to fetch first page: {e}"
            logger.error(f"[crawler] Job {job_id}: {message}")
            self._fail(job_id, message)
            raise JobFailure(message) from e

        logger.info(f"[crawler] Job {job_id}: {pagination.total_pages} pages, page 1 gave {len(reviews)} reviews ({inserted} new)")
        return pagination.total_pages

    async def _process_batch(self, job: Dict, start_page: int, end_page: int, total_pages: int):
        job_id = job['id']
        app_url = job['app_url']

        # Pages run strictly in order to respect the target's rate limits
        for page in range(start_page, end_page + 1):
            await self._sleep(self.page_delay)

            page_url = build_reviews_url(app_url, page)
            try:
                html = await self.fetcher.fetch(page_url)
                reviews = self.extractor.extract(html)
                inserted = self.store.insert_reviews(job_id, app_url, reviews)
                self.store.record_progress(job_id, page, self.store.count_reviews(job_id))
                logger.info(f"[crawler] Job {job_id}: page {page}/{total_pages} gave {len(reviews)} reviews ({inserted} new)")
            except Exception as e:
                # One bad page never sinks the batch
                logger.error(f"[crawler] Job {job_id}: error processing page {page}: {e}")

    def _fail(self, job_id: str, message: str):
        try:
            self.store.fail_job(job_id, message)
        except Exception as e:
            logger.error(f"[crawler] Could not record failure for job {job_id}: {e}")
