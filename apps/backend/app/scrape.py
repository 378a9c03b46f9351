"""
Scrape job endpoints: create a job, poll it, drive one crawl batch.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.config import Capabilities
from app.db_config import db_config
from app.rate_limit import RATE_LIMIT_CREATE, limiter
from app.validators import extract_app_slug, is_valid_app_url, normalize_app_url
from core.errors import JobFailure, JobNotFound
from crawler.review_crawler import ReviewCrawler
from pipeline.store import ReviewStore

logger = logging.getLogger(__name__)
router = APIRouter()


class CreateJobRequest(BaseModel):
    app_url: str


class ScrapeRequest(BaseModel):
    job_id: str
    start_page: Optional[int] = Field(None, ge=1)


def get_store() -> ReviewStore:
    """Dependency: the durable store, or 503 when no database is configured."""
    if not db_config.is_db_enabled:
        raise HTTPException(status_code=503, detail="Database not configured")
    return ReviewStore(db_config.db_url)


def get_crawler(store: ReviewStore = Depends(get_store)) -> ReviewCrawler:
    if not Capabilities.is_renderer_enabled():
        raise HTTPException(status_code=503, detail="BROWSERLESS_API_KEY not configured")
    return ReviewCrawler(store)


@router.post("/api/jobs")
@limiter.limit(RATE_LIMIT_CREATE)
async def create_job(request: Request, body: CreateJobRequest, store: ReviewStore = Depends(get_store)):
    """Create a pending scrape job for an app listing URL."""
    if not is_valid_app_url(body.app_url):
        raise HTTPException(
            status_code=400,
            detail="Invalid app URL. Expected https://apps.shopify.com/<app-name>",
        )

    app_url = normalize_app_url(body.app_url)
    app_slug = extract_app_slug(app_url)

    job = store.create_job(app_url, app_slug)
    logger.info(f"[api/jobs] Created job {job['id']} for {app_slug}")
    return {"status": "ok", "data": job, "error": None}


@router.get("/api/jobs/{job_id}")
def get_job(job_id: str, store: ReviewStore = Depends(get_store)):
    job = store.get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return {"status": "ok", "data": job, "error": None}


@router.post("/api/scrape")
async def scrape(body: ScrapeRequest, store: ReviewStore = Depends(get_store),
                 crawler: ReviewCrawler = Depends(get_crawler)):
    """
    Process one batch of pages for a job.

    Returns either the completed shape or a continuation token (next_page)
    the caller passes back as start_page.
    """
    job = store.get_job(body.job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")

    if job['status'] == 'failed':
        raise HTTPException(status_code=409, detail=f"Job has failed: {job.get('error_message')}")

    if body.start_page and body.start_page > 1 and job['status'] == 'pending':
        raise HTTPException(status_code=409, detail="Job has not been started; call without start_page first")

    try:
        result = await crawler.crawl(body.job_id, start_page=body.start_page)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")
    except JobFailure as e:
        logger.error(f"[api/scrape] Job {body.job_id} failed: {e}")
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return result.to_dict()


@router.get("/api/jobs/{job_id}/reviews")
def get_job_reviews(job_id: str, store: ReviewStore = Depends(get_store)):
    """Reviews stored for a job, oldest first."""
    if not store.get_job(job_id):
        raise HTTPException(status_code=404, detail="Job not found")
    reviews = store.get_reviews(job_id)
    return {"status": "ok", "data": reviews, "error": None}
