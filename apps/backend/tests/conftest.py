"""
Shared fixtures: an in-memory stand-in for ReviewStore, a scripted fetcher
and builders for rendered listing markup.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

import pytest

from core.errors import FetchError

APP_URL = "https://apps.shopify.com/acme-reviews"


class InMemoryStore:
    """Same methods and semantics as pipeline.store.ReviewStore, kept in dicts."""

    def __init__(self):
        self.jobs: Dict[str, Dict] = {}
        self.reviews: Dict[tuple, Dict] = {}
        self.sightings: Dict[tuple, datetime] = {}
        self.agents: Dict[str, Dict] = {}
        self.now = lambda: datetime.now(timezone.utc)

    # Scrape jobs

    def create_job(self, app_url: str, app_slug: str) -> Dict:
        job_id = str(uuid.uuid4())
        self.jobs[job_id] = {
            'id': job_id,
            'app_url': app_url,
            'app_slug': app_slug,
            'status': 'pending',
            'total_pages': None,
            'current_page': 0,
            'total_reviews_found': 0,
            'error_message': None,
            'created_at': self.now(),
            'started_at': None,
            'completed_at': None,
        }
        return dict(self.jobs[job_id])

    def get_job(self, job_id: str) -> Optional[Dict]:
        job = self.jobs.get(job_id)
        return dict(job) if job else None

    def mark_job_running(self, job_id: str):
        self.jobs[job_id].update(status='running', started_at=self.now(), error_message=None)

    def set_total_pages(self, job_id: str, total_pages: int):
        self.jobs[job_id].update(total_pages=total_pages, current_page=0)

    def set_review_count(self, job_id: str, total_reviews_found: int):
        self.jobs[job_id]['total_reviews_found'] = total_reviews_found

    def record_progress(self, job_id: str, current_page: int, total_reviews_found: int):
        job = self.jobs[job_id]
        job['current_page'] = max(job['current_page'], current_page)
        job['total_reviews_found'] = total_reviews_found

    def complete_job(self, job_id: str, total_pages: int, total_reviews_found: int):
        self.jobs[job_id].update(
            status='completed',
            completed_at=self.now(),
            current_page=total_pages,
            total_reviews_found=total_reviews_found,
        )

    def fail_job(self, job_id: str, error_message: str):
        self.jobs[job_id].update(status='failed', error_message=error_message, completed_at=self.now())

    def clear_previous_runs(self, app_url: str, keep_job_id: str) -> int:
        stale = [jid for jid, job in self.jobs.items() if job['app_url'] == app_url and jid != keep_job_id]
        for key in [k for k, r in self.reviews.items() if r['job_id'] in stale]:
            del self.reviews[key]
        for jid in stale:
            del self.jobs[jid]
        return len(stale)

    # Reviews

    def insert_reviews(self, job_id: str, app_url: str, reviews) -> int:
        inserted = 0
        for review in reviews:
            key = (app_url, review.review_hash)
            self.sightings.setdefault(key, self.now())
            if key in self.reviews:
                continue
            row = review.to_dict()
            row.update(job_id=job_id, app_url=app_url, first_seen_at=self.sightings[key], created_at=self.now())
            self.reviews[key] = row
            inserted += 1
        return inserted

    def count_reviews(self, job_id: str) -> int:
        return sum(1 for r in self.reviews.values() if r['job_id'] == job_id)

    def get_reviews(self, job_id: str) -> List[Dict]:
        return [dict(r) for r in self.reviews.values() if r['job_id'] == job_id]

    # Recurring agents

    def create_agent(self, app_url: str, app_slug: str, run_day: int, webhook_url: str) -> Dict:
        agent_id = str(uuid.uuid4())
        self.agents[agent_id] = {
            'id': agent_id,
            'app_url': app_url,
            'app_slug': app_slug,
            'run_day': run_day,
            'webhook_url': webhook_url,
            'status': 'active',
            'last_run_at': None,
            'last_run_status': None,
            'last_run_message': None,
            'last_reviews_pushed': 0,
            'created_at': self.now(),
        }
        return dict(self.agents[agent_id])

    def get_agent(self, agent_id: str) -> Optional[Dict]:
        agent = self.agents.get(agent_id)
        return dict(agent) if agent else None

    def list_agents(self) -> List[Dict]:
        return sorted((dict(a) for a in self.agents.values()), key=lambda a: a['created_at'], reverse=True)

    def get_active_agents_for_day(self, run_day: int) -> List[Dict]:
        return [dict(a) for a in self.agents.values() if a['status'] == 'active' and a['run_day'] == run_day]

    def set_agent_status(self, agent_id: str, status: str) -> Optional[Dict]:
        if agent_id not in self.agents:
            return None
        self.agents[agent_id]['status'] = status
        return dict(self.agents[agent_id])

    def record_agent_run(self, agent_id: str, status: str, message: Optional[str], reviews_pushed: int):
        self.agents[agent_id].update(
            last_run_at=self.now(),
            last_run_status=status,
            last_run_message=message,
            last_reviews_pushed=reviews_pushed,
        )


class FakeFetcher:
    """Serves canned HTML per URL. Exceptions in the map are raised."""

    def __init__(self, pages: Optional[Dict[str, object]] = None):
        self.pages = dict(pages or {})
        self.calls: List[str] = []

    async def fetch(self, url: str) -> str:
        self.calls.append(url)
        if url not in self.pages:
            raise FetchError(f"Browserless error: 404 - no page for {url}", status_code=404)
        result = self.pages[url]
        if isinstance(result, Exception):
            raise result
        return result


async def no_sleep(seconds):
    return None


def review_block(review_id, name="Jane", rating=5, content="Great app", date="January 15, 2024",
                 location="United States", usage="About 1 year using the app"):
    rating_html = f'<div aria-label="{rating} out of 5 stars" role="img"></div>' if rating is not None else ''
    name_html = f'<div class="tw-text-heading-xs tw-text-fg-primary"><span title="{name}">{name}</span></div>' if name else ''
    location_html = f'<div>{location}</div>' if location else ''
    usage_html = f'<div>{usage}</div>' if usage else ''
    date_html = f'<div class="tw-text-body-xs tw-text-fg-tertiary">{date}</div>' if date else ''
    content_html = (
        f'<div data-truncate-content-copy><p class="tw-break-words">{content}</p></div>' if content else ''
    )
    return f"""
    <div id="review-{review_id}" data-review-content-id="{review_id}">
      <div class="tw-order-1">
        {name_html}
        {location_html}
        {usage_html}
      </div>
      <div class="tw-order-2">
        <div class="tw-flex">{rating_html}{date_html}</div>
        {content_html}
      </div>
    </div>
    """


def listing_page(blocks, rating_count=None, extra=""):
    jsonld = ""
    if rating_count is not None:
        jsonld = (
            '<script type="application/ld+json">'
            '{"@type": "SoftwareApplication", "aggregateRating": '
            f'{{"@type": "AggregateRating", "ratingValue": 4.8, "ratingCount": {rating_count}}}}}'
            '</script>'
        )
    return f"<html><head>{jsonld}</head><body>{''.join(blocks)}{extra}</body></html>"


def paged_site(app_url, reviews_per_page, total_pages):
    """URL -> HTML for a listing whose pages each hold distinct reviews."""
    pages = {}
    for page in range(1, total_pages + 1):
        blocks = [
            review_block(page * 100 + i, name=f"Reviewer {page}-{i}", content=f"Review {page}-{i}")
            for i in range(reviews_per_page)
        ]
        url = f"{app_url}/reviews" if page == 1 else f"{app_url}/reviews?page={page}"
        # Ten reviews per page on the live site, so this count yields total_pages
        pages[url] = listing_page(blocks, rating_count=10 * total_pages)
    return pages


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def app_url():
    return APP_URL
