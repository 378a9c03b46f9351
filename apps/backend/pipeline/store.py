"""
Durable store for scrape jobs, reviews and recurring agents (PostgreSQL).

Every crawl invocation is stateless; the rows here are the only state that
survives between invocations. Review inserts are insert-if-absent on
(app_url, review_hash), so replayed or overlapping pages never duplicate rows.
"""

import logging
from typing import Dict, Iterable, List, Optional

import psycopg2
from psycopg2.extras import RealDictCursor

from .extractor import ParsedReview

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS pgcrypto;

CREATE TABLE IF NOT EXISTS scraping_jobs (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    app_url TEXT NOT NULL,
    app_slug TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending'
        CHECK (status IN ('pending', 'running', 'completed', 'failed')),
    total_pages INTEGER,
    current_page INTEGER NOT NULL DEFAULT 0,
    total_reviews_found INTEGER NOT NULL DEFAULT 0,
    error_message TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    started_at TIMESTAMPTZ,
    completed_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_scraping_jobs_app_url ON scraping_jobs (app_url);

CREATE TABLE IF NOT EXISTS reviews (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    job_id UUID NOT NULL REFERENCES scraping_jobs (id) ON DELETE CASCADE,
    app_url TEXT NOT NULL,
    reviewer_name TEXT,
    location TEXT,
    usage_time TEXT,
    star_rating SMALLINT NOT NULL CHECK (star_rating BETWEEN 1 AND 5),
    review_content TEXT,
    review_date TEXT,
    review_hash TEXT NOT NULL,
    first_seen_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (app_url, review_hash)
);

CREATE INDEX IF NOT EXISTS idx_reviews_job_id ON reviews (job_id);

-- Outlives job clearing so a review keeps the time it was first persisted
CREATE TABLE IF NOT EXISTS review_sightings (
    app_url TEXT NOT NULL,
    review_hash TEXT NOT NULL,
    first_seen_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (app_url, review_hash)
);

CREATE TABLE IF NOT EXISTS recurring_agents (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    app_url TEXT NOT NULL,
    app_slug TEXT NOT NULL,
    run_day SMALLINT NOT NULL CHECK (run_day BETWEEN 0 AND 6),
    webhook_url TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK (status IN ('active', 'paused', 'stopped')),
    last_run_at TIMESTAMPTZ,
    last_run_status TEXT CHECK (last_run_status IN ('success', 'failed')),
    last_run_message TEXT,
    last_reviews_pushed INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

JOB_COLUMNS = """
    id::text, app_url, app_slug, status, total_pages, current_page,
    total_reviews_found, error_message, created_at, started_at, completed_at
"""

AGENT_COLUMNS = """
    id::text, app_url, app_slug, run_day, webhook_url, status, last_run_at,
    last_run_status, last_run_message, last_reviews_pushed, created_at
"""


class ReviewStore:
    """psycopg2-backed store. One short-lived connection per operation."""

    def __init__(self, db_url: str):
        self.db_url = db_url

    def _get_db_conn(self):
        """Get database connection"""
        try:
            return psycopg2.connect(self.db_url, connect_timeout=10)
        except psycopg2.OperationalError as e:
            logger.error(f"[store] Failed to connect to database: {e}")
            raise

    def _fetch_one(self, query: str, params: tuple) -> Optional[Dict]:
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                row = cur.fetchone()
                conn.commit()
                return dict(row) if row else None
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _fetch_all(self, query: str, params: tuple) -> List[Dict]:
        conn = self._get_db_conn()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query, params)
                return [dict(row) for row in cur.fetchall()]
        finally:
            conn.close()

    def _execute(self, query: str, params: tuple) -> int:
        conn = self._get_db_conn()
        try:
            with conn.cursor() as cur:
                cur.execute(query, params)
                affected = cur.rowcount
                conn.commit()
                return affected
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self):
        """Create tables if missing. Idempotent."""
        conn = self._get_db_conn()
        try:
            with conn.cursor() as cur:
                cur.execute(SCHEMA_SQL)
                conn.commit()
            logger.info("[store] Schema ensured")
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # Scrape jobs

    def create_job(self, app_url: str, app_slug: str) -> Dict:
        return self._fetch_one(
            f"""
            INSERT INTO scraping_jobs (app_url, app_slug, status)
            VALUES (%s, %s, 'pending')
            RETURNING {JOB_COLUMNS}
            """,
            (app_url, app_slug),
        )

    def get_job(self, job_id: str) -> Optional[Dict]:
        return self._fetch_one(
            f"SELECT {JOB_COLUMNS} FROM scraping_jobs WHERE id::text = %s",
            (job_id,),
        )

    def mark_job_running(self, job_id: str):
        self._execute(
            """
            UPDATE scraping_jobs
            SET status = 'running', started_at = NOW(), error_message = NULL
            WHERE id::text = %s
            """,
            (job_id,),
        )

    def set_total_pages(self, job_id: str, total_pages: int):
        self._execute(
            "UPDATE scraping_jobs SET total_pages = %s, current_page = 0 WHERE id::text = %s",
            (total_pages, job_id),
        )

    def set_review_count(self, job_id: str, total_reviews_found: int):
        self._execute(
            "UPDATE scraping_jobs SET total_reviews_found = %s WHERE id::text = %s",
            (total_reviews_found, job_id),
        )

    def record_progress(self, job_id: str, current_page: int, total_reviews_found: int):
        self._execute(
            """
            UPDATE scraping_jobs
            SET current_page = GREATEST(current_page, %s), total_reviews_found = %s
            WHERE id::text = %s
            """,
            (current_page, total_reviews_found, job_id),
        )

    def complete_job(self, job_id: str, total_pages: int, total_reviews_found: int):
        self._execute(
            """
            UPDATE scraping_jobs
            SET status = 'completed', completed_at = NOW(),
                current_page = %s, total_reviews_found = %s
            WHERE id::text = %s
            """,
            (total_pages, total_reviews_found, job_id),
        )

    def fail_job(self, job_id: str, error_message: str):
        self._execute(
            """
            UPDATE scraping_jobs
            SET status = 'failed', error_message = %s, completed_at = NOW()
            WHERE id::text = %s
            """,
            (error_message, job_id),
        )

    def clear_previous_runs(self, app_url: str, keep_job_id: str) -> int:
        """Delete other jobs for the same target, and their reviews. Returns jobs deleted."""
        conn = self._get_db_conn()
        try:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    DELETE FROM reviews
                    WHERE job_id IN (
                        SELECT id FROM scraping_jobs WHERE app_url = %s AND id::text <> %s
                    )
                    """,
                    (app_url, keep_job_id),
                )
                reviews_deleted = cur.rowcount
                cur.execute(
                    "DELETE FROM scraping_jobs WHERE app_url = %s AND id::text <> %s",
                    (app_url, keep_job_id),
                )
                jobs_deleted = cur.rowcount
                conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

        if jobs_deleted:
            logger.info(f"[store] Cleared {jobs_deleted} previous job(s) and {reviews_deleted} review(s) for {app_url}")
        return jobs_deleted

    # Reviews

    def insert_reviews(self, job_id: str, app_url: str, reviews: Iterable[ParsedReview]) -> int:
        """Insert reviews, silently skipping hashes already stored for app_url. Returns rows inserted."""
        inserted = 0
        conn = self._get_db_conn()
        try:
            with conn.cursor() as cur:
                for review in reviews:
                    cur.execute(
                        """
                        INSERT INTO review_sightings (app_url, review_hash)
                        VALUES (%s, %s)
                        ON CONFLICT (app_url, review_hash) DO NOTHING
                        """,
                        (app_url, review.review_hash),
                    )
                    cur.execute(
                        """
                        INSERT INTO reviews (
                            job_id, app_url, reviewer_name, location, usage_time,
                            star_rating, review_content, review_date, review_hash, first_seen_at
                        )
                        SELECT %s, %s, %s, %s, %s, %s, %s, %s, %s, s.first_seen_at
                        FROM review_sightings s
                        WHERE s.app_url = %s AND s.review_hash = %s
                        ON CONFLICT (app_url, review_hash) DO NOTHING
                        """,
                        (
                            job_id, app_url, review.reviewer_name, review.location, review.usage_time,
                            review.star_rating, review.review_content, review.review_date, review.review_hash,
                            app_url, review.review_hash,
                        ),
                    )
                    inserted += cur.rowcount
                conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return inserted

    def count_reviews(self, job_id: str) -> int:
        row = self._fetch_one(
            "SELECT COUNT(*) AS count FROM reviews WHERE job_id::text = %s",
            (job_id,),
        )
        return row['count'] if row else 0

    def get_reviews(self, job_id: str) -> List[Dict]:
        return self._fetch_all(
            """
            SELECT reviewer_name, location, usage_time, star_rating, review_content,
                   review_date, review_hash, first_seen_at, created_at
            FROM reviews
            WHERE job_id::text = %s
            ORDER BY created_at, id
            """,
            (job_id,),
        )

    # Recurring agents

    def create_agent(self, app_url: str, app_slug: str, run_day: int, webhook_url: str) -> Dict:
        return self._fetch_one(
            f"""
            INSERT INTO recurring_agents (app_url, app_slug, run_day, webhook_url, status)
            VALUES (%s, %s, %s, %s, 'active')
            RETURNING {AGENT_COLUMNS}
            """,
            (app_url, app_slug, run_day, webhook_url),
        )

    def get_agent(self, agent_id: str) -> Optional[Dict]:
        return self._fetch_one(
            f"SELECT {AGENT_COLUMNS} FROM recurring_agents WHERE id::text = %s",
            (agent_id,),
        )

    def list_agents(self) -> List[Dict]:
        return self._fetch_all(f"SELECT {AGENT_COLUMNS} FROM recurring_agents ORDER BY created_at DESC", ())

    def get_active_agents_for_day(self, run_day: int) -> List[Dict]:
        return self._fetch_all(
            f"""
            SELECT {AGENT_COLUMNS} FROM recurring_agents
            WHERE status = 'active' AND run_day = %s
            ORDER BY created_at
            """,
            (run_day,),
        )

    def set_agent_status(self, agent_id: str, status: str) -> Optional[Dict]:
        return self._fetch_one(
            f"""
            UPDATE recurring_agents SET status = %s
            WHERE id::text = %s
            RETURNING {AGENT_COLUMNS}
            """,
            (status, agent_id),
        )

    def record_agent_run(self, agent_id: str, status: str, message: Optional[str], reviews_pushed: int):
        self._execute(
            """
            UPDATE recurring_agents
            SET last_run_at = NOW(), last_run_status = %s,
                last_run_message = %s, last_reviews_pushed = %s
            WHERE id::text = %s
            """,
            (status, message, reviews_pushed, agent_id),
        )
