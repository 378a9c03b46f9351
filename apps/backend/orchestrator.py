"""
Recurring agent scheduler: weekly re-crawl, delta, webhook delivery.
"""
import os
import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

from app.config import MAX_POLL_ATTEMPTS, POLL_INTERVAL_SECONDS, SCHEDULE_TZ
from core.errors import AgentNotFound, JobFailure
from core.webhook import WebhookClient, build_payload
from crawler.review_crawler import ReviewCrawler

logger = logging.getLogger(__name__)

SCHEDULER_INTERVAL_SECONDS = 900  # 15 minutes
TERMINAL_JOB_STATUSES = ('completed', 'failed')


def current_run_day(tz_name: str = SCHEDULE_TZ, now: Optional[datetime] = None) -> int:
    """Day of week in the reference timezone, 0 = Sunday ... 6 = Saturday."""
    now = now or datetime.now(timezone.utc)
    local = now.astimezone(ZoneInfo(tz_name))
    return (local.weekday() + 1) % 7


def _as_utc(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = date_parser.isoparse(value)
        except ValueError:
            return None
    if not isinstance(value, datetime):
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _parse_review_date(value: Optional[str]) -> Optional[date]:
    """Review dates are free text ("January 15, 2024"); unparseable ones carry no signal."""
    if not value:
        return None
    try:
        return date_parser.parse(value).date()
    except (ValueError, OverflowError, TypeError):
        return None


def compute_delta(reviews: Iterable[Dict[str, Any]], last_run_at: Any) -> List[Dict[str, Any]]:
    """
    Reviews new since the agent's last run.

    Never run: everything. Otherwise a review is new if its listed date falls
    after the last run date, or if it was first persisted after the last run.
    Either signal is enough, so a review can occasionally be delivered twice.
    """
    reviews = list(reviews)
    cutoff = _as_utc(last_run_at)
    if cutoff is None:
        return reviews

    delta = []
    for review in reviews:
        review_day = _parse_review_date(review.get('review_date'))
        seen_at = _as_utc(review.get('first_seen_at') or review.get('created_at'))
        if (review_day is not None and review_day > cutoff.date()) or (seen_at is not None and seen_at > cutoff):
            delta.append(review)
    return delta


class AgentScheduler:
    """Runs due recurring agents. One agent's failure never affects another."""

    def __init__(
        self,
        store,
        crawler: Optional[ReviewCrawler] = None,
        webhook: Optional[WebhookClient] = None,
        poll_interval: Optional[float] = None,
        max_poll_attempts: Optional[int] = None,
        tz_name: Optional[str] = None,
        sleep=asyncio.sleep,
    ):
        self.store = store
        self.crawler = crawler or ReviewCrawler(store)
        self.webhook = webhook or WebhookClient()
        self.poll_interval = POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        self.max_poll_attempts = max_poll_attempts or MAX_POLL_ATTEMPTS
        self.tz_name = tz_name or SCHEDULE_TZ
        self._sleep = sleep
        self.running = False
        self._task: Optional[asyncio.Task] = None

    def get_due_agents(self, agent_id: Optional[str] = None) -> List[Dict]:
        """An explicitly requested agent regardless of day, else active agents scheduled for today."""
        if agent_id:
            logger.info(f"[scheduler] Manual run requested for agent {agent_id}")
            agent = self.store.get_agent(agent_id)
            if not agent:
                raise AgentNotFound(f"Agent not found: {agent_id}")
            return [agent]

        run_day = current_run_day(self.tz_name)
        logger.info(f"[scheduler] Current day of week in {self.tz_name}: {run_day}")
        return self.store.get_active_agents_for_day(run_day)

    async def _drive_crawl(self, job_id: str):
        try:
            await self.crawler.run_to_completion(job_id)
        except JobFailure as e:
            logger.warning(f"[scheduler] Job {job_id} failed: {e}")
        except asyncio.CancelledError:
            logger.warning(f"[scheduler] Job {job_id} abandoned before completion")
            raise
        except Exception as e:
            logger.error(f"[scheduler] Job {job_id} crawl error: {e}", exc_info=True)

    async def wait_for_job(self, job_id: str, driver: Optional[asyncio.Task] = None) -> Dict:
        """
        Poll the job row until it is terminal or the attempt bound runs out.

        When the crawl driver has already finished, one more read is final.
        """
        job = {'status': 'pending'}
        for attempt in range(1, self.max_poll_attempts + 1):
            await self._sleep(self.poll_interval)
            driver_finished = driver is not None and driver.done()
            try:
                polled = self.store.get_job(job_id)
            except Exception as e:
                logger.error(f"[scheduler] Error polling job {job_id}: {e}")
                continue

            if polled is None:
                return {'status': 'missing'}
            job = polled
            logger.debug(f"[scheduler] Job {job_id} status: {job['status']} (attempt {attempt})")
            if job['status'] in TERMINAL_JOB_STATUSES:
                break
            if driver_finished:
                logger.warning(f"[scheduler] Crawl for job {job_id} stopped with status {job['status']}")
                break
        return job

    async def run_agent(self, agent: Dict) -> Dict:
        agent_id = agent['id']
        logger.info(f"[scheduler] Processing agent {agent_id} for {agent['app_slug']}")

        try:
            job = self.store.create_job(agent['app_url'], agent['app_slug'])
            job_id = job['id']
            logger.info(f"[scheduler] Created job {job_id} for agent {agent_id}")

            driver = asyncio.create_task(self._drive_crawl(job_id))
            try:
                final = await self.wait_for_job(job_id, driver)
            finally:
                if not driver.done():
                    driver.cancel()
                await asyncio.gather(driver, return_exceptions=True)

            if final['status'] != 'completed':
                message = f"Job did not complete. Final status: {final['status']}"
                if final.get('error_message'):
                    message += f" ({final['error_message']})"
                raise JobFailure(message)

            reviews = self.store.get_reviews(job_id)
            delta = compute_delta(reviews, agent.get('last_run_at'))
            logger.info(f"[scheduler] Found {len(delta)} new reviews for agent {agent_id}")

            # Sent even when empty to confirm the run happened
            await self.webhook.deliver(agent['webhook_url'], build_payload(agent, delta))

            self.store.record_agent_run(agent_id, 'success', None, len(delta))
            return {
                'agent_id': agent_id,
                'app_slug': agent['app_slug'],
                'status': 'success',
                'reviews_pushed': len(delta),
            }
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error(f"[scheduler] Error processing agent {agent_id}: {message}")
            try:
                self.store.record_agent_run(agent_id, 'failed', message, 0)
            except Exception as record_error:
                logger.error(f"[scheduler] Could not record failure for agent {agent_id}: {record_error}")
            return {
                'agent_id': agent_id,
                'app_slug': agent['app_slug'],
                'status': 'failed',
                'error': message,
            }

    async def run_due_agents_once(self, agent_id: Optional[str] = None, skip_ran_today: bool = False) -> Dict:
        """Run the due set sequentially and report per-agent outcomes."""
        agents = self.get_due_agents(agent_id)

        if skip_ran_today:
            agents = [a for a in agents if not self._ran_today(a)]

        if not agents:
            logger.info("[scheduler] No agents due for execution")
            return {'success': True, 'message': 'No agents due for execution'}

        logger.info(f"[scheduler] Found {len(agents)} agents due for execution")
        results = []
        for agent in agents:
            results.append(await self.run_agent(agent))

        return {'success': True, 'agents_processed': len(results), 'results': results}

    def _ran_today(self, agent: Dict) -> bool:
        last_run_at = _as_utc(agent.get('last_run_at'))
        if last_run_at is None:
            return False
        tz = ZoneInfo(self.tz_name)
        return last_run_at.astimezone(tz).date() == datetime.now(tz).date()

    async def scheduler_loop(self):
        """Fire the due set once per local calendar day"""
        logger.info("[scheduler] Scheduler started")
        last_run_date = None

        while self.running:
            today = datetime.now(ZoneInfo(self.tz_name)).date()
            if today != last_run_date:
                try:
                    result = await self.run_due_agents_once(skip_ran_today=True)
                    logger.info(f"[scheduler] Daily run finished: {result.get('agents_processed', 0)} agents processed")
                    last_run_date = today
                except Exception as e:
                    logger.error(f"[scheduler] Scheduler error: {e}", exc_info=True)

            await asyncio.sleep(SCHEDULER_INTERVAL_SECONDS)

        logger.info("[scheduler] Scheduler stopped")

    async def start(self):
        """Start the scheduler"""
        if os.getenv("REVIEWHARVEST_DISABLE_SCHEDULER", "").lower() == "true":
            logger.info("[scheduler] Scheduler disabled by REVIEWHARVEST_DISABLE_SCHEDULER")
            return

        self.running = True
        self._task = asyncio.create_task(self.scheduler_loop())
        logger.info("[scheduler] Scheduler task created")

    async def stop(self):
        """Stop the scheduler"""
        self.running = False
        if self._task and not self._task.done():
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)
        logger.info("[scheduler] Scheduler stopping...")


# Global instance
_scheduler: Optional[AgentScheduler] = None


def get_scheduler(db_url: str) -> AgentScheduler:
    """Get or create scheduler instance"""
    global _scheduler
    if _scheduler is None:
        from pipeline.store import ReviewStore
        _scheduler = AgentScheduler(ReviewStore(db_url))
    return _scheduler


async def start_scheduler(db_url: str):
    """Start the agent scheduler (call from FastAPI startup)"""
    scheduler = get_scheduler(db_url)
    await scheduler.start()


async def stop_scheduler():
    """Stop the agent scheduler (call from FastAPI shutdown)"""
    if _scheduler:
        await _scheduler.stop()
