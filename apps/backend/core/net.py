"""
Rendering-service client with bounded retries and linear backoff.

The target listing builds its reviews with client-side scripts, so every page
is fetched through a headless-browser rendering service (Browserless) that
returns the settled HTML.
"""
import time
import asyncio
import logging
from typing import Optional

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_incrementing

from app.config import FETCH_TIMEOUT_SECONDS, get_browserless_key, get_browserless_url
from core.errors import ConfigError, FetchError

logger = logging.getLogger(__name__)

MAX_RETRIES = 2
TRANSIENT_STATUS_CODES = {429, 500, 503}
NAVIGATION_TIMEOUT_MS = 30000


def _is_transient(error: BaseException) -> bool:
    return isinstance(error, FetchError) and error.transient


class RenderClient:
    """Fetches fully rendered HTML for a URL"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep=asyncio.sleep,
    ):
        self.api_key = api_key if api_key is not None else get_browserless_key()
        self.base_url = (base_url or get_browserless_url()).rstrip("/")
        self.timeout = httpx.Timeout(timeout or FETCH_TIMEOUT_SECONDS)
        self.transport = transport
        self._sleep = sleep

    def _log_retry(self, retry_state):
        error = retry_state.outcome.exception()
        logger.warning(
            f"[render] {error}, retrying (attempt {retry_state.attempt_number}/{MAX_RETRIES}) "
            f"in {retry_state.next_action.sleep:.0f}s"
        )

    async def fetch(self, url: str) -> str:
        """
        Return rendered HTML for url.

        Raises:
            ConfigError: BROWSERLESS_API_KEY is not set
            FetchError: non-success response or network failure after retries
        """
        if not self.api_key:
            raise ConfigError("BROWSERLESS_API_KEY not configured")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(MAX_RETRIES + 1),
            wait=wait_incrementing(start=1, increment=1),
            retry=retry_if_exception(_is_transient),
            before_sleep=self._log_retry,
            sleep=self._sleep,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._fetch_once(url)

    async def _fetch_once(self, url: str) -> str:
        payload = {
            "url": url,
            "gotoOptions": {
                "waitUntil": "networkidle2",
                "timeout": NAVIGATION_TIMEOUT_MS,
            },
        }

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            start_time = time.time()
            try:
                response = await client.post(
                    f"{self.base_url}/content",
                    params={"token": self.api_key},
                    json=payload,
                )
            except httpx.TransportError as e:
                logger.error(f"[render] Network error fetching {url}: {e}")
                raise FetchError(f"Rendering request failed: {e}", transient=True) from e

            elapsed_ms = int((time.time() - start_time) * 1000)

            if response.is_success:
                logger.info(f"[render] {response.status_code} {url} ({len(response.content)} bytes, {elapsed_ms}ms)")
                return response.text

            status = response.status_code
            raise FetchError(
                f"Browserless error: {status} - {response.text[:200]}",
                transient=status in TRANSIENT_STATUS_CODES,
                status_code=status,
            )
