"""
Webhook delivery for recurring agents.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

import httpx

from app.config import WEBHOOK_TIMEOUT_SECONDS
from core.errors import DeliveryFailure

logger = logging.getLogger(__name__)

USER_AGENT = "ReviewHarvest/1.0"


def build_payload(agent: Dict[str, Any], reviews: Iterable[Dict[str, Any]],
                  scraped_at: Optional[datetime] = None) -> Dict[str, Any]:
    """Webhook body. Missing string fields are sent as empty strings."""
    scraped_at = scraped_at or datetime.now(timezone.utc)
    return {
        "agent_id": agent["id"],
        "app_slug": agent["app_slug"],
        "app_url": agent["app_url"],
        "scraped_at": scraped_at.isoformat(),
        "reviews": [
            {
                "reviewer_name": review.get("reviewer_name") or "",
                "location": review.get("location") or "",
                "usage_time": review.get("usage_time") or "",
                "star_rating": review.get("star_rating"),
                "review_content": review.get("review_content") or "",
                "review_date": review.get("review_date") or "",
            }
            for review in reviews
        ],
    }


class WebhookClient:
    """POSTs JSON payloads; anything but a 2xx is a delivery failure"""

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = httpx.Timeout(timeout or WEBHOOK_TIMEOUT_SECONDS)
        self.transport = transport

    async def deliver(self, url: str, payload: Dict[str, Any]) -> int:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(url, json=payload, headers=headers)
            except httpx.HTTPError as e:
                logger.error(f"[webhook] Request to {url} failed: {e}")
                raise DeliveryFailure(f"Webhook request failed: {e}") from e

        if not response.is_success:
            raise DeliveryFailure(f"Webhook failed: {response.status_code} {response.reason_phrase}")

        logger.info(f"[webhook] Delivered {len(payload.get('reviews', []))} reviews to {url} ({response.status_code})")
        return response.status_code
