"""
Listing URL validation and reviews-page URL construction.
"""
import re
from typing import Optional
from urllib.parse import urlparse

APP_URL_PATTERN = re.compile(r'^https?://apps\.shopify\.com/([a-z0-9-]+)/?$', re.IGNORECASE)
WEBHOOK_URL_PATTERN = re.compile(r'^https?://[^\s/]+', re.IGNORECASE)


def is_valid_app_url(url: str) -> bool:
    return bool(url) and APP_URL_PATTERN.match(url.strip()) is not None


def extract_app_slug(url: str) -> Optional[str]:
    """Return the listing slug (path segment) or None if the URL is not a listing."""
    if not url:
        return None
    match = APP_URL_PATTERN.match(url.strip())
    return match.group(1) if match else None


def normalize_app_url(url: str) -> str:
    """Trim whitespace and a trailing slash."""
    trimmed = url.strip()
    return trimmed[:-1] if trimmed.endswith('/') else trimmed


def is_valid_webhook_url(url: str) -> bool:
    return bool(url) and WEBHOOK_URL_PATTERN.match(url.strip()) is not None


def build_reviews_url(base_url: str, page: int) -> str:
    """
    Build the reviews listing URL for a page.

    Page 1 has no query string; later pages use ?page=N.
    """
    parsed = urlparse(base_url.strip())
    path = parsed.path.rstrip('/')
    if not path.endswith('/reviews'):
        path = f"{path}/reviews"
    url = f"{parsed.scheme}://{parsed.netloc}{path}"
    if page > 1:
        return f"{url}?page={page}"
    return url
