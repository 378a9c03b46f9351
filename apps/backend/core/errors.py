"""
Error taxonomy for the crawl, extraction and delivery pipeline.

Page- and block-level problems are absorbed where they happen; only
initiation failures end a job and only agent-level failures are recorded
on an agent row.
"""
from typing import Optional


class ReviewHarvestError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(ReviewHarvestError):
    """A required external-service credential is missing. Never retried."""


class FetchError(ReviewHarvestError):
    """The rendering service could not produce HTML for a URL."""

    def __init__(self, message: str, transient: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.transient = transient
        self.status_code = status_code


class ParseError(ReviewHarvestError):
    """A review block or page could not be parsed. Callers skip the unit."""


class JobFailure(ReviewHarvestError):
    """A crawl could not reach a successful terminal state."""


class DeliveryFailure(ReviewHarvestError):
    """The webhook rejected the payload or could not be reached."""


class JobNotFound(ReviewHarvestError):
    """No scrape job row exists for the given id."""


class AgentNotFound(ReviewHarvestError):
    """No recurring agent row exists for the given id."""
