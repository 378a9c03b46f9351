"""
Review extraction pipeline.

Turns one rendered listing page into review records (extractor), estimates
how many pages the listing has (pagination) and persists results
idempotently (store).
"""

__version__ = "1.0.0"
