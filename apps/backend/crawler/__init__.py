"""
Review crawler - resumable, batch-at-a-time crawling of review listings.
"""

from .review_crawler import ReviewCrawler, CrawlResult

__all__ = ['ReviewCrawler', 'CrawlResult']
