"""
Page-count estimation for a paginated reviews listing.

No single signal survives every markup variant, so the estimate is a cascade
of heuristics composed with max(): a later heuristic can only raise the count,
never lower it, and the order only decides which signal gets logged first.

1. Structured rating count in page metadata -> ceil(count / REVIEWS_PER_PAGE)
2. Visible "Reviews (N)" text, only when N exceeds one page
3. Highest page=N query parameter anywhere in the document
4. Highest page number inside the pagination region
5. "Page X of Y" / "Y pages total" phrasing
6. A "next" affordance on what still looks like a single page -> 2
"""

import re
import json
import math
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

REVIEWS_PER_PAGE = 10
MAX_NAV_PAGE = 10000

RATING_COUNT_PATTERN = re.compile(r'"ratingCount"\s*:\s*"?(\d+)')

# Reviews and the count are often split across tags
REVIEW_COUNT_PATTERNS = [
    re.compile(r'Reviews\s*\((\d+)\)', re.IGNORECASE),
    re.compile(r'Reviews<[^>]*>\s*<[^>]*>\s*\((\d+)\)', re.IGNORECASE),
    re.compile(r'Reviews</[^>]+>\s*<[^>]+>\(?(\d+)\)?', re.IGNORECASE),
    re.compile(r'>\s*(\d+)\s*reviews?\s*<', re.IGNORECASE),
    re.compile(r'"reviewCount"\s*:\s*"?(\d+)', re.IGNORECASE),
    re.compile(r'(\d{3,})\s+reviews', re.IGNORECASE),
]

PAGE_PARAM_PATTERN = re.compile(r'(?:[?&]|&amp;)page=(\d+)', re.IGNORECASE)

PAGINATION_SELECTORS = [
    'nav[aria-label*="pag" i]',
    'nav[class*="pagination"]',
    'div[class*="pagination"]',
    'ul[class*="pagination"]',
]

PAGE_OF_PATTERNS = [
    re.compile(r'page\s+\d+\s+of\s+(\d+)', re.IGNORECASE),
    re.compile(r'(\d+)\s+pages?\s+total', re.IGNORECASE),
]


class PaginationInfo:
    """Current page and total page count of a listing page."""

    def __init__(self, current_page: int = 1, total_pages: int = 1):
        self.current_page = current_page
        self.total_pages = total_pages

    def to_dict(self) -> Dict[str, int]:
        return {"current_page": self.current_page, "total_pages": self.total_pages}

    def __repr__(self) -> str:
        return f"PaginationInfo(current_page={self.current_page}, total_pages={self.total_pages})"


def _pages_for(count: int) -> int:
    return math.ceil(count / REVIEWS_PER_PAGE)


def _flatten_jsonld(data: Any) -> List[Dict]:
    items = []
    if isinstance(data, dict):
        items.append(data)
        if isinstance(data.get('@graph'), list):
            items.extend(item for item in data['@graph'] if isinstance(item, dict))
    elif isinstance(data, list):
        items.extend(item for item in data if isinstance(item, dict))
    return items


class PaginationEstimator:
    """Infers total pages and the current page from rendered listing HTML"""

    def estimate(self, html: Optional[str]) -> PaginationInfo:
        """Always returns total_pages >= 1."""
        if not html:
            return PaginationInfo()

        try:
            soup = BeautifulSoup(html, 'html.parser')
        except Exception as e:
            logger.error(f"[pagination] Could not parse page markup: {e}")
            soup = None

        total_pages = 1
        for source, pages in self.candidates(html, soup):
            if pages is not None and pages > total_pages:
                logger.info(f"[pagination] [{source}] raised total pages {total_pages} -> {pages}")
                total_pages = pages

        if total_pages == 1 and self._has_next_link(html, soup):
            logger.info("[pagination] [next-link] found next affordance, assuming 2 pages")
            total_pages = 2

        current_page = self._current_page(soup) or 1
        total_pages = max(total_pages, current_page)

        logger.info(f"[pagination] current_page={current_page}, total_pages={total_pages}")
        return PaginationInfo(current_page=current_page, total_pages=total_pages)

    def candidates(self, html: str, soup: Optional[BeautifulSoup]) -> Iterable[Tuple[str, Optional[int]]]:
        """Yield (heuristic, page_count) for every heuristic, in priority order."""
        yield 'rating-count', self._from_rating_count(html, soup)
        yield 'review-count', self._from_review_count_text(html)
        yield 'page-param', self._from_page_params(html)
        yield 'pagination-nav', self._from_pagination_nav(soup)
        yield 'page-of', self._from_page_of_text(html, soup)

    def _from_rating_count(self, html: str, soup: Optional[BeautifulSoup]) -> Optional[int]:
        counts = []
        if soup is not None:
            for script in soup.find_all('script', type='application/ld+json'):
                try:
                    data = json.loads(script.string or '')
                except (json.JSONDecodeError, TypeError):
                    continue
                for item in _flatten_jsonld(data):
                    rating = item.get('aggregateRating')
                    if isinstance(rating, dict) and rating.get('ratingCount') is not None:
                        try:
                            counts.append(int(rating['ratingCount']))
                        except (TypeError, ValueError):
                            continue

        if not counts:
            match = RATING_COUNT_PATTERN.search(html)
            if match:
                counts.append(int(match.group(1)))

        count = max(counts) if counts else 0
        return _pages_for(count) if count > 0 else None

    def _from_review_count_text(self, html: str) -> Optional[int]:
        for pattern in REVIEW_COUNT_PATTERNS:
            match = pattern.search(html)
            if match:
                count = int(match.group(1))
                # Fewer than one page worth says nothing about pagination
                if count > REVIEWS_PER_PAGE:
                    return _pages_for(count)
        return None

    def _from_page_params(self, html: str) -> Optional[int]:
        pages = [int(m.group(1)) for m in PAGE_PARAM_PATTERN.finditer(html)]
        return max(pages) if pages else None

    def _from_pagination_nav(self, soup: Optional[BeautifulSoup]) -> Optional[int]:
        if soup is None:
            return None

        for selector in PAGINATION_SELECTORS:
            try:
                nav = soup.select_one(selector)
            except Exception as e:
                logger.debug(f"[pagination] Selector {selector} failed: {e}")
                continue
            if nav is None:
                continue

            pages = []
            for text in nav.find_all(string=True):
                token = text.strip()
                if token.isdecimal():
                    pages.append(int(token))
            for link in nav.find_all(href=True):
                match = PAGE_PARAM_PATTERN.search(link['href'])
                if match:
                    pages.append(int(match.group(1)))

            pages = [p for p in pages if 0 < p < MAX_NAV_PAGE]
            # First pagination region wins
            return max(pages) if pages else None
        return None

    def _from_page_of_text(self, html: str, soup: Optional[BeautifulSoup]) -> Optional[int]:
        text = soup.get_text(' ') if soup is not None else html
        best = None
        for pattern in PAGE_OF_PATTERNS:
            match = pattern.search(text)
            if match:
                pages = int(match.group(1))
                best = pages if best is None else max(best, pages)
        return best

    def _has_next_link(self, html: str, soup: Optional[BeautifulSoup]) -> bool:
        if 'page=2' in html:
            return True
        if soup is None:
            return 'rel="next"' in html or '>Next<' in html
        if soup.find(rel='next') is not None:
            return True
        if soup.find(attrs={'aria-label': re.compile(r'^next', re.IGNORECASE)}) is not None:
            return True
        return soup.find(['a', 'button'], string=re.compile(r'^\s*Next\s*$')) is not None

    def _current_page(self, soup: Optional[BeautifulSoup]) -> Optional[int]:
        if soup is None:
            return None

        markers = soup.find_all(attrs={'aria-current': 'page'})
        markers += [el for el in soup.find_all(class_=re.compile(r'active')) if el not in markers]
        for el in markers:
            token = el.get_text(strip=True)
            if token.isdecimal() and 0 < int(token) < MAX_NAV_PAGE:
                return int(token)
        return None
