"""
Review extraction from one rendered listing page.

Each review is rendered as a block carrying a unique id ("review-<digits>").
Inside a block, every field is located independently so that a markup change
to one field never costs the others:

1. Star rating from the "N out of 5 stars" aria label (required)
2. Review date from the tertiary caption text
3. Content from the truncated-copy paragraphs
4. Reviewer name from the heading span title
5. Location / usage time from the plain metadata lines

A block without a 1-5 rating is not a genuine review and is dropped.
"""

import re
import hashlib
import logging
from typing import Dict, List, Optional

from bs4 import BeautifulSoup, Tag

from core.errors import ParseError

logger = logging.getLogger(__name__)

REVIEW_ID_PATTERN = re.compile(r'^review-\d+$')
RATING_PATTERN = re.compile(r'(\d+)\s+out\s+of\s+5\s+stars', re.IGNORECASE)
DATE_PATTERN = re.compile(r'^(?:[A-Z][a-z]+\s+\d{1,2},\s+\d{4}|\d{4}-\d{2}-\d{2})$')
USAGE_KEYWORDS = ('using the app', 'using app')

HASH_PREFIX_LENGTH = 32  # 16 bytes of SHA-256, hex encoded


def normalize_for_hash(value: Optional[str]) -> str:
    """Lower-case and collapse whitespace so re-rendered pages hash identically."""
    if not value:
        return ''
    return re.sub(r'\s+', ' ', value.lower()).strip()


def review_signature(reviewer_name: Optional[str], review_date: Optional[str],
                     star_rating: int, review_content: Optional[str]) -> str:
    return '|'.join([
        normalize_for_hash(reviewer_name),
        normalize_for_hash(review_date),
        str(star_rating),
        normalize_for_hash(review_content),
    ])


def compute_review_hash(reviewer_name: Optional[str], review_date: Optional[str],
                        star_rating: int, review_content: Optional[str]) -> str:
    signature = review_signature(reviewer_name, review_date, star_rating, review_content)
    return hashlib.sha256(signature.encode('utf-8')).hexdigest()[:HASH_PREFIX_LENGTH]


def _clean_text(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    cleaned = re.sub(r'\s+', ' ', text).strip()
    return cleaned or None


def _has_class(el: Tag, name: str) -> bool:
    return name in (el.get('class') or [])


class ParsedReview:
    """One review extracted from a listing page."""

    def __init__(self, star_rating: int, reviewer_name: Optional[str] = None,
                 location: Optional[str] = None, usage_time: Optional[str] = None,
                 review_content: Optional[str] = None, review_date: Optional[str] = None):
        self.star_rating = star_rating
        self.reviewer_name = reviewer_name
        self.location = location
        self.usage_time = usage_time
        self.review_content = review_content
        self.review_date = review_date
        self.review_hash = compute_review_hash(reviewer_name, review_date, star_rating, review_content)

    @property
    def signature(self) -> str:
        return review_signature(self.reviewer_name, self.review_date, self.star_rating, self.review_content)

    def to_dict(self) -> Dict:
        return {
            "reviewer_name": self.reviewer_name,
            "location": self.location,
            "usage_time": self.usage_time,
            "star_rating": self.star_rating,
            "review_content": self.review_content,
            "review_date": self.review_date,
            "review_hash": self.review_hash,
        }

    def __repr__(self) -> str:
        return f"ParsedReview(rating={self.star_rating}, name={self.reviewer_name!r}, hash={self.review_hash})"


class ReviewExtractor:
    """Parses review blocks out of rendered listing HTML. Never raises on bad input."""

    def extract(self, html: Optional[str]) -> List[ParsedReview]:
        if not html or not html.strip():
            return []

        try:
            soup = BeautifulSoup(html, 'html.parser')
        except Exception as e:
            logger.error(f"[extractor] Could not parse page markup: {e}")
            return []

        blocks = soup.find_all(id=REVIEW_ID_PATTERN)
        reviews = []
        for block in blocks:
            try:
                review = self.parse_block(block)
            except ParseError as e:
                logger.warning(f"[extractor] Skipping block: {e}")
                continue
            if review is not None:
                reviews.append(review)

        # A page can render the same review twice
        seen = set()
        unique = []
        for review in reviews:
            if review.signature in seen:
                continue
            seen.add(review.signature)
            unique.append(review)

        if len(unique) < len(blocks):
            logger.debug(f"[extractor] {len(blocks)} blocks -> {len(unique)} reviews")
        return unique

    def parse_block(self, block: Tag) -> Optional[ParsedReview]:
        """
        Parse one review block. Returns None for blocks without a valid rating.

        Raises:
            ParseError: the block's markup could not be read
        """
        try:
            star_rating = self._extract_rating(block)
            if star_rating is None:
                return None

            location, usage_time = self._extract_metadata(block)
            return ParsedReview(
                star_rating=star_rating,
                reviewer_name=self._extract_reviewer_name(block),
                location=location,
                usage_time=usage_time,
                review_content=self._extract_content(block),
                review_date=self._extract_date(block),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ParseError(f"Malformed review block {block.get('id')}: {e}") from e

    def _own(self, block: Tag, elements) -> List[Tag]:
        """
        Keep only elements that belong to this block.

        Unclosed markup can nest the next review or the pagination nav inside
        the current block; their contents are not ours.
        """
        owned = []
        for el in elements:
            parent = el.parent
            belongs = True
            while parent is not None and parent is not block:
                if parent.name == 'nav' or REVIEW_ID_PATTERN.match(str(parent.get('id', ''))):
                    belongs = False
                    break
                parent = parent.parent
            if belongs and el.name != 'nav' and not REVIEW_ID_PATTERN.match(str(el.get('id', ''))):
                owned.append(el)
        return owned

    def _extract_rating(self, block: Tag) -> Optional[int]:
        for el in self._own(block, block.find_all(attrs={'aria-label': RATING_PATTERN})):
            match = RATING_PATTERN.search(el.get('aria-label', ''))
            if match:
                rating = int(match.group(1))
                if 1 <= rating <= 5:
                    return rating
        return None

    def _extract_date(self, block: Tag) -> Optional[str]:
        candidates = self._own(block, block.find_all(['div', 'span', 'time', 'p']))
        # The caption style is the reliable marker, any date-shaped line is the fallback
        captioned = [el for el in candidates if _has_class(el, 'tw-text-fg-tertiary')]
        for group in (captioned, candidates):
            for el in group:
                text = _clean_text(el.get_text(' '))
                if text and DATE_PATTERN.match(text):
                    return text
        return None

    def _extract_content(self, block: Tag) -> Optional[str]:
        containers = self._own(block, block.find_all(attrs={'data-truncate-content-copy': True}))
        scope = containers[0] if containers else block

        paragraphs = [p for p in self._own(block, scope.find_all('p')) if _has_class(p, 'tw-break-words')]
        if not paragraphs and containers:
            paragraphs = self._own(block, scope.find_all('p'))

        parts = [_clean_text(p.get_text(' ')) for p in paragraphs]
        parts = [part for part in parts if part]
        return ' '.join(parts) if parts else None

    def _extract_reviewer_name(self, block: Tag) -> Optional[str]:
        for heading in self._own(block, block.find_all(class_='tw-text-heading-xs')):
            titled = heading.find('span', attrs={'title': True})
            if titled:
                return _clean_text(titled['title'])
            text = _clean_text(heading.get_text(' '))
            if text:
                return text
        return None

    def _extract_metadata(self, block: Tag):
        location = None
        usage_time = None

        sections = [el for el in self._own(block, block.find_all('div')) if _has_class(el, 'tw-order-1')]
        if not sections:
            return location, usage_time

        for div in self._own(block, sections[0].find_all('div')):
            # Metadata lines are bare <div>text</div>
            if div.attrs or div.find(True) is not None:
                continue
            text = _clean_text(div.get_text())
            if not text:
                continue
            is_usage = any(keyword in text.lower() for keyword in USAGE_KEYWORDS)
            if is_usage and usage_time is None:
                usage_time = text
            elif not is_usage and location is None:
                location = text

        return location, usage_time
