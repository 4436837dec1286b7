"""
IndiaMART export-directory client.

The export directory (export.indiamart.com) serves a category-style page for
a search term. It is slower to change than the main search page and is used
as the last fallback when search results are very sparse.
"""

import re
import time
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import quote_plus
from bs4 import BeautifulSoup

from .base import ExternalListing, Platform, SourceConfig
from .config import SOURCES
from .crawlers import StaticCrawler
from .utils import canonicalize_url, norm_text, to_absolute

logger = logging.getLogger(__name__)

PRODUCT_HREF_RE = re.compile(r'products/?\?id=')
COUNT_LABEL_RE = re.compile(r'(.+?)\s*\((\d{1,6})\)$')
VIEW_LESS_RE = re.compile(r'view\s+less', re.IGNORECASE)


@dataclass
class ExportCategory:
    """A subcategory link on the export page."""
    label: str
    url: str
    count: Optional[int] = None


@dataclass
class ExportPage:
    """Parsed export-directory page."""
    subcategories: List[ExportCategory] = field(default_factory=list)
    listings: List[ExternalListing] = field(default_factory=list)


def parse_export_page(html: str, base_url: str) -> ExportPage:
    """
    Split an export page into subcategory links and product listings.

    Args:
        html: Page HTML
        base_url: Export host used to absolutize hrefs

    Returns:
        ExportPage; empty when nothing matched
    """
    soup = BeautifulSoup(html or '', 'html.parser')
    page = ExportPage()
    seen_labels = set()
    seen_urls = set()

    for anchor in soup.find_all('a'):
        href = anchor.get('href') or ''
        text = norm_text(anchor.get_text(' '))
        if not href or not text:
            continue

        if PRODUCT_HREF_RE.search(href):
            url = canonicalize_url(to_absolute(href, base_url), base_url)
            if url in seen_urls:
                continue
            seen_urls.add(url)
            page.listings.append(ExternalListing(platform=Platform.INDIAMART_EXPORT, title=text, url=url))
            continue

        label, count = text, None
        match = COUNT_LABEL_RE.match(text)
        if match:
            label, count = norm_text(match.group(1)), int(match.group(2))
        if VIEW_LESS_RE.search(label) or len(label) < 5:
            continue
        url = to_absolute(href, base_url)
        if url in seen_labels or label.lower() in seen_labels:
            continue
        seen_labels.update((url, label.lower()))
        page.subcategories.append(ExportCategory(label=label, url=url, count=count))

    return page


class ExportDirectoryClient:
    """Fetch export-directory pages with a short in-memory cache."""

    def __init__(
        self,
        crawler: StaticCrawler,
        source: Optional[SourceConfig] = None,
        ttl_seconds: float = 120.0,
        clock: Callable[[], float] = time.time,
    ):
        self.crawler = crawler
        self.source = source or SOURCES['indiamart']
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._cache: Dict[str, Tuple[float, ExportPage]] = {}

    def export_url(self, term: str) -> str:
        return self.source.export_url.format(q=quote_plus(term))

    def _evict_expired(self, now: float):
        for key in [k for k, (expires, _) in self._cache.items() if expires <= now]:
            del self._cache[key]

    async def fetch_category_page(self, term: str) -> ExportPage:
        """
        Export page for a term; cached per lower-cased term.

        Failures return an empty page and are not cached.
        """
        key = (term or '').strip().lower()
        if not key or not self.source.export_url:
            return ExportPage()

        now = self.clock()
        cached = self._cache.get(key)
        if cached and cached[0] > now:
            logger.debug(f"Export cache hit '{term}'")
            return cached[1]

        url = self.export_url(key)
        html = await self.crawler.fetch_text_or_empty(url)
        if not html:
            return ExportPage()

        try:
            page = parse_export_page(html, url)
        except Exception as e:
            logger.debug(f"Export page parse failed for '{term}': {e}")
            return ExportPage()

        logger.debug(f"Export '{term}': subs={len(page.subcategories)} listings={len(page.listings)}")
        self._evict_expired(now)
        self._cache[key] = (now + self.ttl_seconds, page)
        return page
