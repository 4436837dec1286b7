"""
Detail-page fetch routed by host.

The dispatcher downloads a product page once and hands the HTML to the
extractor registered for the URL's marketplace.
"""

import logging
from typing import Dict, Optional

from ..config import source_for_url
from ..crawlers import StaticCrawler
from .models import ProductDetail
from .sites import EXTRACTORS

logger = logging.getLogger(__name__)

MIN_TIMEOUT = 0.8


class DetailDispatcher:
    """Fetch a detail page and run the matching site extractor."""

    def __init__(self, crawler: StaticCrawler, timeout: float = 3.5, extractors: Optional[Dict] = None):
        self.crawler = crawler
        self.timeout = max(MIN_TIMEOUT, timeout)
        self.extractors = extractors if extractors is not None else EXTRACTORS

    def extractor_for(self, url: str):
        key = source_for_url(url)
        if key is None:
            return None
        return self.extractors.get(key)

    async def fetch(self, url: str) -> Optional[ProductDetail]:
        """
        Fetch and parse one product page.

        Args:
            url: Detail page URL

        Returns:
            Normalized ProductDetail, or None for unknown hosts, empty
            responses, extractor failures and pages with no detail
        """
        extractor = self.extractor_for(url)
        if extractor is None:
            logger.debug(f"No detail extractor for {url}")
            return None

        html = await self.crawler.fetch_text_or_empty(url, timeout=self.timeout)
        if not html:
            return None

        try:
            detail = extractor.extract(html, url)
        except Exception as e:
            logger.warning(f"Detail extraction failed for {url}: {e}")
            return None

        if detail.is_empty():
            logger.debug(f"No detail found on {url}")
            return None
        return detail
