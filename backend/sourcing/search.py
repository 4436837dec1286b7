"""
Listing search orchestrator.

Runs a term through escalating acquisition tiers (static pages, a headless
render of page 1, the export directory) until enough listings turn up, then
optionally upgrades and mirrors images, filters low-signal rows and truncates
to the requested count.
"""

import asyncio
import math
import re
import time
import logging
from dataclasses import replace
from typing import List, Optional
from urllib.parse import quote_plus
from bs4 import BeautifulSoup
import httpx

from .base import ExternalListing, SearchOptions, SourceConfig, Colors
from .config import SOURCES, UA_POOL
from .crawlers import StaticCrawler, HeadlessRenderer
from .export import ExportDirectoryClient
from .images import ImageResolver
from .image_cache import ImageCache
from .metrics import SearchMetrics
from .quality import is_excluded_by_keywords
from .strategies import CardStrategy, DenseAnchorHarvest, default_chain, run_chain
from .utils import canonicalize_url

logger = logging.getLogger(__name__)

DETAIL_URL_RE = re.compile(r'/products/.*id=')
DETAIL_PATH_RE = re.compile(r'proddetail|product', re.IGNORECASE)
RENDER_WAIT_SELECTORS = ('.prod_box', '.prod-card', '.product-card', '.lst-product')


def passes_listing_filter(item: ExternalListing) -> bool:
    """
    Drop banned goods and listings with neither a usable title nor any signal.

    A listing without price/moq/store/image must at least point at a
    detail-like URL.
    """
    excluded, _ = is_excluded_by_keywords(item.title, item.description)
    if excluded:
        return False
    has_meta = item.has_meta()
    if len((item.title or '').strip()) < 4 and not has_meta:
        return False
    url_ok = bool(DETAIL_URL_RE.search(item.url or '') or DETAIL_PATH_RE.search(item.url or ''))
    if not has_meta and not url_ok:
        return False
    return True


def dedupe_by_url(items: List[ExternalListing], base_url: str) -> List[ExternalListing]:
    """Keep the first listing per canonical URL, in order."""
    seen = set()
    out = []
    for item in items:
        key = canonicalize_url(item.url, base_url)
        if key in seen:
            continue
        seen.add(key)
        out.append(item)
    return out


class ListingSearchOrchestrator:
    """
    Search one marketplace for listings matching a term.

    Usage:
        orchestrator = ListingSearchOrchestrator(crawler, metrics=SearchMetrics())
        listings = await orchestrator.search('steel kadai', 40, SearchOptions(upgrade_images=True))
    """

    def __init__(
        self,
        crawler: StaticCrawler,
        renderer: Optional[HeadlessRenderer] = None,
        export_client: Optional[ExportDirectoryClient] = None,
        image_resolver: Optional[ImageResolver] = None,
        image_cache: Optional[ImageCache] = None,
        metrics: Optional[SearchMetrics] = None,
        source: Optional[SourceConfig] = None,
        page_size: int = 18,
        max_pages: int = 30,
        sparse_threshold: int = 6,
        export_threshold: int = 4,
        export_enabled: bool = True,
        enrich_workers: int = 4,
        render_settle: float = 1.2,
    ):
        self.crawler = crawler
        self.renderer = renderer
        self.export_client = export_client
        self.image_resolver = image_resolver
        self.image_cache = image_cache
        self.metrics = metrics or SearchMetrics()
        self.source = source or SOURCES['indiamart']
        self.page_size = max(1, page_size)
        self.max_pages = max(1, max_pages)
        self.sparse_threshold = sparse_threshold
        self.export_threshold = export_threshold
        self.export_enabled = export_enabled
        self.enrich_workers = max(1, enrich_workers)
        self.render_settle = render_settle

        self.chain = default_chain(self.source.base_url)
        self.card_strategy = CardStrategy(self.source.base_url)
        self.dense_harvest = DenseAnchorHarvest(self.source.base_url)

    def search_url(self, term: str, page: int) -> str:
        return self.source.search_url.format(q=quote_plus(term), page=page)

    def page_count(self, limit: int) -> int:
        return min(self.max_pages, math.ceil(limit / self.page_size))

    async def search(self, term: str, target_count: int, options: Optional[SearchOptions] = None) -> List[ExternalListing]:
        """
        Find up to target_count listings for a term.

        Args:
            term: Search term
            target_count: Maximum number of listings to return
            options: Escalation and enrichment switches

        Returns:
            Filtered, de-duplicated listings in page then DOM order. Never raises.
        """
        options = options or SearchOptions()
        if target_count <= 0 or not (term or '').strip():
            return []

        started = time.monotonic()
        results: List[ExternalListing] = []
        try:
            results = await self._search(term.strip(), target_count, options)
        except Exception as e:
            logger.warning(f"Search failed for '{term}': {e}")
            results = []
        finally:
            duration_ms = (time.monotonic() - started) * 1000
            self.metrics.record_search(duration_ms, len(results))

        if options.debug:
            logger.info(f"{Colors.cyan('[search]')} '{term}' -> {len(results)} in {duration_ms:.0f}ms")
        return results

    async def _search(self, term: str, limit: int, options: SearchOptions) -> List[ExternalListing]:
        items: List[ExternalListing] = []
        if not options.force_headless:
            items = await self.fetch_static(term, limit, debug=options.debug)
        static_count = len(items)

        sparse_cutoff = min(self.sparse_threshold, limit)
        if (options.headless or options.force_headless) and (options.force_headless or static_count < sparse_cutoff):
            rendered = await self.fetch_headless(term, limit)
            promoted = len(rendered) > static_count
            if promoted:
                items = rendered
            self.metrics.record_escalation(promoted=promoted, sparse=static_count < sparse_cutoff)
            logger.debug(f"Headless considered for '{term}': static={static_count} headless={len(rendered)}")

        if self.export_enabled and self.export_client is not None and len(items) < min(self.export_threshold, limit):
            items = await self._merge_export(term, items)

        if options.upgrade_images and self.image_resolver is not None:
            await self.enrich_images(items)

        if options.cache_images and self.image_cache is not None:
            await self.cache_images(items)

        filtered = [it for it in items if passes_listing_filter(it)]
        if len(filtered) != len(items):
            logger.debug(f"Quality filter removed {len(items) - len(filtered)} for '{term}'")

        return dedupe_by_url(filtered, self.source.base_url)[:limit]

    async def fetch_static(self, term: str, limit: int, debug: bool = False) -> List[ExternalListing]:
        """
        Paginate the search endpoint and run the extraction chain per page.

        Stops at the page cap, after two consecutive empty pages, once limit
        is reached, or on the first transport failure. The last page may push
        the total past limit; search() truncates after filtering.
        """
        out: List[ExternalListing] = []
        empty_streak = 0
        pages = self.page_count(limit)

        for page in range(1, pages + 1):
            if len(out) >= limit:
                break
            url = self.search_url(term, page)
            headers = {
                'User-Agent': UA_POOL[page % len(UA_POOL)],
                'Cache-Control': 'no-cache',
                'Pragma': 'no-cache',
            }
            if self.source.referer:
                headers['Referer'] = self.source.referer
            try:
                html = await self.crawler.fetch(url, headers=headers, retries=1)
            except httpx.HTTPError as e:
                logger.debug(f"Static page {page} failed for '{term}': {e}")
                break

            soup = BeautifulSoup(html, 'html.parser')
            # Whole pages are kept so the quality filter has headroom before truncation
            batch = run_chain(self.chain, soup, max(limit - len(out), self.page_size), debug=debug)
            out.extend(batch)

            if page == 1 and len(out) < limit:
                dense = self.dense_harvest.harvest(soup, limit - len(out), seen_urls=[o.url for o in out])
                if dense:
                    logger.debug(f"Dense anchor harvest added {len(dense)} for '{term}'")
                out.extend(dense)

            if debug:
                logger.debug(f"Page {page} -> batch {len(batch)}, total {len(out)}")

            empty_streak = empty_streak + 1 if not batch else 0
            if empty_streak >= 2:
                logger.debug(f"Stopping '{term}' after consecutive empty pages")
                break

        return out

    async def fetch_headless(self, term: str, limit: int) -> List[ExternalListing]:
        """Render page 1 and parse cards; [] when no renderer or on failure."""
        if self.renderer is None:
            return []
        try:
            html = await self.renderer.render(
                self.search_url(term, 1),
                settle=self.render_settle,
                wait_selectors=RENDER_WAIT_SELECTORS,
            )
            if not html:
                return []
            return self.card_strategy.extract(BeautifulSoup(html, 'html.parser'), limit)
        except Exception as e:
            logger.debug(f"Headless search failed for '{term}': {e}")
            return []

    async def _merge_export(self, term: str, items: List[ExternalListing]) -> List[ExternalListing]:
        try:
            page = await self.export_client.fetch_category_page(term)
        except Exception as e:
            logger.debug(f"Export fallback failed for '{term}': {e}")
            return items

        seen = {canonicalize_url(i.url, self.source.base_url) for i in items}
        merged = list(items)
        for listing in page.listings:
            key = canonicalize_url(listing.url, self.source.base_url)
            if key in seen:
                continue
            seen.add(key)
            # Cached export listings stay unmodified
            merged.append(replace(listing))
        if len(merged) > len(items):
            logger.debug(f"Export fallback merged {len(merged) - len(items)} for '{term}'")
        return merged

    async def enrich_images(self, items: List[ExternalListing]):
        """Replace missing or seed images with the best detail-page image, in place."""
        next_index = 0

        async def worker():
            nonlocal next_index
            while next_index < len(items):
                i = next_index
                next_index += 1
                item = items[i]
                if item.has_real_image():
                    continue
                try:
                    best = await self.image_resolver.resolve_best_image(item.url)
                except Exception as e:
                    logger.debug(f"Image enrichment failed for {item.url}: {e}")
                    continue
                if best:
                    item.image = best

        workers = min(self.enrich_workers, len(items))
        if workers:
            await asyncio.gather(*(worker() for _ in range(workers)))

    async def cache_images(self, items: List[ExternalListing]):
        """Swap remote image URLs for local mirror paths where mirroring succeeds."""
        for item in items:
            if not item.image:
                continue
            try:
                local = await self.image_cache.mirror(item.image)
            except Exception as e:
                logger.debug(f"Image cache failed for {item.image}: {e}")
                continue
            if local:
                item.image = local
