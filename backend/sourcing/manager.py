"""
Sourcing Manager - owns the long-lived pipeline resources.

Builds the HTTP client, the optional headless browser, metrics, the export
client, the image resolver/cache, the detail cache and the listing store once,
and hands them to the components that need them. Created by the API lifespan
and by the batch CLI; close() releases the network resources.
"""

import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from .base import SearchOptions
from .config import SOURCES
from .crawlers import StaticCrawler, HeadlessRenderer
from .detail import DetailCache, DetailDispatcher
from .export import ExportDirectoryClient
from .image_cache import ImageCache
from .images import ImageResolver
from .metrics import MetricsCollector, SearchMetrics
from .search import ListingSearchOrchestrator
from .store import ListingStore

logger = logging.getLogger(__name__)


class SourcingManager:
    """
    Wires the pipeline together from settings.

    Usage:
        manager = SourcingManager.from_settings(settings, SessionLocal)
        listings = await manager.search('steel kadai', 40)
        await manager.close()
    """

    def __init__(
        self,
        crawler: StaticCrawler,
        renderer: Optional[HeadlessRenderer] = None,
        store: Optional[ListingStore] = None,
        collector: Optional[MetricsCollector] = None,
        source_key: str = 'indiamart',
        page_size: int = 18,
        max_pages: int = 30,
        sparse_threshold: int = 6,
        export_threshold: int = 4,
        export_enabled: bool = True,
        export_ttl: float = 120.0,
        enrich_workers: int = 4,
        render_settle: float = 1.2,
        detail_timeout: float = 3.5,
        detail_memory_ttl: float = 300,
        detail_freshness: float = 86400,
        image_cache_dir: Optional[str] = None,
        image_cache_url: str = '/cache',
        placeholder_image: str = '',
    ):
        source = SOURCES[source_key]
        self.crawler = crawler
        self.renderer = renderer
        self.store = store
        self.placeholder_image = placeholder_image

        self.collector = collector or MetricsCollector()
        self.metrics = SearchMetrics(self.collector)
        self.export_client = ExportDirectoryClient(crawler, source=source, ttl_seconds=export_ttl)
        self.image_resolver = ImageResolver(
            crawler,
            renderer=renderer,
            source=source,
            timeout=detail_timeout,
            settle=render_settle,
        )
        self.image_cache = ImageCache(crawler, image_cache_dir, url_prefix=image_cache_url) if image_cache_dir else None
        self.search_orchestrator = ListingSearchOrchestrator(
            crawler,
            renderer=renderer,
            export_client=self.export_client,
            image_resolver=self.image_resolver,
            image_cache=self.image_cache,
            metrics=self.metrics,
            source=source,
            page_size=page_size,
            max_pages=max_pages,
            sparse_threshold=sparse_threshold,
            export_threshold=export_threshold,
            export_enabled=export_enabled,
            enrich_workers=enrich_workers,
            render_settle=render_settle,
        )
        self.dispatcher = DetailDispatcher(crawler, timeout=detail_timeout)
        self.detail_cache = DetailCache(
            self.dispatcher,
            store=store,
            memory_ttl=detail_memory_ttl,
            freshness_seconds=detail_freshness,
        )

    @classmethod
    def from_settings(
        cls,
        settings,
        session_factory: Optional[Callable[[], Session]] = None,
        headless: Optional[bool] = None,
    ) -> 'SourcingManager':
        """
        Build a manager from application settings.

        Args:
            settings: api.config.Settings
            session_factory: SQLAlchemy session factory; None disables persistence
            headless: Override settings.headless_enabled

        Returns:
            SourcingManager
        """
        crawler = StaticCrawler(
            rate_limit=settings.scraper_rate_limit,
            timeout=settings.scraper_timeout,
            max_retries=settings.scraper_max_retries,
        )
        use_headless = settings.headless_enabled if headless is None else headless
        renderer = HeadlessRenderer(timeout=settings.scraper_timeout) if use_headless else None
        store = ListingStore(session_factory) if session_factory is not None else None

        return cls(
            crawler,
            renderer=renderer,
            store=store,
            collector=MetricsCollector(window=settings.metrics_window),
            page_size=settings.search_page_size,
            max_pages=settings.search_max_pages,
            sparse_threshold=settings.headless_sparse_threshold,
            export_threshold=settings.export_fallback_threshold,
            export_enabled=settings.export_fallback_enabled,
            export_ttl=settings.export_cache_ttl_seconds,
            enrich_workers=settings.image_enrich_workers,
            render_settle=settings.headless_settle_seconds,
            detail_timeout=settings.detail_fetch_timeout,
            detail_memory_ttl=settings.detail_memory_ttl_seconds,
            detail_freshness=settings.detail_freshness_seconds,
            image_cache_dir=settings.image_cache_dir,
            image_cache_url=settings.image_cache_url,
            placeholder_image=settings.placeholder_image,
        )

    @property
    def headless_available(self) -> bool:
        return self.renderer is not None

    async def search(self, term: str, target_count: int, options: Optional[SearchOptions] = None):
        return await self.search_orchestrator.search(term, target_count, options)

    async def close(self):
        """Close the browser and the HTTP client."""
        if self.renderer is not None:
            try:
                await self.renderer.close()
            except Exception as e:
                logger.warning(f"Error closing headless renderer: {e}")
        await self.crawler.close()
        logger.info("Sourcing resources released")
