"""
Two-tier product-detail cache.

Tier 1 is an in-process memo keyed by canonical URL with a short TTL.
Tier 2 is the detail JSON persisted on the listing row, trusted for a longer
freshness window. A miss in both tiers triggers a live fetch through the
DetailDispatcher, whose result is written back to both tiers.
"""

import json
import time
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Optional, Tuple

from ..utils import canonicalize_url, is_placeholder
from .dispatcher import DetailDispatcher
from .models import ProductDetail

logger = logging.getLogger(__name__)


@dataclass
class ListingRef:
    """What the cache needs to know about a stored listing."""
    id: Optional[int]
    url: str = ''
    detail_json: Optional[str] = None
    detail_updated_at: Optional[datetime] = None
    # Raw listing fields for the degraded view
    title: str = ''
    price_raw: str = ''
    moq_raw: str = ''
    image: str = ''
    store_name: str = ''

    def stored_detail(self) -> Optional[ProductDetail]:
        """Rehydrate detail_json, or None when absent or unreadable."""
        if not self.detail_json:
            return None
        try:
            data = json.loads(self.detail_json)
        except (ValueError, TypeError) as e:
            logger.debug(f"Unreadable detail_json for listing {self.id}: {e}")
            return None
        detail = ProductDetail.from_dict(data)
        return None if detail.is_empty() else detail


def _timestamp(value: Optional[datetime]) -> Optional[float]:
    if value is None:
        return None
    # SQLite hands back naive datetimes; they are stored as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def build_fallback(ref: ListingRef, placeholder_image: str = '') -> ProductDetail:
    """
    Degraded detail built from the listing's raw fields.

    Args:
        ref: Listing reference
        placeholder_image: Image used when the listing has none

    Returns:
        ProductDetail tagged with source 'fallback'
    """
    image = ref.image if ref.image and not is_placeholder(ref.image) else placeholder_image
    detail = ProductDetail(
        title=ref.title,
        price_text=ref.price_raw,
        moq_text=ref.moq_raw,
        hero_image=image,
        gallery=[image] if image else [],
        source='fallback',
    ).normalized()
    detail.supplier.name = ref.store_name or ''
    return detail


class DetailCache:
    """
    Memo + persisted detail, with a live fetch on miss.

    Usage:
        cache = DetailCache(DetailDispatcher(crawler), store=ListingStore(SessionLocal))
        detail = await cache.get_cached(store.get_ref(listing_id))
    """

    def __init__(
        self,
        dispatcher: DetailDispatcher,
        store=None,
        memory_ttl: float = 300,
        freshness_seconds: float = 86400,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            dispatcher: Live fetcher used on a miss
            store: Object with save_detail(listing_id, detail, at); optional
            memory_ttl: Tier 1 time-to-live in seconds
            freshness_seconds: How long persisted detail is trusted
            clock: Returns the current epoch time in seconds
        """
        self.dispatcher = dispatcher
        self.store = store
        self.memory_ttl = memory_ttl
        self.freshness_seconds = freshness_seconds
        self.clock = clock
        self._memo: Dict[str, Tuple[ProductDetail, float]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def key_for(url: str) -> str:
        return canonicalize_url(url)

    def _memo_get(self, key: str) -> Optional[ProductDetail]:
        now = self.clock()
        with self._lock:
            entry = self._memo.get(key)
            if entry is None:
                return None
            value, fetched_at = entry
            if now - fetched_at >= self.memory_ttl:
                del self._memo[key]
                return None
            return value

    def _memo_put(self, key: str, value: ProductDetail, fetched_at: Optional[float] = None):
        with self._lock:
            self._memo[key] = (value, self.clock() if fetched_at is None else fetched_at)

    def evict(self, url: str):
        with self._lock:
            self._memo.pop(self.key_for(url), None)

    def clear(self):
        with self._lock:
            self._memo.clear()

    def _is_fresh(self, ref: ListingRef) -> bool:
        updated = _timestamp(ref.detail_updated_at)
        if updated is None:
            return False
        return self.clock() - updated < self.freshness_seconds

    def _persist(self, ref: ListingRef, detail: ProductDetail):
        if self.store is None or ref.id is None:
            return
        try:
            self.store.save_detail(ref.id, detail, datetime.fromtimestamp(self.clock(), tz=timezone.utc))
        except Exception as e:
            logger.warning(f"Failed to persist detail for listing {ref.id}: {e}")

    async def _fetch_live(self, ref: ListingRef, key: str) -> Optional[ProductDetail]:
        try:
            detail = await self.dispatcher.fetch(ref.url)
        except Exception as e:
            logger.warning(f"Detail fetch failed for {ref.url}: {e}")
            return None
        if detail is None:
            return None
        self._persist(ref, detail)
        self._memo_put(key, detail)
        return detail

    async def get_cached(self, ref: ListingRef) -> Optional[ProductDetail]:
        """
        Return detail for a listing, fetching only when both tiers miss.

        Args:
            ref: Listing reference

        Returns:
            ProductDetail or None. Never raises.
        """
        try:
            stored = ref.stored_detail()
            if not ref.url:
                return stored

            key = self.key_for(ref.url)
            hit = self._memo_get(key)
            if hit is not None:
                return hit

            if stored is not None and self._is_fresh(ref):
                self._memo_put(key, stored)
                return stored

            return await self._fetch_live(ref, key)
        except Exception as e:
            logger.warning(f"Detail cache lookup failed for listing {ref.id}: {e}")
            return None

    async def force_refresh(self, ref: ListingRef) -> Optional[ProductDetail]:
        """
        Drop the memo entry and fetch live, regardless of freshness.

        Args:
            ref: Listing reference

        Returns:
            Freshly fetched ProductDetail, or None when the fetch failed.
            Never raises.
        """
        if not ref.url:
            return None
        try:
            key = self.key_for(ref.url)
            self.evict(ref.url)
            return await self._fetch_live(ref, key)
        except Exception as e:
            logger.warning(f"Detail refresh failed for listing {ref.id}: {e}")
            return None
