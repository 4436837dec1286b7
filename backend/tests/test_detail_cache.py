"""
Tests for the two-tier product-detail cache.
"""

import json
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

from sourcing.detail import DetailCache, ListingRef, ProductDetail, build_fallback

NOW = 1_700_000_000.0
URL = "https://www.alibaba.com/product-detail/earbuds_1600.html"
STORED = json.dumps({"title": "TWS Earbuds (stored)", "price_text": "US$ 3.20"})


def at(seconds_ago):
    return datetime.fromtimestamp(NOW - seconds_ago, tz=timezone.utc)


class Clock:
    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def dispatcher():
    d = MagicMock()
    d.fetch = AsyncMock(return_value=ProductDetail(title="TWS Earbuds (live)", price_text="US$ 3.10").normalized())
    return d


@pytest.fixture
def store():
    return MagicMock()


class TestGetCached:
    """Test lookups through both tiers."""

    @pytest.mark.asyncio
    async def test_fresh_stored_detail_skips_fetch(self, dispatcher, store, clock):
        """Test that detail saved within the freshness window is trusted."""
        cache = DetailCache(dispatcher, store=store, clock=clock)
        ref = ListingRef(id=1, url=URL, detail_json=STORED, detail_updated_at=at(3600))

        detail = await cache.get_cached(ref)

        assert detail.title == "TWS Earbuds (stored)"
        dispatcher.fetch.assert_not_awaited()
        store.save_detail.assert_not_called()

    @pytest.mark.asyncio
    async def test_naive_timestamp_treated_as_utc(self, dispatcher, clock):
        """Test that naive datetimes from SQLite are read as UTC."""
        cache = DetailCache(dispatcher, clock=clock)
        naive = at(3600).replace(tzinfo=None)
        ref = ListingRef(id=1, url=URL, detail_json=STORED, detail_updated_at=naive)

        await cache.get_cached(ref)

        dispatcher.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stale_stored_detail_fetches(self, dispatcher, store, clock):
        """Test that old detail triggers a live fetch that is persisted."""
        cache = DetailCache(dispatcher, store=store, clock=clock)
        ref = ListingRef(id=7, url=URL, detail_json=STORED, detail_updated_at=at(25 * 3600))

        detail = await cache.get_cached(ref)

        assert detail.title == "TWS Earbuds (live)"
        listing_id, saved, saved_at = store.save_detail.call_args.args
        assert listing_id == 7
        assert saved is detail
        assert saved_at == datetime.fromtimestamp(NOW, tz=timezone.utc)

    @pytest.mark.asyncio
    async def test_failed_fetch_after_stale_gives_none(self, dispatcher, store, clock):
        """Test that a failed fetch past the freshness window yields no detail."""
        dispatcher.fetch.return_value = None
        cache = DetailCache(dispatcher, store=store, clock=clock)
        ref = ListingRef(id=7, url=URL, detail_json=STORED, detail_updated_at=at(25 * 3600))

        assert await cache.get_cached(ref) is None
        store.save_detail.assert_not_called()

    @pytest.mark.asyncio
    async def test_dispatcher_error_never_raises(self, dispatcher, clock):
        """Test that fetch exceptions are swallowed."""
        dispatcher.fetch.side_effect = RuntimeError("network down")
        cache = DetailCache(dispatcher, clock=clock)

        assert await cache.get_cached(ListingRef(id=1, url=URL)) is None

    @pytest.mark.asyncio
    async def test_memo_ttl(self, dispatcher, clock):
        """Test that the memo serves repeats until the TTL elapses."""
        cache = DetailCache(dispatcher, memory_ttl=300, clock=clock)
        ref = ListingRef(id=1, url=URL)

        await cache.get_cached(ref)
        clock.now += 299
        await cache.get_cached(ref)
        assert dispatcher.fetch.await_count == 1

        clock.now += 1
        await cache.get_cached(ref)
        assert dispatcher.fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_memo_keyed_by_canonical_url(self, dispatcher, clock):
        """Test that tracking params share one memo entry."""
        cache = DetailCache(dispatcher, clock=clock)
        base = "https://www.indiamart.com/proddetail/steel-kadai-2245.html"

        await cache.get_cached(ListingRef(id=1, url=base + "?pos=1"))
        await cache.get_cached(ListingRef(id=1, url=base + "?pos=9"))

        assert dispatcher.fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_store_failure_swallowed(self, dispatcher, store, clock):
        """Test that a persistence error still returns the fetched detail."""
        store.save_detail.side_effect = RuntimeError("database is locked")
        cache = DetailCache(dispatcher, store=store, clock=clock)

        detail = await cache.get_cached(ListingRef(id=1, url=URL))

        assert detail.title == "TWS Earbuds (live)"

    @pytest.mark.asyncio
    async def test_no_url_returns_stored(self, dispatcher, clock):
        """Test that a listing without URL only uses tier 2."""
        cache = DetailCache(dispatcher, clock=clock)
        ref = ListingRef(id=1, url="", detail_json=STORED, detail_updated_at=at(99 * 3600))

        assert (await cache.get_cached(ref)).title == "TWS Earbuds (stored)"
        dispatcher.fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreadable_json_ignored(self, dispatcher, clock):
        """Test that corrupt detail_json counts as missing."""
        cache = DetailCache(dispatcher, clock=clock)
        ref = ListingRef(id=1, url=URL, detail_json="{not json", detail_updated_at=at(60))

        assert (await cache.get_cached(ref)).title == "TWS Earbuds (live)"


class TestForceRefresh:
    """Test explicit refreshes."""

    @pytest.mark.asyncio
    async def test_refresh_fetches_and_persists(self, dispatcher, store, clock):
        """Test that a two-hour-old detail is refetched and saved."""
        cache = DetailCache(dispatcher, store=store, clock=clock)
        ref = ListingRef(id=3, url=URL, detail_json=STORED, detail_updated_at=at(2 * 3600))

        detail = await cache.force_refresh(ref)

        assert detail.title == "TWS Earbuds (live)"
        dispatcher.fetch.assert_awaited_once_with(URL)
        store.save_detail.assert_called_once()

    @pytest.mark.asyncio
    async def test_refresh_then_get_uses_memo(self, dispatcher, store, clock):
        """Test that a refresh primes the memo."""
        cache = DetailCache(dispatcher, store=store, clock=clock)
        ref = ListingRef(id=3, url=URL)

        await cache.force_refresh(ref)
        detail = await cache.get_cached(ref)

        assert detail.title == "TWS Earbuds (live)"
        assert dispatcher.fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_refresh_bypasses_memo(self, dispatcher, clock):
        """Test that a memo hit does not prevent a refresh."""
        cache = DetailCache(dispatcher, clock=clock)
        ref = ListingRef(id=3, url=URL)

        await cache.get_cached(ref)
        await cache.force_refresh(ref)

        assert dispatcher.fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_refresh_failure(self, dispatcher, store, clock):
        """Test that a failed refresh returns None and saves nothing."""
        dispatcher.fetch.return_value = None
        cache = DetailCache(dispatcher, store=store, clock=clock)

        assert await cache.force_refresh(ListingRef(id=3, url=URL)) is None
        store.save_detail.assert_not_called()
        assert await cache.force_refresh(ListingRef(id=3, url="")) is None


class TestBuildFallback:
    """Test the degraded detail view."""

    def test_uses_listing_fields(self):
        """Test that raw listing fields fill the fallback."""
        ref = ListingRef(
            id=1, url=URL, title="Steel Kadai", price_raw="₹ 450", moq_raw="50 Piece",
            image="https://5.imimg.com/k.jpg", store_name="Shree Utensils",
        )
        detail = build_fallback(ref, "/static/placeholder.png")

        assert detail.source == "fallback"
        assert detail.hero_image == "https://5.imimg.com/k.jpg"
        assert detail.gallery == ["https://5.imimg.com/k.jpg"]
        assert detail.supplier.name == "Shree Utensils"
        assert detail.price_tiers[0].range == "≥ 50"

    def test_placeholder_image(self):
        """Test that a missing image uses the placeholder."""
        detail = build_fallback(ListingRef(id=1, title="Steel Kadai"), "/static/placeholder.png")
        assert detail.hero_image == "/static/placeholder.png"
