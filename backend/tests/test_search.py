"""
Tests for the listing search orchestrator and extraction strategies.
"""

import httpx
import pytest
from bs4 import BeautifulSoup
from unittest.mock import AsyncMock, MagicMock

from sourcing.base import ExternalListing, Platform, SearchOptions
from sourcing.export import ExportDirectoryClient
from sourcing.metrics import SearchMetrics
from sourcing.search import ListingSearchOrchestrator, dedupe_by_url, passes_listing_filter
from sourcing.strategies import CardStrategy, LooseAnchorStrategy, ScriptJsonStrategy, default_chain, run_chain
from sourcing.utils import canonicalize_url

PAGE_1 = "https://dir.indiamart.com/search.mp?ss=steel+kadai&pg=1"
PAGE_2 = "https://dir.indiamart.com/search.mp?ss=steel+kadai&pg=2"
EXPORT_URL = "https://export.indiamart.com/search.php?ss=steel+kadai"


def card(i, title=None, query=""):
    title = title or f"Stainless Steel Kadai Model {i}"
    return (
        f'<div class="prod_box">'
        f'<img data-src="https://5.imimg.com/data5/kadai-{i}-250x250.jpg">'
        f'<a href="https://www.indiamart.com/proddetail/steel-kadai-{i}.html{query}">{title}</a>'
        f'<span class="price">₹ {400 + i}/Piece</span>'
        f'<span class="moq">Min Order: 10 Piece</span>'
        f'<div class="cmp-name">Shree Utensils {i}</div>'
        f'</div>'
    )


def results_page(cards):
    return f"<html><body><div class='results'>{''.join(cards)}</div></body></html>"


class TestStrategies:
    """Test the extraction chain."""

    def test_card_strategy_fields(self):
        """Test that cards yield every display field."""
        soup = BeautifulSoup(results_page([card(1, query="?pos=3")]), "html.parser")

        [item] = CardStrategy().extract(soup, 10)

        assert item.url == "https://www.indiamart.com/proddetail/steel-kadai-1.html"
        assert item.title == "Stainless Steel Kadai Model 1"
        assert item.price == "₹ 401/Piece"
        assert item.currency == "INR"
        assert item.moq == "MOQ 10"
        assert item.store_name == "Shree Utensils 1"
        assert item.image == "https://5.imimg.com/data5/kadai-1-250x250.jpg"

    def test_card_strategy_respects_limit(self):
        """Test that extraction stops at the limit."""
        soup = BeautifulSoup(results_page([card(i) for i in range(5)]), "html.parser")
        assert len(CardStrategy().extract(soup, 3)) == 3

    def test_loose_anchor_strategy(self):
        """Test that bare product anchors are picked up."""
        soup = BeautifulSoup(
            '<a href="/proddetail/brass-diya-7.html">Brass Diya</a><a href="/about">About us</a>',
            "html.parser",
        )
        [item] = LooseAnchorStrategy().extract(soup, 10)
        assert item.url == "https://dir.indiamart.com/proddetail/brass-diya-7.html"

    def test_script_json_strategy(self):
        """Test inline JSON fragments become listings."""
        soup = BeautifulSoup(
            '<script>window.__D = [{"title": "Copper Bottle", "url": "/proddetail/copper-1.html", "price": "Rs. 300"}];</script>',
            "html.parser",
        )
        [item] = ScriptJsonStrategy().extract(soup, 10)
        assert item.title == "Copper Bottle"
        assert item.currency == "INR"

    def test_script_json_relative_image(self):
        """Test that relative payload images are made absolute."""
        soup = BeautifulSoup(
            '<script>window.__D = [{"title": "Copper Bottle", "url": "/proddetail/copper-1.html",'
            ' "price": "Rs. 300", "image": "/data/copper-1.jpg"}];</script>',
            "html.parser",
        )
        [item] = ScriptJsonStrategy().extract(soup, 10)
        assert item.image == "https://dir.indiamart.com/data/copper-1.jpg"

    def test_run_chain_first_non_empty(self):
        """Test that cards win over loose anchors."""
        soup = BeautifulSoup(results_page([card(1)]) + '<a href="/proddetail/other-2.html">Other</a>', "html.parser")
        batch = run_chain(default_chain(), soup, 10)
        assert [i.title for i in batch] == ["Stainless Steel Kadai Model 1"]


class TestListingFilter:
    """Test the low-signal filter and URL de-duplication."""

    def test_banned_keyword(self):
        """Test that banned goods are dropped."""
        item = ExternalListing(platform=Platform.INDIAMART, title="Replica Watch", url="/proddetail/w.html", price="₹ 1")
        assert passes_listing_filter(item) is False

    def test_short_title_without_meta(self):
        """Test that a tiny title needs some signal."""
        item = ExternalListing(platform=Platform.INDIAMART, title="Pan", url="https://www.indiamart.com/proddetail/p.html")
        assert passes_listing_filter(item) is False

    def test_no_meta_requires_detail_url(self):
        """Test that meta-less listings must point at a detail page."""
        ok = ExternalListing(platform=Platform.INDIAMART, title="Steel Kadai", url="https://www.indiamart.com/proddetail/k.html")
        bad = ExternalListing(platform=Platform.INDIAMART, title="Steel Kadai", url="https://www.indiamart.com/seller/abc")
        assert passes_listing_filter(ok) is True
        assert passes_listing_filter(bad) is False

    def test_dedupe_by_url(self):
        """Test that tracking params do not defeat de-duplication."""
        items = [
            ExternalListing(platform=Platform.INDIAMART, title="A", url="https://www.indiamart.com/proddetail/k.html?pos=1"),
            ExternalListing(platform=Platform.INDIAMART, title="B", url="https://www.indiamart.com/proddetail/k.html?pos=2"),
        ]
        assert [i.title for i in dedupe_by_url(items, "https://dir.indiamart.com/")] == ["A"]


class TestListingSearchOrchestrator:
    """Test the escalating search."""

    @pytest.mark.asyncio
    async def test_filtered_page_still_fills_target(self, make_crawler):
        """Test that a page with filtered cards still returns target_count unique listings."""
        cards = [card(i) for i in range(12)] + [card(100 + i, title=f"Replica Steel Kadai {i}") for i in range(3)]
        crawler = make_crawler({PAGE_1: results_page(cards)})
        orchestrator = ListingSearchOrchestrator(crawler)

        results = await orchestrator.search("steel kadai", 10)

        assert len(results) == 10
        assert len({r.url for r in results}) == 10
        assert not any("Replica" in r.title for r in results)
        assert crawler.calls == [PAGE_1]

    @pytest.mark.asyncio
    async def test_results_capped_at_target(self, make_crawler):
        """Test that no more than target_count listings come back."""
        crawler = make_crawler({PAGE_1: results_page([card(i) for i in range(15)])})
        results = await ListingSearchOrchestrator(crawler).search("steel kadai", 5)
        assert len(results) == 5

    @pytest.mark.asyncio
    async def test_non_positive_target(self, make_crawler):
        """Test that target_count <= 0 returns nothing without fetching."""
        crawler = make_crawler()
        orchestrator = ListingSearchOrchestrator(crawler)

        assert await orchestrator.search("steel kadai", 0) == []
        assert await orchestrator.search("   ", 10) == []
        assert crawler.calls == []

    @pytest.mark.asyncio
    async def test_paginates_until_empty(self, make_crawler):
        """Test pagination stops after two empty pages."""
        crawler = make_crawler({PAGE_1: results_page([card(i) for i in range(2)])})
        orchestrator = ListingSearchOrchestrator(crawler, page_size=2, max_pages=10)

        results = await orchestrator.search("steel kadai", 20)

        assert len(results) == 2
        assert len(crawler.calls) == 3

    @pytest.mark.asyncio
    async def test_never_raises(self):
        """Test that unexpected failures become an empty result."""
        crawler = MagicMock()
        crawler.fetch = AsyncMock(side_effect=RuntimeError("boom"))
        metrics = SearchMetrics()

        results = await ListingSearchOrchestrator(crawler, metrics=metrics).search("steel kadai", 10)

        assert results == []
        assert metrics.snapshot()["total_searches"] == 1

    @pytest.mark.asyncio
    async def test_transport_error_stops_pagination(self):
        """Test that an HTTP error ends the static tier."""
        crawler = MagicMock()
        crawler.fetch = AsyncMock(side_effect=httpx.ConnectError("refused"))

        assert await ListingSearchOrchestrator(crawler).search("steel kadai", 40) == []
        assert crawler.fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_headless_escalation_when_sparse(self, make_crawler):
        """Test that a sparse static result is replaced by a richer render."""
        crawler = make_crawler({PAGE_1: results_page([card(i) for i in range(2)])})
        renderer = MagicMock()
        renderer.render = AsyncMock(return_value=results_page([card(i) for i in range(8)]))
        metrics = SearchMetrics()
        orchestrator = ListingSearchOrchestrator(crawler, renderer=renderer, metrics=metrics)

        results = await orchestrator.search("steel kadai", 20, SearchOptions(headless=True))

        assert len(results) == 8
        assert renderer.render.call_args.args[0] == PAGE_1
        snap = metrics.snapshot()
        assert snap["headless_promotions"] == 1
        assert snap["sparse_promotions"] == 1

    @pytest.mark.asyncio
    async def test_no_escalation_when_enough(self, make_crawler):
        """Test that the renderer is untouched when static results suffice."""
        crawler = make_crawler({PAGE_1: results_page([card(i) for i in range(10)])})
        renderer = MagicMock()
        renderer.render = AsyncMock(return_value="")
        orchestrator = ListingSearchOrchestrator(crawler, renderer=renderer)

        results = await orchestrator.search("steel kadai", 10, SearchOptions(headless=True))

        assert len(results) == 10
        renderer.render.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_headless_not_promoted_when_worse(self, make_crawler):
        """Test that a poorer render keeps the static batch."""
        crawler = make_crawler({PAGE_1: results_page([card(i) for i in range(3)])})
        renderer = MagicMock()
        renderer.render = AsyncMock(return_value=results_page([card(i) for i in range(1)]))
        metrics = SearchMetrics()
        orchestrator = ListingSearchOrchestrator(crawler, renderer=renderer, metrics=metrics)

        results = await orchestrator.search("steel kadai", 20, SearchOptions(headless=True))

        assert len(results) == 3
        assert metrics.snapshot()["headless_promotions"] == 0
        assert metrics.snapshot()["sparse_promotions"] == 1

    @pytest.mark.asyncio
    async def test_export_fallback_merges(self, make_crawler):
        """Test that the export directory tops up a near-empty result."""
        export_html = (
            '<a href="/products/?id=11&kwd=kadai">Steel Kadai Export Grade</a>'
            '<a href="/products/?id=12&kwd=kadai">Iron Kadai With Handle</a>'
        )
        crawler = make_crawler({PAGE_1: results_page([card(1)]), EXPORT_URL: export_html})
        orchestrator = ListingSearchOrchestrator(crawler, export_client=ExportDirectoryClient(crawler))

        results = await orchestrator.search("steel kadai", 10)

        assert [r.platform for r in results] == [Platform.INDIAMART, Platform.INDIAMART_EXPORT, Platform.INDIAMART_EXPORT]

    @pytest.mark.asyncio
    async def test_export_urls_are_canonical(self, make_crawler):
        """Test that export listings drop tracking parameters."""
        export_html = '<a href="/products/?id=11&pos=3&kwd=kadai&src=x">Steel Kadai Export Grade</a>'
        crawler = make_crawler({EXPORT_URL: export_html})
        orchestrator = ListingSearchOrchestrator(crawler, export_client=ExportDirectoryClient(crawler))

        [result] = await orchestrator.search("steel kadai", 10)

        assert result.url == "https://export.indiamart.com/products/?id=11&kwd=kadai"
        assert result.url == canonicalize_url(result.url)

    @pytest.mark.asyncio
    async def test_export_results_are_copies(self, make_crawler):
        """Test that mutating a result leaves the cached export page alone."""
        export_html = '<a href="/products/?id=11&kwd=kadai">Steel Kadai Export Grade</a>'
        crawler = make_crawler({EXPORT_URL: export_html})
        export_client = ExportDirectoryClient(crawler)
        orchestrator = ListingSearchOrchestrator(crawler, export_client=export_client)

        [first] = await orchestrator.search("steel kadai", 10)
        first.image = "/cache/abc.jpg"
        [second] = await orchestrator.search("steel kadai", 10)

        assert second.image == ""
        assert (await export_client.fetch_category_page("steel kadai")).listings[0].image == ""

    @pytest.mark.asyncio
    async def test_upgrade_images(self, make_crawler):
        """Test that listings without an image get one from the resolver."""
        html = results_page(['<div class="prod_box"><a href="/proddetail/kadai-1.html">Steel Kadai Heavy</a>'
                             '<span class="price">₹ 450</span></div>'])
        crawler = make_crawler({PAGE_1: html})
        resolver = MagicMock()
        resolver.resolve_best_image = AsyncMock(return_value="https://5.imimg.com/data5/big-1000x1000.jpg")
        orchestrator = ListingSearchOrchestrator(crawler, image_resolver=resolver)

        [item] = await orchestrator.search("steel kadai", 5, SearchOptions(upgrade_images=True))

        assert item.image == "https://5.imimg.com/data5/big-1000x1000.jpg"
        resolver.resolve_best_image.assert_awaited_once_with("https://dir.indiamart.com/proddetail/kadai-1.html")

    @pytest.mark.asyncio
    async def test_cache_images(self, make_crawler):
        """Test that mirrored images replace remote URLs."""
        crawler = make_crawler({PAGE_1: results_page([card(1)])})
        image_cache = MagicMock()
        image_cache.mirror = AsyncMock(return_value="/cache/abc.jpg")
        orchestrator = ListingSearchOrchestrator(crawler, image_cache=image_cache)

        [item] = await orchestrator.search("steel kadai", 5, SearchOptions(cache_images=True))

        assert item.image == "/cache/abc.jpg"

    def test_page_count(self, make_crawler):
        """Test the page cap."""
        orchestrator = ListingSearchOrchestrator(make_crawler(), page_size=18, max_pages=3)
        assert orchestrator.page_count(10) == 1
        assert orchestrator.page_count(40) == 3
        assert orchestrator.search_url("steel kadai", 2) == PAGE_2
