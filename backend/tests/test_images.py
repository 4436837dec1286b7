"""
Tests for detail-page image resolution.
"""

import re
import pytest
from unittest.mock import AsyncMock, MagicMock

from sourcing.images import (
    BAD_IMAGE_HASHES,
    ImageResolver,
    collect_candidates,
    is_blocked,
    pick_best,
    rank_candidates,
    score_image_url,
)

IMIMG = [re.compile(r'(^|\.)imimg\.com$', re.IGNORECASE)]
DETAIL_URL = "https://www.indiamart.com/proddetail/steel-kadai-2245.html"

DETAIL_HTML = """
<html><head>
  <meta property="og:image" content="https://5.imimg.com/data5/kadai-1000x1000.jpg">
</head><body>
  <img id="prdimgdiv" src="https://5.imimg.com/data5/kadai-220x220.jpg">
  <img class="x" src="https://5.imimg.com/sprite/icon-sprite.png">
  <div class="prd_img"><img src="https://cdn.example.com/kadai-1000x1000.jpg"></div>
</body></html>
"""


class TestScoring:
    """Test URL scoring and filtering."""

    def test_larger_scores_higher(self):
        """Test that advertised size dominates."""
        assert score_image_url("https://5.imimg.com/a-1000x1000.jpg") > score_image_url("https://5.imimg.com/a-500x500.jpg")

    def test_thumbnail_penalty(self):
        """Test that thumbnails rank below plain images."""
        assert score_image_url("https://5.imimg.com/thumb/a.jpg") < score_image_url("https://5.imimg.com/a.jpg")

    @pytest.mark.parametrize("url", [
        "",
        "https://5.imimg.com/flags/countrySvg.png",
        "https://5.imimg.com/a.svg",
        "https://5.imimg.com/site-logo.jpg",
        "https://cdn.example.com/a.jpg",
    ])
    def test_blocked(self, url):
        """Test decorative and off-CDN URLs are blocked."""
        assert is_blocked(url, IMIMG) is True

    def test_not_blocked(self):
        """Test a product image on the CDN passes."""
        assert is_blocked("https://5.imimg.com/data5/kadai.jpg", IMIMG) is False

    def test_rank_candidates(self):
        """Test ranking drops blocked URLs and sorts by score."""
        ranked = rank_candidates([
            "https://5.imimg.com/a-250x250.jpg",
            "https://5.imimg.com/logo.png",
            "https://5.imimg.com/a-1000x1000.jpg",
        ], IMIMG)
        assert ranked == ["https://5.imimg.com/a-1000x1000.jpg", "https://5.imimg.com/a-250x250.jpg"]

    def test_pick_best_skips_bad_hash(self):
        """Test that blacklisted content hashes are skipped."""
        bad = next(iter(BAD_IMAGE_HASHES))
        ranked = [f"https://5.imimg.com/data5/{bad}/a.jpg", "https://5.imimg.com/data5/b.jpg"]
        assert pick_best(ranked) == "https://5.imimg.com/data5/b.jpg"
        assert pick_best(ranked[:1]) is None


class TestCollectCandidates:
    """Test candidate gathering."""

    def test_collects_in_trust_order(self):
        """Test main image first, then product images, then meta."""
        found = collect_candidates(DETAIL_HTML, DETAIL_URL)

        assert found[0] == "https://5.imimg.com/data5/kadai-220x220.jpg"
        assert "https://5.imimg.com/data5/kadai-1000x1000.jpg" in found

    def test_json_ld_and_inline_script(self):
        """Test structured data and inline payloads are read."""
        html = (
            '<script type="application/ld+json">{"image": [{"url": "https://5.imimg.com/ld.jpg"}]}</script>'
            '<script>var p = {"zoomImg":"https:\\/\\/5.imimg.com\\/zoom\\/z.jpg"};</script>'
        )
        found = collect_candidates(html, DETAIL_URL)
        assert found == ["https://5.imimg.com/ld.jpg", "https://5.imimg.com/zoom/z.jpg"]


class TestImageResolver:
    """Test end-to-end image resolution."""

    @pytest.mark.asyncio
    async def test_prefers_large_image(self, make_crawler):
        """Test that the 1000x1000 image beats the thumbnail and sprite."""
        resolver = ImageResolver(make_crawler({DETAIL_URL: DETAIL_HTML}))

        best = await resolver.resolve_best_image(DETAIL_URL)

        assert best == "https://5.imimg.com/data5/kadai-1000x1000.jpg"

    @pytest.mark.asyncio
    async def test_empty_page_without_renderer(self, make_crawler):
        """Test that an empty page yields no image."""
        resolver = ImageResolver(make_crawler())
        assert await resolver.resolve_best_image(DETAIL_URL) is None

    @pytest.mark.asyncio
    async def test_renderer_fallback(self, make_crawler):
        """Test that a rendered page is used when static HTML has nothing."""
        renderer = MagicMock()
        renderer.render = AsyncMock(return_value='<img src="https://5.imimg.com/data5/r-500x500.jpg">')
        resolver = ImageResolver(make_crawler(), renderer=renderer)

        assert await resolver.resolve_best_image(DETAIL_URL) == "https://5.imimg.com/data5/r-500x500.jpg"
        renderer.render.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fetch_error_returns_empty(self):
        """Test that transport errors are swallowed."""
        crawler = MagicMock()
        crawler.fetch_text_or_empty = AsyncMock(side_effect=RuntimeError("boom"))
        resolver = ImageResolver(crawler)

        assert await resolver.resolve_image_candidates(DETAIL_URL) == []
