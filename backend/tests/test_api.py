"""
Tests for API endpoints.
"""

import pytest
from fastapi import status

from sourcing.base import ExternalListing, Platform
from sourcing.detail import ProductDetail


class TestRootEndpoint:
    """Test the root endpoint."""

    def test_root_returns_json(self, client):
        """Test that root endpoint returns expected JSON."""
        response = client.get("/")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["message"] == "Pool Sourcing API"
        assert "version" in data


class TestExternalSearchEndpoint:
    """Test the live search endpoint."""

    def test_search_returns_listings(self, client, fake_manager, sample_external_listing):
        """Test that search results are serialized."""
        fake_manager.search.return_value = [sample_external_listing]

        response = client.get("/api/external/search?q=steel%20kadai&limit=5")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert len(data) == 1
        assert data[0]["platform"] == "INDIAMART"
        assert data[0]["url"] == sample_external_listing.url

    def test_search_passes_options(self, client, fake_manager):
        """Test that query flags reach the orchestrator."""
        client.get("/api/external/search?q=earbuds&limit=7&upgrade_images=true&cache_images=true")

        term, limit, options = fake_manager.search.call_args.args
        assert term == "earbuds"
        assert limit == 7
        assert options.upgrade_images is True
        assert options.cache_images is True

    def test_search_headless_requires_renderer(self, client, fake_manager):
        """Test that headless is ignored when no renderer is configured."""
        client.get("/api/external/search?q=earbuds&headless=true")

        options = fake_manager.search.call_args.args[2]
        assert options.headless is False

    def test_search_requires_term(self, client):
        """Test that q is mandatory."""
        response = client.get("/api/external/search")
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    def test_search_limit_bounds(self, client):
        """Test that limit is validated."""
        response = client.get("/api/external/search?q=x&limit=0")
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestListingsEndpoint:
    """Test the stored listings endpoints."""

    def test_get_listings_empty(self, client):
        """Test getting listings when database is empty."""
        response = client.get("/api/listings")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == []

    def test_get_listings_with_data(self, client, sample_listing):
        """Test getting listings when data exists."""
        response = client.get("/api/listings")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert len(data) == 1
        assert data[0]["categories"] == ["steel-kadai", "kitchen"]
        assert data[0]["has_detail"] is False

    def test_get_listings_with_filters(self, client, sample_listing):
        """Test filtering listings."""
        response = client.get("/api/listings?search=kadai")
        assert len(response.json()) == 1

        response = client.get("/api/listings?platform=alibaba")
        assert response.json() == []

        response = client.get("/api/listings?search=nothing-matches")
        assert response.json() == []

    def test_get_listing_by_id(self, client, sample_listing):
        """Test getting a specific listing."""
        response = client.get(f"/api/listings/{sample_listing.id}")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["title"] == "Stainless Steel Kadai 2 Litre"

    def test_get_listing_not_found(self, client):
        """Test getting a non-existent listing."""
        response = client.get("/api/listings/99999")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_listing_without_image_gets_placeholder(self, client, db_session):
        """Test that a missing image degrades to the placeholder."""
        from api.database import SavedListing

        row = SavedListing(platform="INDIAMART", url="https://www.indiamart.com/proddetail/x-1.html", title="Brass Diya Set")
        db_session.add(row)
        db_session.commit()

        response = client.get(f"/api/listings/{row.id}")
        assert response.json()["image"] == "/static/placeholder.png"


class TestDetailEndpoint:
    """Test the cached detail endpoints."""

    def test_detail_from_cache(self, client, fake_manager, sample_listing):
        """Test that cached detail is returned as-is."""
        fake_manager.detail_cache.get_cached.return_value = ProductDetail(
            title="Steel Kadai", price_text="₹ 450", hero_image="https://5.imimg.com/k.jpg"
        )

        response = client.get(f"/api/listings/{sample_listing.id}/detail")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["fallback"] is False
        assert data["detail"]["title"] == "Steel Kadai"
        ref = fake_manager.detail_cache.get_cached.call_args.args[0]
        assert ref.id == sample_listing.id
        assert ref.url == sample_listing.url

    def test_detail_fallback_uses_listing_fields(self, client, sample_listing):
        """Test that a missing detail degrades to the listing's raw fields."""
        response = client.get(f"/api/listings/{sample_listing.id}/detail")

        data = response.json()
        assert data["fallback"] is True
        assert data["detail"]["title"] == sample_listing.title
        assert data["detail"]["price_text"] == "₹ 450"
        assert data["detail"]["supplier"]["name"] == "Shree Utensils"
        assert data["detail"]["source"] == "fallback"

    def test_detail_missing_image_gets_placeholder(self, client, fake_manager, sample_listing):
        """Test that a detail without a hero image gets the placeholder."""
        fake_manager.detail_cache.get_cached.return_value = ProductDetail(title="Steel Kadai")

        data = client.get(f"/api/listings/{sample_listing.id}/detail").json()
        assert data["detail"]["hero_image"] == "/static/placeholder.png"

    def test_detail_not_found(self, client):
        """Test detail for an unknown listing."""
        response = client.get("/api/listings/424242/detail")
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_refresh_success(self, client, fake_manager, sample_listing):
        """Test that a successful refresh reports refreshed."""
        fake_manager.detail_cache.force_refresh.return_value = ProductDetail(title="Steel Kadai v2")

        response = client.post(f"/api/listings/{sample_listing.id}/refresh")

        data = response.json()
        assert data["refreshed"] is True
        assert data["detail"]["title"] == "Steel Kadai v2"

    def test_refresh_failure_falls_back(self, client, sample_listing):
        """Test that a failed refresh returns the fallback view."""
        response = client.post(f"/api/listings/{sample_listing.id}/refresh")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["refreshed"] is False
        assert data["fallback"] is True


class TestMetricsEndpoint:
    """Test the metrics endpoint."""

    def test_metrics_snapshot(self, client, fake_manager):
        """Test that the metrics snapshot is exposed."""
        fake_manager.metrics.record_search(120.0, 5)

        response = client.get("/api/metrics")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["total_searches"] == 1
        assert data["last_result_count"] == 5


class TestTaxonomyEndpoint:
    """Test the taxonomy leaves endpoint."""

    def test_leaves(self, client):
        """Test that the built-in leaves are listed."""
        response = client.get("/api/taxonomy/leaves")

        assert response.status_code == status.HTTP_200_OK
        keys = [leaf["key"] for leaf in response.json()]
        assert "wireless-earbuds" in keys
        assert all({"key", "label", "term", "aliases"} <= set(leaf) for leaf in response.json())


class TestImageCacheMount:
    """Test that mirrored images are served."""

    def test_cached_image_served(self, client):
        """Test that a file in the image cache is reachable under its URL prefix."""
        from pathlib import Path
        from api.config import settings

        target = Path(settings.image_cache_dir) / "0000test.jpg"
        target.write_bytes(b"\xff\xd8\xff" + b"\x00" * 64)
        try:
            response = client.get(f"{settings.image_cache_url}/0000test.jpg")
        finally:
            target.unlink()

        assert response.status_code == status.HTTP_200_OK
        assert response.content.startswith(b"\xff\xd8\xff")

    def test_missing_image_not_found(self, client):
        """Test that an unknown cache file is a 404."""
        from api.config import settings

        response = client.get(f"{settings.image_cache_url}/does-not-exist.jpg")
        assert response.status_code == status.HTTP_404_NOT_FOUND
