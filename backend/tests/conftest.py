"""
Pytest configuration and fixtures for the sourcing backend tests.
"""

import json
import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from api.database import Base, get_db
from api.main import app, get_sourcing
from sourcing.base import ExternalListing, Platform
from sourcing.metrics import SearchMetrics


# Create an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Override the get_db dependency for testing."""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


class FakeCrawler:
    """Serves canned HTML by URL; unknown URLs come back empty."""

    def __init__(self, pages=None, default=''):
        self.pages = dict(pages or {})
        self.default = default
        self.calls = []

    async def fetch(self, url, headers=None, timeout=None, retries=None):
        self.calls.append(url)
        return self.pages.get(url, self.default)

    async def fetch_text_or_empty(self, url, headers=None, timeout=None):
        self.calls.append(url)
        return self.pages.get(url, self.default)

    async def fetch_bytes(self, url, headers=None, timeout=None):
        self.calls.append(url)
        return self.pages[url]

    async def close(self):
        pass


@pytest.fixture
def make_crawler():
    """Factory for crawlers serving canned pages."""
    return FakeCrawler


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db_session):
    """Session factory bound to the test database."""
    return TestingSessionLocal


@pytest.fixture
def fake_manager():
    """Stand-in for SourcingManager with async parts mocked."""
    manager = MagicMock()
    manager.search = AsyncMock(return_value=[])
    manager.detail_cache.get_cached = AsyncMock(return_value=None)
    manager.detail_cache.force_refresh = AsyncMock(return_value=None)
    manager.metrics = SearchMetrics()
    manager.placeholder_image = "/static/placeholder.png"
    manager.headless_available = False
    return manager


@pytest.fixture(scope="function")
def client(db_session, fake_manager):
    """Create a test client with database and sourcing overrides."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sourcing] = lambda: fake_manager
    Base.metadata.create_all(bind=engine)

    # Use TestClient directly without context manager so the lifespan does not run
    test_client = TestClient(app)
    yield test_client

    app.dependency_overrides.clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def sample_external_listing():
    """A scraped listing with every display field set."""
    return ExternalListing(
        platform=Platform.INDIAMART,
        title="Stainless Steel Kadai 2 Litre",
        url="https://www.indiamart.com/proddetail/steel-kadai-2245.html",
        image="https://5.imimg.com/data5/kadai-500x500.jpg",
        price="₹ 450",
        currency="INR",
        moq="50 Piece",
        store_name="Shree Utensils",
        description="Heavy gauge kadai",
        categories=["steel-kadai"],
        terms=["steel kadai", "steel", "kadai"],
    )


@pytest.fixture
def sample_listing(db_session):
    """Create a stored listing without cached detail."""
    from api.database import SavedListing

    listing = SavedListing(
        platform="INDIAMART",
        url="https://www.indiamart.com/proddetail/steel-kadai-2245.html",
        title="Stainless Steel Kadai 2 Litre",
        image="https://5.imimg.com/data5/kadai-500x500.jpg",
        price_raw="₹ 450",
        currency="INR",
        price_min=450.0,
        moq_raw="50 Piece",
        moq=50,
        store_name="Shree Utensils",
        categories=json.dumps(["steel-kadai", "kitchen"]),
        terms=json.dumps(["steel kadai", "steel", "kadai"]),
    )
    db_session.add(listing)
    db_session.commit()
    db_session.refresh(listing)
    return listing


@pytest.fixture
def sample_listing_with_detail(db_session):
    """Create a stored listing whose detail was cached an hour ago."""
    from api.database import SavedListing

    listing = SavedListing(
        platform="ALIBABA",
        url="https://www.alibaba.com/product-detail/earbuds_1600.html",
        title="TWS Wireless Earbuds",
        price_raw="US$ 3.20",
        moq_raw="100 pieces",
        moq=100,
        store_name="Shenzhen Audio Co.",
        detail_json=json.dumps({
            "title": "TWS Wireless Earbuds",
            "price_text": "US$ 3.20",
            "moq_text": "100 pieces",
            "hero_image": "",
            "source": "alibaba:product-price",
        }),
        detail_updated_at=datetime.now(timezone.utc),
    )
    db_session.add(listing)
    db_session.commit()
    db_session.refresh(listing)
    return listing
