from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from fastapi.staticfiles import StaticFiles
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
import json
import logging
import asyncio
from pathlib import Path

from api.database import get_db, init_db, SavedListing, SessionLocal, engine
from api.config import settings
from sourcing.base import SearchOptions
from sourcing.detail import build_fallback
from sourcing.manager import SourcingManager
from sourcing.store import query_listings, to_ref
from sourcing.taxonomy import flatten_leaves, load_taxonomy
from pydantic import BaseModel

# Setup logging and image cache directories
settings.log_dir.mkdir(exist_ok=True)
Path(settings.image_cache_dir).mkdir(parents=True, exist_ok=True)

import re

# Custom formatter to strip ANSI color codes from file logs
class ColorStripFormatter(logging.Formatter):
    """Formatter that strips ANSI color codes from log messages."""
    ansi_escape = re.compile(r'\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])')

    def format(self, record):
        message = super().format(record)
        return self.ansi_escape.sub('', message)

# Color for console, stripped for file
file_handler = logging.FileHandler(settings.log_file, encoding='utf-8')
file_handler.setFormatter(ColorStripFormatter(settings.log_format))

console_handler = logging.StreamHandler()
console_handler.setFormatter(logging.Formatter(settings.log_format))

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    handlers=[file_handler, console_handler],
    force=True  # Override any existing configuration
)

logger = logging.getLogger(__name__)


# Filter to suppress noisy polling endpoint access logs
class PollingEndpointFilter(logging.Filter):
    # Dashboard polls these every few seconds
    SUPPRESSED_ENDPOINTS = ['/api/metrics']

    def filter(self, record):
        try:
            msg = record.getMessage()
        except Exception:
            msg = str(record.msg)
        for endpoint in self.SUPPRESSED_ENDPOINTS:
            if endpoint in msg:
                return False
        return True

# Apply filter to uvicorn access logger at module load time
uvicorn_access_logger = logging.getLogger("uvicorn.access")
uvicorn_access_logger.addFilter(PollingEndpointFilter())


async def cleanup_resources(manager: Optional[SourcingManager]):
    """Close the sourcing clients and database connections."""
    logger.info("Cleaning up resources...")

    if manager is not None:
        try:
            await asyncio.wait_for(manager.close(), timeout=3.0)
        except asyncio.TimeoutError:
            logger.warning("Sourcing cleanup timed out")
        except Exception as e:
            logger.warning(f"Error closing sourcing resources: {e}")

    try:
        logger.info("Closing database connections...")
        await asyncio.wait_for(
            asyncio.get_running_loop().run_in_executor(None, lambda: engine.dispose(close=True)),
            timeout=2.0
        )
        logger.info("Database connections closed")
    except asyncio.TimeoutError:
        logger.warning("Database cleanup timed out, forcing close")
        engine.dispose(close=True)
    except Exception as e:
        logger.warning(f"Error closing database connections: {e}")

    logger.info("Resource cleanup complete")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Builds the sourcing resources on startup and releases them on shutdown.
    """
    logger.info("=" * 60)
    logger.info("Pool Sourcing Backend Starting Up")
    logger.info("=" * 60)
    logger.info(f"Log file: {settings.log_file}")
    logger.info(f"Database: {settings.database_url}")
    logger.info(f"CORS origins: {settings.cors_origins}")
    init_db()
    logger.info("Database initialized successfully")

    app.state.sourcing = SourcingManager.from_settings(settings, session_factory=SessionLocal)
    app.state.taxonomy = load_taxonomy(settings.taxonomy_path)
    logger.info(f"Headless rendering: {'enabled' if app.state.sourcing.headless_available else 'disabled'}")
    logger.info("Backend ready to accept requests")

    yield  # Application runs here

    logger.info("=" * 60)
    logger.info("Pool Sourcing Backend Shutting Down")
    logger.info("=" * 60)
    try:
        await asyncio.wait_for(cleanup_resources(getattr(app.state, 'sourcing', None)), timeout=5.0)
    except asyncio.TimeoutError:
        logger.warning("Shutdown cleanup timed out, forcing exit")
    except Exception as e:
        logger.error(f"Error during shutdown cleanup: {e}")
    logger.info("Shutdown complete")


app = FastAPI(
    title="Pool Sourcing API",
    version="1.0.0",
    lifespan=lifespan
)

# Note: allow_credentials must be False when allow_origins is ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Serves images mirrored by ImageCache
app.mount(settings.image_cache_url, StaticFiles(directory=settings.image_cache_dir), name="image_cache")


def get_sourcing(request: Request) -> SourcingManager:
    """Sourcing resources created in the lifespan."""
    manager = getattr(request.app.state, 'sourcing', None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Sourcing not initialized")
    return manager


def get_taxonomy(request: Request):
    return getattr(request.app.state, 'taxonomy', None) or load_taxonomy(settings.taxonomy_path)


@app.get("/favicon.ico", include_in_schema=False)
async def favicon():
    """Return empty response for favicon requests"""
    return Response(status_code=204)


# Pydantic models for API responses
class ExternalListingResponse(BaseModel):
    platform: str
    title: str
    url: str
    image: str
    price: str
    currency: Optional[str] = None
    moq: str
    store_name: str
    description: str
    categories: List[str] = []
    terms: List[str] = []
    rating: Optional[str] = None
    orders: Optional[str] = None


class ListingResponse(BaseModel):
    id: int
    platform: str
    url: str
    title: str
    image: str
    price_raw: Optional[str] = None
    currency: Optional[str] = None
    price_min: Optional[float] = None
    moq_raw: Optional[str] = None
    moq: Optional[int] = None
    store_name: Optional[str] = None
    description: Optional[str] = None
    categories: List[str] = []
    terms: List[str] = []
    has_detail: bool
    detail_updated_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _json_list(raw: Optional[str]) -> List[str]:
    try:
        value = json.loads(raw) if raw else []
    except ValueError:
        return []
    return value if isinstance(value, list) else []


def serialize_listing(row: SavedListing) -> ListingResponse:
    return ListingResponse(
        id=row.id,
        platform=row.platform,
        url=row.url,
        title=row.title,
        image=row.image or settings.placeholder_image,
        price_raw=row.price_raw,
        currency=row.currency,
        price_min=row.price_min,
        moq_raw=row.moq_raw,
        moq=row.moq,
        store_name=row.store_name,
        description=row.description,
        categories=_json_list(row.categories),
        terms=_json_list(row.terms),
        has_detail=bool(row.detail_json),
        detail_updated_at=row.detail_updated_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def detail_payload(detail, placeholder: str) -> dict:
    data = detail.to_dict()
    if not data.get('hero_image'):
        data['hero_image'] = placeholder
    return data


def _get_listing_or_404(db: Session, listing_id: int) -> SavedListing:
    listing = db.query(SavedListing).filter(SavedListing.id == listing_id).first()
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    return listing


# API Endpoints

@app.get("/")
async def root():
    return {"message": "Pool Sourcing API", "version": "1.0.0"}


@app.get("/api/external/search", response_model=List[ExternalListingResponse])
async def external_search(
    q: str = Query(..., min_length=1, description="Search term"),
    limit: int = Query(20, ge=1, le=200),
    headless: bool = Query(False, description="Allow headless escalation when static results are sparse"),
    upgrade_images: bool = Query(False, description="Resolve detail-page images for listings without one"),
    cache_images: bool = Query(False, description="Mirror images to the local cache"),
    debug: bool = Query(False),
    manager: SourcingManager = Depends(get_sourcing),
):
    """Live marketplace search"""
    options = SearchOptions(
        headless=headless and manager.headless_available,
        upgrade_images=upgrade_images,
        cache_images=cache_images,
        debug=debug,
    )
    items = await manager.search(q, limit, options)
    return [item.to_dict() for item in items]


@app.get("/api/listings", response_model=List[ListingResponse])
async def get_listings(
    search: Optional[str] = Query(None, description="Match title, store or search terms"),
    platform: Optional[str] = Query(None, description="INDIAMART, ALIBABA, ..."),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db)
):
    """Stored listings, newest first"""
    rows = query_listings(db, search=search, platform=platform, skip=skip, limit=limit)
    return [serialize_listing(row) for row in rows]


@app.get("/api/listings/{listing_id}", response_model=ListingResponse)
async def get_listing(listing_id: int, db: Session = Depends(get_db)):
    """Get a single listing by ID"""
    return serialize_listing(_get_listing_or_404(db, listing_id))


@app.get("/api/listings/{listing_id}/detail")
async def get_listing_detail(
    listing_id: int,
    db: Session = Depends(get_db),
    manager: SourcingManager = Depends(get_sourcing),
):
    """
    Cached product detail for a listing.
    Falls back to the listing's own fields when no detail can be produced.
    """
    ref = to_ref(_get_listing_or_404(db, listing_id))
    placeholder = manager.placeholder_image or settings.placeholder_image

    detail = await manager.detail_cache.get_cached(ref)
    if detail is None:
        return {
            "listing_id": listing_id,
            "fallback": True,
            "detail": detail_payload(build_fallback(ref, placeholder), placeholder),
        }
    return {"listing_id": listing_id, "fallback": False, "detail": detail_payload(detail, placeholder)}


@app.post("/api/listings/{listing_id}/refresh")
async def refresh_listing_detail(
    listing_id: int,
    db: Session = Depends(get_db),
    manager: SourcingManager = Depends(get_sourcing),
):
    """Fetch the listing's detail page live and overwrite the cached detail"""
    ref = to_ref(_get_listing_or_404(db, listing_id))
    placeholder = manager.placeholder_image or settings.placeholder_image
    logger.info(f"Refreshing detail for listing {listing_id}: {ref.url}")

    detail = await manager.detail_cache.force_refresh(ref)
    if detail is None:
        logger.warning(f"Refresh produced no detail for listing {listing_id}")
        return {
            "listing_id": listing_id,
            "refreshed": False,
            "fallback": True,
            "detail": detail_payload(build_fallback(ref, placeholder), placeholder),
        }
    return {
        "listing_id": listing_id,
        "refreshed": True,
        "fallback": False,
        "detail": detail_payload(detail, placeholder),
    }


@app.get("/api/metrics")
async def get_metrics(manager: SourcingManager = Depends(get_sourcing)):
    """Rolling search metrics"""
    return manager.metrics.snapshot()


@app.get("/api/taxonomy/leaves")
async def get_taxonomy_leaves(nodes=Depends(get_taxonomy)):
    """All taxonomy leaves, depth first"""
    return [leaf.to_dict() for leaf in flatten_leaves(nodes)]
