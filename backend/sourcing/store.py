"""
Persistence for discovered listings and their cached detail.

Listings are keyed by canonical URL. Re-ingesting a URL refreshes its display
fields and merges new categories/terms into the ones already stored.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.database import SavedListing, utc_now
from .base import ExternalListing
from .detail.cache import ListingRef
from .detail.models import ProductDetail
from .utils import canonicalize_url, parse_moq, parse_min_price, uniq_by

logger = logging.getLogger(__name__)

COMMIT_ATTEMPTS = 2


def _load_list(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except (ValueError, TypeError):
        return []
    return [v for v in value if isinstance(v, str)] if isinstance(value, list) else []


def merge_lists(existing: Iterable[str], incoming: Iterable[str]) -> List[str]:
    """Ordered union; existing entries keep their position."""
    return uniq_by([v for v in list(existing) + list(incoming) if v], lambda v: v)


def apply_listing(row: SavedListing, item: ExternalListing):
    """Copy display fields from a scraped listing onto a row."""
    row.platform = item.platform.value
    row.title = item.title
    row.image = item.image or row.image
    row.price_raw = item.price or row.price_raw
    row.currency = item.currency or row.currency
    row.price_min = parse_min_price(row.price_raw)
    row.moq_raw = item.moq or row.moq_raw
    row.moq = parse_moq(row.moq_raw)
    row.store_name = item.store_name or row.store_name
    row.description = item.description or row.description
    row.rating_raw = item.rating or row.rating_raw
    row.orders_raw = item.orders or row.orders_raw
    row.categories = json.dumps(merge_lists(_load_list(row.categories), item.categories))
    row.terms = json.dumps(merge_lists(_load_list(row.terms), item.terms))


def to_ref(row: SavedListing) -> ListingRef:
    return ListingRef(
        id=row.id,
        url=row.url or '',
        detail_json=row.detail_json,
        detail_updated_at=row.detail_updated_at,
        title=row.title or '',
        price_raw=row.price_raw or '',
        moq_raw=row.moq_raw or '',
        image=row.image or '',
        store_name=row.store_name or '',
    )


def query_listings(
    db: Session,
    search: Optional[str] = None,
    platform: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[SavedListing]:
    """
    Stored listings, newest first.

    Args:
        db: Open session
        search: Case-insensitive match on title, store name or terms
        platform: Platform enum value, e.g. 'INDIAMART'
        skip: Offset
        limit: Page size

    Returns:
        SavedListing rows
    """
    query = db.query(SavedListing)
    if platform:
        query = query.filter(SavedListing.platform == platform.upper())
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(
            SavedListing.title.ilike(pattern),
            SavedListing.store_name.ilike(pattern),
            SavedListing.terms.ilike(pattern),
        ))
    return (
        query.order_by(SavedListing.updated_at.desc(), SavedListing.id.desc())
        .offset(max(0, skip))
        .limit(max(0, limit))
        .all()
    )


class ListingStore:
    """
    Session-per-call access to SavedListing.

    Usage:
        store = ListingStore(SessionLocal)
        store.upsert_listings(listings)
        ref = store.get_ref(listing_id)
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def upsert_listings(self, listings: List[ExternalListing]) -> int:
        """
        Insert or update listings by canonical URL in one transaction.

        The batch is retried once from scratch if the commit fails.

        Args:
            listings: Scraped listings

        Returns:
            Number of rows written

        Raises:
            SQLAlchemyError: If both attempts fail
        """
        if not listings:
            return 0

        for attempt in range(COMMIT_ATTEMPTS):
            with self._session() as db:
                try:
                    written = self._upsert_batch(db, listings)
                    db.commit()
                    return written
                except SQLAlchemyError as e:
                    db.rollback()
                    logger.warning(f"Upsert attempt {attempt + 1}/{COMMIT_ATTEMPTS} failed: {e}")
                    if attempt == COMMIT_ATTEMPTS - 1:
                        raise
        return 0

    @staticmethod
    def _upsert_batch(db: Session, listings: List[ExternalListing]) -> int:
        written = 0
        rows = {}
        for item in listings:
            url = canonicalize_url(item.url)
            if not url or not item.title:
                continue
            row = rows.get(url)
            if row is None:
                row = db.query(SavedListing).filter_by(url=url).first()
            if row is None:
                row = SavedListing(url=url, created_at=utc_now())
                db.add(row)
            apply_listing(row, item)
            row.updated_at = utc_now()
            rows[url] = row
            written += 1
        db.flush()
        return written

    def get_listing(self, listing_id: int) -> Optional[SavedListing]:
        with self._session() as db:
            row = db.get(SavedListing, listing_id)
            if row is not None:
                db.expunge(row)
            return row

    def get_ref(self, listing_id: int) -> Optional[ListingRef]:
        with self._session() as db:
            row = db.get(SavedListing, listing_id)
            return to_ref(row) if row is not None else None

    def save_detail(self, listing_id: int, detail: ProductDetail, at: Optional[datetime] = None):
        """Persist detail JSON on the listing row; unknown ids are ignored."""
        with self._session() as db:
            row = db.get(SavedListing, listing_id)
            if row is None:
                logger.debug(f"save_detail: listing {listing_id} not found")
                return
            row.detail_json = json.dumps(detail.to_dict(), ensure_ascii=False)
            row.detail_updated_at = at or utc_now()
            try:
                db.commit()
            except SQLAlchemyError:
                db.rollback()
                raise

    def list_listings(
        self,
        q: Optional[str] = None,
        platform: Optional[str] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[SavedListing]:
        with self._session() as db:
            rows = query_listings(db, search=q, platform=platform, skip=skip, limit=limit)
            for row in rows:
                db.expunge(row)
            return rows

    def count(self) -> int:
        with self._session() as db:
            return db.query(SavedListing).count()
