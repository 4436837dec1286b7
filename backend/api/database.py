from sqlalchemy import create_engine, Column, Integer, String, Float, DateTime, Text, Index
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime, timezone
from pathlib import Path


def utc_now():
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)

Base = declarative_base()


class SavedListing(Base):
    __tablename__ = 'saved_listings'

    id = Column(Integer, primary_key=True)
    platform = Column(String, nullable=False, index=True)  # INDIAMART, ALIBABA, ...

    # Identity: canonical detail URL
    url = Column(String, unique=True, nullable=False, index=True)

    # Display fields as scraped
    title = Column(String, nullable=False)
    image = Column(String)
    price_raw = Column(String)
    currency = Column(String)
    price_min = Column(Float)  # Lowest number parsed from price_raw
    moq_raw = Column(String)
    moq = Column(Integer)
    store_name = Column(String)
    description = Column(Text)
    rating_raw = Column(String)
    orders_raw = Column(String)

    # JSON arrays of taxonomy keys / search terms
    categories = Column(Text)
    terms = Column(Text)

    # Detail cache (tier 2)
    detail_json = Column(Text)
    detail_updated_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_saved_listings_platform_updated', 'platform', 'updated_at'),
        Index('ix_saved_listings_detail_updated_at', 'detail_updated_at'),
    )


# Database setup - import settings for database URL
from api.config import settings

engine = create_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,    # Verify connections before use (handles stale connections)
    pool_recycle=3600,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def init_db():
    if settings.database_url.startswith("sqlite:///") and ":memory:" not in settings.database_url:
        Path(settings.database_url[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    Base.metadata.create_all(bind=engine)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
