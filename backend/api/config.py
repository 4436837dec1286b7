"""
Application Configuration
Loads settings from environment variables with sensible defaults.
"""

from pydantic_settings import BaseSettings
from typing import List, Optional
from pathlib import Path


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database Configuration
    database_url: str = "sqlite:///./data/pool_sourcing.db"

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_debug: bool = False

    # CORS Configuration
    cors_origins: List[str] = ["*"]

    # Scraper Configuration
    scraper_timeout: float = 8.0
    scraper_max_retries: int = 2
    scraper_rate_limit: float = 0.0
    headless_enabled: bool = False
    headless_settle_seconds: float = 1.2

    # Search tuning (upstream behaviour drifts, keep these adjustable)
    search_page_size: int = 18
    search_max_pages: int = 30
    headless_sparse_threshold: int = 6
    export_fallback_threshold: int = 4
    export_fallback_enabled: bool = True
    export_cache_ttl_seconds: int = 120
    image_enrich_workers: int = 4
    metrics_window: int = 50

    # Detail cache
    detail_memory_ttl_seconds: int = 300
    detail_freshness_seconds: int = 86400
    detail_fetch_timeout: float = 3.5

    # Image cache
    image_cache_dir: str = "./data/image-cache"
    image_cache_url: str = "/cache"
    placeholder_image: str = "/static/placeholder.png"

    # Batch ingestion defaults
    ingest_limit: int = 160
    ingest_terms: int = 2
    ingest_prefetch: int = 60
    ingest_threshold: int = 30
    ingest_floor: int = 10
    ingest_min_informative: int = 2
    taxonomy_path: Optional[str] = None

    # Logging Configuration
    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Paths
    @property
    def log_dir(self) -> Path:
        """Get the log directory path."""
        return Path(__file__).parent.parent.parent / "logs"

    @property
    def log_file(self) -> Path:
        """Get the log file path."""
        return self.log_dir / "backend.log"

    @property
    def data_dir(self) -> Path:
        """Get the data directory path."""
        return Path(__file__).parent.parent / "data"

    class Config:
        # Only load .env if it exists to avoid permission errors
        env_file = ".env" if __import__("pathlib").Path(".env").exists() else None
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global settings instance
settings = Settings()
