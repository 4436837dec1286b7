"""
External listing acquisition pipeline.

This package provides:
- Search-result scraping with headless and export-directory escalation
- Product image resolution and local mirroring
- Per-marketplace detail extraction behind a two-tier cache
- Batch ingestion of taxonomy leaves (python -m sourcing.ingest)
"""

from .base import ExternalListing, SearchOptions, SourceConfig, Platform, IngestResult
from .config import SOURCES, get_source_config, source_for_url, get_searchable_sources
from .manager import SourcingManager

__all__ = [
    'ExternalListing',
    'SearchOptions',
    'SourceConfig',
    'Platform',
    'IngestResult',
    'SOURCES',
    'get_source_config',
    'source_for_url',
    'get_searchable_sources',
    'SourcingManager',
]
