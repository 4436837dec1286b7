"""
Source configurations for the supported marketplaces.

Each source has a SourceConfig that defines:
- Base URL used to absolutize relative links
- Host substrings used to route detail pages
- Search / export endpoint templates (IndiaMART only)
- CDN allow-list for product images
"""

from typing import Optional
from urllib.parse import urlparse

from .base import SourceConfig, Platform


# ============================================================
# SOURCE CONFIGURATIONS
# ============================================================

SOURCES = {
    'indiamart': SourceConfig(
        name='IndiaMART',
        platform=Platform.INDIAMART,
        base_url='https://dir.indiamart.com/',
        hosts=['indiamart'],
        search_url='https://dir.indiamart.com/search.mp?ss={q}&pg={page}',
        export_url='https://export.indiamart.com/search.php?ss={q}',
        image_hosts=[r'(^|\.)imimg\.com$'],
        referer='https://dir.indiamart.com/',
        searchable=True,
    ),

    'alibaba': SourceConfig(
        name='Alibaba',
        platform=Platform.ALIBABA,
        base_url='https://www.alibaba.com/',
        hosts=['alibaba'],
        image_hosts=[r'(^|\.)alicdn\.com$', r'(^|\.)alibaba\.com$'],
    ),

    'madeinchina': SourceConfig(
        name='Made-in-China',
        platform=Platform.MADE_IN_CHINA,
        base_url='https://www.made-in-china.com/',
        hosts=['made-in-china'],
        image_hosts=[r'(^|\.)made-in-china\.com$', r'(^|\.)micstatic\.com$'],
    ),
}

# Desktop user agents rotated across search pages
UA_POOL = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 13_5) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15',
]


# ============================================================
# HELPER FUNCTIONS
# ============================================================

def get_source_config(source_key: str) -> SourceConfig:
    """
    Get configuration for a source by its key.

    Args:
        source_key: Source identifier (e.g., 'indiamart')

    Returns:
        SourceConfig for the source

    Raises:
        ValueError: If source_key is not found
    """
    if source_key not in SOURCES:
        valid_keys = ', '.join(sorted(SOURCES.keys()))
        raise ValueError(f"Unknown source: '{source_key}'. Valid sources: {valid_keys}")
    return SOURCES[source_key]


def source_for_url(url: str) -> Optional[str]:
    """Return the source key whose host pattern matches the URL, if any."""
    try:
        host = (urlparse(url).hostname or '').lower()
    except ValueError:
        return None
    if not host:
        return None
    # First match wins
    for key in ('madeinchina', 'alibaba', 'indiamart'):
        if any(h in host for h in SOURCES[key].hosts):
            return key
    return None


def get_searchable_sources() -> dict:
    """Get all sources with a search endpoint."""
    return {k: v for k, v in SOURCES.items() if v.searchable}
