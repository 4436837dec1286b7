"""
Core data structures for the sourcing pipeline.

Defines the listing record produced by search-result parsing, the per-call
search options, the source configuration record and the result summary of a
batch ingestion run.
"""

from typing import List, Dict, Optional, Any
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime, timezone


# ANSI color codes for terminal output
class Colors:
    """ANSI color codes for colorized logging."""
    RESET = '\033[0m'
    BOLD = '\033[1m'

    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    RED = '\033[91m'
    BLUE = '\033[94m'
    CYAN = '\033[96m'
    GRAY = '\033[90m'

    @staticmethod
    def green(text):
        return f"{Colors.GREEN}{text}{Colors.RESET}"

    @staticmethod
    def yellow(text):
        return f"{Colors.YELLOW}{text}{Colors.RESET}"

    @staticmethod
    def red(text):
        return f"{Colors.RED}{text}{Colors.RESET}"

    @staticmethod
    def blue(text):
        return f"{Colors.BLUE}{text}{Colors.RESET}"

    @staticmethod
    def cyan(text):
        return f"{Colors.CYAN}{text}{Colors.RESET}"

    @staticmethod
    def gray(text):
        return f"{Colors.GRAY}{text}{Colors.RESET}"

    @staticmethod
    def bold(text):
        return f"{Colors.BOLD}{text}{Colors.RESET}"


class Platform(Enum):
    """Marketplaces listings can originate from."""
    INDIAMART = "INDIAMART"
    INDIAMART_EXPORT = "INDIAMART_EXPORT"
    ALIBABA = "ALIBABA"
    MADE_IN_CHINA = "MADE_IN_CHINA"


@dataclass
class SourceConfig:
    """Configuration for a marketplace source."""
    name: str                                   # Display name
    platform: Platform
    base_url: str                               # Used to absolutize relative hrefs
    hosts: List[str] = field(default_factory=list)        # Host substrings routed to this source
    search_url: Optional[str] = None            # Template with {q} and {page}
    export_url: Optional[str] = None            # Template with {q}
    image_hosts: List[str] = field(default_factory=list)  # Regexes for the CDN allow-list
    referer: Optional[str] = None
    searchable: bool = False


@dataclass
class SearchOptions:
    """Per-call switches for a listing search."""
    headless: bool = False
    force_headless: bool = False
    upgrade_images: bool = False
    cache_images: bool = False
    debug: bool = False


@dataclass
class ExternalListing:
    """One item discovered on a search-results page."""
    platform: Platform
    title: str
    url: str
    image: str = ''
    price: str = ''
    currency: Optional[str] = None
    moq: str = ''
    store_name: str = ''
    description: str = ''
    categories: List[str] = field(default_factory=list)
    terms: List[str] = field(default_factory=list)
    rating: Optional[str] = None
    orders: Optional[str] = None

    def has_meta(self) -> bool:
        """True when any of price / moq / store / image carries a signal."""
        return (
            len(self.price or '') > 1
            or len(self.moq or '') > 1
            or len(self.store_name or '') > 1
            or bool(self.image)
        )

    def has_real_image(self) -> bool:
        image = (self.image or '').strip()
        return bool(image) and not image.startswith('/seed/')

    def to_dict(self) -> Dict[str, Any]:
        return {
            'platform': self.platform.value,
            'title': self.title,
            'url': self.url,
            'image': self.image,
            'price': self.price,
            'currency': self.currency,
            'moq': self.moq,
            'store_name': self.store_name,
            'description': self.description,
            'categories': list(self.categories),
            'terms': list(self.terms),
            'rating': self.rating,
            'orders': self.orders,
        }


@dataclass
class IngestResult:
    """Result of a batch ingestion run."""
    started_at: datetime
    completed_at: Optional[datetime] = None
    leaves_processed: int = 0
    leaves_skipped: int = 0
    terms_tried: int = 0
    terms_skipped: int = 0
    kept: int = 0
    filtered_moq: int = 0
    filtered_quality: int = 0
    duplicates: int = 0
    per_leaf: Dict[str, int] = field(default_factory=dict)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def finish(self):
        self.completed_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict:
        return {
            'started_at': self.started_at.isoformat(),
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'duration_seconds': self.duration_seconds,
            'leaves_processed': self.leaves_processed,
            'leaves_skipped': self.leaves_skipped,
            'terms_tried': self.terms_tried,
            'terms_skipped': self.terms_skipped,
            'kept': self.kept,
            'filtered_moq': self.filtered_moq,
            'filtered_quality': self.filtered_quality,
            'duplicates': self.duplicates,
            'per_leaf': dict(self.per_leaf),
        }
