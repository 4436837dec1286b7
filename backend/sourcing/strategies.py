"""
Extraction strategies for search-result pages.

Each strategy turns a parsed results page into ExternalListing objects.
The orchestrator runs them as an ordered chain and keeps the first non-empty
batch, so cheap structured parsing is preferred over loose heuristics.
"""

import re
import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence
from bs4 import BeautifulSoup

from .base import ExternalListing, Platform
from .utils import (
    norm_text,
    to_absolute,
    canonicalize_url,
    extract_price_and_currency,
    extract_moq,
    iter_json_fragments,
    select_text,
)

logger = logging.getLogger(__name__)

PRODUCT_HREF_RE = re.compile(r'product|detail|proddetail', re.IGNORECASE)
DENSE_HREF_RE = re.compile(r'product|detail|proddetail|seller|supplier', re.IGNORECASE)
PLACEHOLDER_IMG_RE = re.compile(r'placeholder|noimage|default', re.IGNORECASE)
SCRIPT_HINT_RE = re.compile(r'"price"|"moq"|"prod"', re.IGNORECASE)
FRAGMENT_HINT_RE = re.compile(r'price|title|product', re.IGNORECASE)

CARD_SELECTOR = '.prod_box, .prod-card, .lst-product, .product-card, .prd, .p_card'
PRICE_SELECTOR = '.pdp-price, .price, .prd-prc, .r_price'
MOQ_SELECTOR = '.moq, .min-order, .order-qty'
STORE_SELECTOR = '.cmp-name, .cmp-title, .company-name'
DESC_SELECTOR = '.prod-dtls, .desc, .prd-desc, .specs'


def _as_text(value) -> str:
    if value is None:
        return ''
    if isinstance(value, (str, int, float)):
        return norm_text(str(value))
    return ''


class ExtractionStrategy(ABC):
    """One way of pulling listings out of a results page."""

    name = 'base'

    def __init__(self, base_url: str = 'https://dir.indiamart.com/', platform: Platform = Platform.INDIAMART):
        self.base_url = base_url
        self.platform = platform

    def canonical(self, href: Optional[str]) -> str:
        return canonicalize_url(to_absolute(href or '', self.base_url), self.base_url)

    @abstractmethod
    def extract(self, soup: BeautifulSoup, limit: int) -> List[ExternalListing]:
        """
        Extract up to limit listings in DOM order.

        Args:
            soup: Parsed results page
            limit: Maximum number of listings to return

        Returns:
            Listings found, possibly empty
        """
        pass


class CardStrategy(ExtractionStrategy):
    """Structured product cards with title, price, MOQ, store and image."""

    name = 'cards'

    def extract(self, soup: BeautifulSoup, limit: int) -> List[ExternalListing]:
        out: List[ExternalListing] = []
        for card in soup.select(CARD_SELECTOR):
            if len(out) >= limit:
                break
            anchor = next(
                (a for a in card.find_all('a') if PRODUCT_HREF_RE.search(a.get('href') or '')),
                None,
            )
            if anchor is None:
                continue
            url = self.canonical(anchor.get('href'))
            title = norm_text(anchor.get('title') or anchor.get_text(' '))
            if not url or not title:
                continue

            price, currency = extract_price_and_currency(select_text(card, PRICE_SELECTOR))
            moq_raw = select_text(card, MOQ_SELECTOR)

            image = ''
            img = card.find('img')
            if img is not None:
                src = img.get('data-src') or img.get('src') or ''
                if src and not PLACEHOLDER_IMG_RE.search(src):
                    image = to_absolute(src, self.base_url)

            out.append(ExternalListing(
                platform=self.platform,
                title=title,
                url=url,
                image=image,
                price=price,
                currency=currency,
                moq=extract_moq(moq_raw) or moq_raw,
                store_name=select_text(card, STORE_SELECTOR),
                description=select_text(card, DESC_SELECTOR),
            ))
        return out


class LooseAnchorStrategy(ExtractionStrategy):
    """Any anchor whose href looks like a product page; title only."""

    name = 'loose_anchors'

    def extract(self, soup: BeautifulSoup, limit: int) -> List[ExternalListing]:
        out: List[ExternalListing] = []
        for anchor in soup.find_all('a'):
            if len(out) >= limit:
                break
            href = anchor.get('href') or ''
            if not PRODUCT_HREF_RE.search(href):
                continue
            title = norm_text(anchor.get('title') or anchor.get_text(' '))
            if not title:
                continue
            out.append(ExternalListing(platform=self.platform, title=title, url=self.canonical(href)))
        return out


class ScriptJsonStrategy(ExtractionStrategy):
    """Flat JSON objects embedded in inline scripts (hydration payloads)."""

    name = 'script_json'

    def extract(self, soup: BeautifulSoup, limit: int) -> List[ExternalListing]:
        for script in soup.find_all('script'):
            text = script.string or ''
            if not SCRIPT_HINT_RE.search(text):
                continue
            batch: List[ExternalListing] = []
            for obj in iter_json_fragments(text):
                if len(batch) >= limit:
                    break
                if not FRAGMENT_HINT_RE.search(' '.join(obj.keys())):
                    continue
                url = _as_text(obj.get('url') or obj.get('link'))
                title = _as_text(obj.get('title') or obj.get('name'))
                if not url or not title:
                    continue
                price, currency = extract_price_and_currency(_as_text(obj.get('priceText') or obj.get('price')))
                batch.append(ExternalListing(
                    platform=self.platform,
                    title=title,
                    url=self.canonical(url),
                    image=to_absolute(_as_text(obj.get('image') or obj.get('img')), self.base_url),
                    price=price,
                    currency=currency,
                    moq=_as_text(obj.get('moq')),
                    store_name=_as_text(obj.get('store') or obj.get('supplier')),
                    description=_as_text(obj.get('desc') or obj.get('description')),
                ))
            # First script that yields anything wins
            if batch:
                return batch
        return []


class DenseAnchorHarvest(ExtractionStrategy):
    """
    Broad anchor sweep used on the first page to top up sparse results.

    Also accepts seller/supplier links and skips URLs already collected.
    """

    name = 'dense_anchors'

    def harvest(self, soup: BeautifulSoup, limit: int, seen_urls: Iterable[str] = ()) -> List[ExternalListing]:
        seen = set(seen_urls)
        out: List[ExternalListing] = []
        for anchor in soup.find_all('a', href=True):
            if len(out) >= limit:
                break
            href = anchor.get('href') or ''
            if not DENSE_HREF_RE.search(href):
                continue
            url = self.canonical(href)
            if url in seen:
                continue
            title = norm_text(anchor.get('title') or anchor.get_text(' '))[:140]
            if len(title) < 4:
                continue
            seen.add(url)
            out.append(ExternalListing(platform=self.platform, title=title, url=url))
        return out

    def extract(self, soup: BeautifulSoup, limit: int) -> List[ExternalListing]:
        return self.harvest(soup, limit)


def default_chain(base_url: str = 'https://dir.indiamart.com/') -> List[ExtractionStrategy]:
    """Card parsing, then loose anchors, then inline JSON."""
    return [CardStrategy(base_url), LooseAnchorStrategy(base_url), ScriptJsonStrategy(base_url)]


def run_chain(chain: Sequence[ExtractionStrategy], soup: BeautifulSoup, limit: int, debug: bool = False) -> List[ExternalListing]:
    """Run strategies in order and return the first non-empty batch."""
    for strategy in chain:
        try:
            batch = strategy.extract(soup, limit)
        except Exception as e:
            logger.debug(f"Strategy {strategy.name} failed: {e}")
            continue
        if batch:
            if debug:
                logger.debug(f"Strategy {strategy.name} produced {len(batch)}")
            return batch
    return []
