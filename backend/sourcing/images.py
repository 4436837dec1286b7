"""
Image candidate resolution for listing detail pages.

Search-result cards often carry a tiny thumbnail or a lazy-load placeholder.
ImageResolver fetches the detail page, gathers every plausible product image,
drops anything off the source CDN or obviously decorative, and ranks the rest
by advertised size and format.
"""

import re
import logging
from typing import Iterable, List, Optional, Pattern, Sequence
from urllib.parse import urlparse
from bs4 import BeautifulSoup

from .base import SourceConfig
from .config import SOURCES
from .crawlers import StaticCrawler, HeadlessRenderer
from .utils import to_absolute, parse_srcset, iter_json_ld, content_hash

logger = logging.getLogger(__name__)

# Content hashes of known blurry placeholders served by the IndiaMART CDN
BAD_IMAGE_HASHES = frozenset({
    '4e70cc58277297de2d4741c437c9dc425c4f8adb',
    'e7cc244e1d0f558ae9669f57b973758bc14103ee',
    'bbb71cb4979e0c433b6f0ac4eabc2d688e809d39',
})

BLOCKED_PATTERNS = [
    re.compile(r'countrySvg\.png', re.IGNORECASE),
    re.compile(r'\.svg(\?|$)', re.IGNORECASE),
    re.compile(r'sprite|icon|placeholder|logo|flag', re.IGNORECASE),
]

INLINE_IMAGE_RE = re.compile(
    r'"(?:image|imageUrl|mainImageUrl|prodImg|prdimg|zoomImg)"\s*:\s*"([^"]+)"',
    re.IGNORECASE,
)
SIZE_RE = re.compile(r'(\d{3,4})x(\d{3,4})')
LARGE_RE = re.compile(r'1000x1000|/large/|/zoom/|-zoom', re.IGNORECASE)
SMALL_RE = re.compile(r'thumb|thumbnail|small|_s\.|icon|/t/', re.IGNORECASE)
JPEG_RE = re.compile(r'\.jpe?g(\?|$)', re.IGNORECASE)
PNG_RE = re.compile(r'\.png(\?|$)', re.IGNORECASE)
WEBP_RE = re.compile(r'\.webp(\?|$)', re.IGNORECASE)

# Selectors tried on a rendered page when the static HTML had nothing usable
HEADLESS_SELECTORS = ['#prdimgdiv', '.prd_img img', 'img[data-zoom]', 'img[data-large]', 'img']


def score_image_url(url: str) -> float:
    """
    Rank an image URL by advertised size and format; higher is better.

    Examples:
        '.../1000x1000/a.jpg' -> 1e6 + 1e6 + 2e6 + 50000
        '.../thumb/a.png'     -> 25000 - 500000
    """
    score = 0.0
    match = SIZE_RE.search(url)
    if match:
        area = int(match.group(1)) * int(match.group(2))
        score += area + (area * area) / 1e6
    if LARGE_RE.search(url):
        score += 2_000_000
    if JPEG_RE.search(url):
        score += 50_000
    elif PNG_RE.search(url):
        score += 25_000
    elif WEBP_RE.search(url):
        score += 20_000
    if SMALL_RE.search(url):
        score -= 500_000
    return score


def is_blocked(url: str, allowed_hosts: Sequence[Pattern]) -> bool:
    """True when the URL is decorative or not served from an allowed CDN host."""
    if not url:
        return True
    if any(rx.search(url) for rx in BLOCKED_PATTERNS):
        return True
    try:
        host = (urlparse(url).hostname or '').lower()
    except ValueError:
        return True
    if not host:
        return True
    if allowed_hosts and not any(rx.search(host) for rx in allowed_hosts):
        return True
    return False


def rank_candidates(candidates: Iterable[str], allowed_hosts: Sequence[Pattern]) -> List[str]:
    """Filter blocked URLs and sort by score; ties keep their original order."""
    kept = [u for u in candidates if not is_blocked(u, allowed_hosts)]
    return sorted(kept, key=score_image_url, reverse=True)


def pick_best(ranked: Sequence[str], bad_hashes: Iterable[str] = BAD_IMAGE_HASHES) -> Optional[str]:
    """First ranked URL whose embedded content hash is not blacklisted."""
    bad = set(bad_hashes)
    for url in ranked:
        h = content_hash(url)
        if not h or h not in bad:
            return url
    return None


def collect_candidates(html: str, base_url: str) -> List[str]:
    """
    Gather image URLs from a detail page in order of trust.

    Args:
        html: Detail page HTML
        base_url: Page URL used to absolutize relative references

    Returns:
        Absolute URLs, de-duplicated keeping first position
    """
    soup = BeautifulSoup(html or '', 'html.parser')
    found: List[str] = []

    def add(raw: Optional[str]):
        if not raw or not isinstance(raw, str):
            return
        url = to_absolute(raw, base_url)
        if url and url not in found:
            found.append(url)

    main = soup.select_one('#prdimgdiv')
    if main is not None:
        for attr in ('data-zoom', 'data-large', 'src'):
            add(main.get(attr))
        for u in parse_srcset(main.get('srcset')):
            add(u)

    for img in soup.select('.prd_img img, img.drift-demo-trigger, .product-image img, .pdp-image img'):
        add(img.get('data-zoom') or img.get('data-src') or img.get('src'))
        for u in parse_srcset(img.get('srcset')):
            add(u)

    for meta in soup.select('meta[property="og:image"], meta[name="twitter:image"]'):
        add(meta.get('content'))

    link = soup.select_one('link[rel="image_src"]')
    if link is not None:
        add(link.get('href'))

    for data in iter_json_ld(soup):
        if not isinstance(data, dict):
            continue
        image = data.get('image')
        if isinstance(image, str):
            add(image)
        elif isinstance(image, list):
            for item in image:
                add(item.get('url') if isinstance(item, dict) else item)
        elif isinstance(image, dict):
            add(image.get('url'))

    for script in soup.find_all('script'):
        if script.get('type'):
            continue
        for match in INLINE_IMAGE_RE.finditer(script.string or ''):
            add(match.group(1).replace('\\/', '/'))

    return found


class ImageResolver:
    """Resolve the best product image for a detail-page URL."""

    def __init__(
        self,
        crawler: StaticCrawler,
        renderer: Optional[HeadlessRenderer] = None,
        source: Optional[SourceConfig] = None,
        timeout: float = 3.5,
        settle: float = 1.2,
        bad_hashes: Iterable[str] = BAD_IMAGE_HASHES,
    ):
        self.crawler = crawler
        self.renderer = renderer
        self.source = source or SOURCES['indiamart']
        self.timeout = timeout
        self.settle = settle
        self.bad_hashes = frozenset(h.lower() for h in bad_hashes)
        self.allowed_hosts = [re.compile(p, re.IGNORECASE) for p in self.source.image_hosts]

    async def resolve_image_candidates(self, detail_url: str) -> List[str]:
        """
        Ranked, filtered image candidates for a detail page.

        Returns [] on any fetch or parse failure.
        """
        try:
            html = await self.crawler.fetch_text_or_empty(detail_url, timeout=self.timeout)
            ranked = rank_candidates(collect_candidates(html, detail_url), self.allowed_hosts) if html else []
            if not ranked and self.renderer is not None:
                ranked = await self._render_candidates(detail_url)
            return ranked
        except Exception as e:
            logger.debug(f"Image candidate resolution failed for {detail_url}: {e}")
            return []

    async def resolve_best_image(self, detail_url: str) -> Optional[str]:
        """Best non-blacklisted image for a detail page, or None."""
        ranked = await self.resolve_image_candidates(detail_url)
        if not ranked:
            return None
        return pick_best(ranked, self.bad_hashes)

    async def _render_candidates(self, detail_url: str) -> List[str]:
        html = await self.renderer.render(detail_url, settle=self.settle, wait_selectors=HEADLESS_SELECTORS[:2])
        if not html:
            return []
        ranked = rank_candidates(collect_candidates(html, detail_url), self.allowed_hosts)
        if ranked:
            return ranked

        # Rendered DOM without product-image markup: take any CDN image
        soup = BeautifulSoup(html, 'html.parser')
        for selector in HEADLESS_SELECTORS[2:]:
            urls = []
            for img in soup.select(selector):
                raw = img.get('data-zoom') or img.get('data-large') or img.get('data-src') or img.get('src')
                url = to_absolute(raw, detail_url) if raw else ''
                if url and url not in urls:
                    urls.append(url)
            ranked = rank_candidates(urls, self.allowed_hosts)
            if ranked:
                logger.debug(f"Headless image fallback matched '{selector}' for {detail_url}")
                return ranked
        return []
