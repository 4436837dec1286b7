"""
Local mirror for remote product images.

Marketplace CDNs throttle hot-linking, so listings can have their image
copied into a local cache directory and served from /cache/.
"""

import hashlib
import logging
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse
import httpx

from .crawlers import StaticCrawler
from .images import BAD_IMAGE_HASHES

logger = logging.getLogger(__name__)

ALLOWED_HOST_SUFFIXES = (
    '.alibaba.com',
    '.alicdn.com',
    '.1688.com',
    '.made-in-china.com',
    '.micstatic.com',
    '.indiamart.com',
    '.imimg.com',
)
MIN_IMAGE_BYTES = 4000
KNOWN_EXTS = ('jpg', 'png', 'webp', 'gif')


def is_allowed_host(hostname: str) -> bool:
    host = (hostname or '').lower()
    return any(host == suffix[1:] or host.endswith(suffix) for suffix in ALLOWED_HOST_SUFFIXES)


def referer_for_host(hostname: str) -> Optional[str]:
    host = (hostname or '').lower()
    if '1688' in host:
        return 'https://s.1688.com/'
    if 'alicdn' in host or 'alibaba' in host:
        return 'https://www.alibaba.com/'
    if 'made-in-china' in host or 'micstatic' in host:
        return 'https://www.made-in-china.com/'
    if 'indiamart' in host or 'imimg' in host:
        return 'https://dir.indiamart.com/'
    return None


def detect_image_ext(data: bytes) -> Optional[str]:
    """Image type from magic bytes, or None if unrecognized."""
    if len(data) < 12:
        return None
    if data[:2] == b'\xff\xd8':
        return 'jpg'
    if data[:8] == b'\x89PNG\r\n\x1a\n':
        return 'png'
    if data[:4] == b'RIFF' and data[8:12] == b'WEBP':
        return 'webp'
    if data[:6] in (b'GIF87a', b'GIF89a'):
        return 'gif'
    return None


class ImageCache:
    """Download allow-listed images into a content-addressed directory."""

    def __init__(self, crawler: StaticCrawler, cache_dir: str, url_prefix: str = '/cache', timeout: float = 8.0):
        self.crawler = crawler
        self.cache_dir = Path(cache_dir)
        self.url_prefix = url_prefix.rstrip('/')
        self.timeout = timeout

    def _normalize(self, raw: str) -> str:
        src = unquote(raw.strip())
        if src.startswith('//'):
            src = 'https:' + src
        return src

    def _existing(self, digest: str) -> Optional[str]:
        for ext in KNOWN_EXTS:
            if (self.cache_dir / f"{digest}.{ext}").exists():
                return f"{self.url_prefix}/{digest}.{ext}"
        return None

    async def mirror(self, url: str) -> Optional[str]:
        """
        Mirror an image and return its local path.

        Args:
            url: Remote image URL

        Returns:
            '/cache/<sha1>.<ext>', or None when the host is not allowed, the
            download fails, or the payload is not a real image
        """
        if not url or url.startswith(self.url_prefix + '/'):
            return url or None
        src = self._normalize(url)
        try:
            parsed = urlparse(src)
        except ValueError:
            return None
        if parsed.scheme not in ('http', 'https') or not is_allowed_host(parsed.hostname or ''):
            logger.debug(f"Image host not allowed: {src}")
            return None

        digest = hashlib.sha1(src.encode('utf-8')).hexdigest()
        if digest in BAD_IMAGE_HASHES:
            return None
        existing = self._existing(digest)
        if existing:
            return existing

        headers = {'Accept': 'image/avif,image/webp,image/*,*/*;q=0.8'}
        referer = referer_for_host(parsed.hostname or '')
        if referer:
            headers['Referer'] = referer
        try:
            data = await self.crawler.fetch_bytes(src, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            logger.debug(f"Image download failed for {src}: {e}")
            return None

        if len(data) < MIN_IMAGE_BYTES:
            logger.debug(f"Image too small ({len(data)} bytes): {src}")
            return None
        ext = detect_image_ext(data)
        if ext is None:
            logger.debug(f"Unrecognized image payload: {src}")
            return None
        if hashlib.sha1(data).hexdigest() in BAD_IMAGE_HASHES:
            return None

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        target = self.cache_dir / f"{digest}.{ext}"
        tmp = target.with_suffix(target.suffix + '.tmp')
        tmp.write_bytes(data)
        tmp.replace(target)
        return f"{self.url_prefix}/{digest}.{ext}"
