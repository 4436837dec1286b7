"""
Static HTML fetcher built on httpx.

Used for search-result pages, detail pages and the export directory. None of
these need JavaScript rendering, so a pooled async HTTP client is enough.
"""

import asyncio
import time
from typing import Optional, Dict
from bs4 import BeautifulSoup
import httpx
import logging

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'Accept-Encoding': 'gzip, deflate',
}


class StaticCrawler:
    """
    Wrapper for fetching static HTML pages.

    Uses httpx for async HTTP requests and BeautifulSoup for parsing.
    Provides rate limiting, connection pooling, and retries.
    """

    def __init__(
        self,
        rate_limit: float = 0.0,
        timeout: float = 8.0,
        max_retries: int = 2,
        headers: Optional[Dict[str, str]] = None
    ):
        """
        Initialize the static crawler.

        Args:
            rate_limit: Seconds to wait between requests
            timeout: Default request timeout in seconds
            max_retries: Number of attempts per fetch
            headers: Default HTTP headers
        """
        self.rate_limit = rate_limit
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.headers = headers or dict(DEFAULT_HEADERS)
        self._last_request_time = 0.0
        self._client: Optional[httpx.AsyncClient] = None

    async def _wait_for_rate_limit(self):
        """Wait to respect rate limit."""
        if self.rate_limit <= 0:
            return
        elapsed = time.time() - self._last_request_time
        if elapsed < self.rate_limit:
            await asyncio.sleep(self.rate_limit - elapsed)
        self._last_request_time = time.time()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create reusable HTTP client with connection pooling."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.timeout,
                headers=self.headers,
                limits=httpx.Limits(
                    max_keepalive_connections=5,
                    max_connections=10,
                    keepalive_expiry=30.0
                )
            )
        return self._client

    async def close(self):
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _get(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
    ) -> httpx.Response:
        await self._wait_for_rate_limit()
        client = await self._get_client()
        attempts = max(1, retries if retries is not None else self.max_retries)

        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            try:
                response = await client.get(url, headers=headers, timeout=timeout or self.timeout)
                response.raise_for_status()
                return response
            except httpx.HTTPError as e:
                last_error = e
                logger.warning(f"Attempt {attempt + 1}/{attempts} failed for {url}: {e}")
                if attempt < attempts - 1:
                    await asyncio.sleep(2 ** attempt)  # Exponential backoff

        raise last_error

    async def fetch(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
    ) -> str:
        """
        Fetch a URL and return HTML content.

        Args:
            url: URL to fetch
            headers: Extra headers merged over the defaults (e.g. a rotated User-Agent)
            timeout: Per-call timeout, defaults to the crawler timeout
            retries: Per-call attempt count, defaults to max_retries

        Returns:
            HTML content as string

        Raises:
            httpx.HTTPError: On request failure or non-2xx status after retries
        """
        logger.debug(f"StaticCrawler fetching: {url}")
        response = await self._get(url, headers=headers, timeout=timeout, retries=retries)
        return response.text

    async def fetch_text_or_empty(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Single-attempt fetch that returns '' instead of raising."""
        try:
            return await self.fetch(url, headers=headers, timeout=timeout, retries=1)
        except httpx.HTTPError as e:
            logger.debug(f"Fetch failed for {url}: {e}")
            return ''

    async def fetch_bytes(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> bytes:
        """
        Fetch a binary payload (images).

        Raises:
            httpx.HTTPError: On request failure
        """
        response = await self._get(url, headers=headers, timeout=timeout, retries=1)
        return response.content

    async def fetch_soup(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> BeautifulSoup:
        """
        Fetch a URL and return parsed BeautifulSoup.

        Args:
            url: URL to fetch
            headers: Extra headers

        Returns:
            BeautifulSoup object
        """
        html = await self.fetch(url, headers=headers)
        return BeautifulSoup(html, 'html.parser')
