"""
Headless renderer for pages that only populate listings via JavaScript.

Uses Playwright Chromium with a few stealth tweaks. The browser is launched
lazily on the first render and reused sequentially; concurrent callers queue
on an asyncio.Lock.
"""

import asyncio
import os
from typing import Optional, Sequence
from playwright.async_api import async_playwright, Browser, BrowserContext, Page
import logging

logger = logging.getLogger(__name__)

STEALTH_INIT_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });
    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });
"""


class HeadlessRenderer:
    """
    Render a URL in Chromium and return the resulting DOM as HTML.

    Failures (launch, navigation, timeouts) are soft: render() returns ''.
    """

    def __init__(
        self,
        timeout: float = 8.0,
        headless: bool = True,
        user_agent: Optional[str] = None,
    ):
        """
        Initialize the renderer.

        Args:
            timeout: Navigation timeout in seconds
            headless: Run browser without a window
            user_agent: User-Agent for the browser context
        """
        self.timeout = timeout
        self.headless = headless
        self.user_agent = user_agent or (
            'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
            '(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36'
        )
        self._playwright = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._lock = asyncio.Lock()

    @property
    def started(self) -> bool:
        return self._browser is not None

    async def _init_browser(self):
        """Launch Playwright and create a context if not already done."""
        if self._browser is not None and self._browser.is_connected():
            return

        await self._cleanup()
        self._playwright = await async_playwright().start()

        chromium_path = self._playwright.chromium.executable_path
        if not chromium_path or not os.path.exists(chromium_path):
            await self._cleanup()
            raise RuntimeError("Chromium browser not found. Run: playwright install chromium")

        logger.debug("Launching Chromium browser...")
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=[
                '--disable-blink-features=AutomationControlled',
                '--disable-dev-shm-usage',
                '--no-sandbox',
                '--disable-gpu',
            ],
            handle_sigint=False,
            handle_sigterm=False,
            handle_sighup=False,
        )
        self._context = await self._browser.new_context(
            viewport={'width': 1366, 'height': 900},
            user_agent=self.user_agent,
            locale='en-US',
            ignore_https_errors=True,
            extra_http_headers={'Accept-Language': 'en-US,en;q=0.9'},
        )
        await self._context.add_init_script(STEALTH_INIT_SCRIPT)

    async def _cleanup(self):
        """Close browser resources, tolerating partially initialized state."""
        cleanup_timeout = 2.0

        if self._context:
            try:
                await asyncio.wait_for(self._context.close(), timeout=cleanup_timeout)
            except asyncio.TimeoutError:
                logger.warning("Context close timed out, forcing cleanup")
            except Exception as e:
                logger.debug(f"Error closing context: {e}")
            self._context = None

        if self._browser:
            try:
                await asyncio.wait_for(self._browser.close(), timeout=cleanup_timeout)
            except asyncio.TimeoutError:
                logger.warning("Browser close timed out, forcing cleanup")
            except Exception as e:
                logger.debug(f"Error closing browser: {e}")
            self._browser = None

        if self._playwright:
            try:
                await asyncio.wait_for(self._playwright.stop(), timeout=cleanup_timeout)
            except asyncio.TimeoutError:
                logger.warning("Playwright stop timed out, forcing cleanup")
            except Exception as e:
                logger.debug(f"Error stopping playwright: {e}")
            self._playwright = None

    async def render(
        self,
        url: str,
        settle: float = 1.2,
        wait_selectors: Sequence[str] = (),
    ) -> str:
        """
        Navigate to a URL and return the rendered HTML.

        Args:
            url: URL to render
            settle: Seconds to wait after DOMContentLoaded for scripts to run
            wait_selectors: Selectors to wait for briefly, first hit wins

        Returns:
            Rendered HTML, or '' on any failure
        """
        async with self._lock:
            page: Optional[Page] = None
            try:
                await self._init_browser()
                page = await self._context.new_page()
                await page.goto(url, wait_until='domcontentloaded', timeout=int(self.timeout * 1000))
                await asyncio.sleep(settle)
                for selector in wait_selectors:
                    try:
                        await page.wait_for_selector(selector, timeout=1500)
                        break
                    except Exception:
                        continue
                try:
                    await page.evaluate("window.scrollTo(0, document.body.scrollHeight / 2)")
                except Exception:
                    pass  # Scroll only triggers lazy images
                return await page.content()
            except Exception as e:
                logger.debug(f"Headless render failed for {url}: {e}")
                return ''
            finally:
                if page is not None:
                    try:
                        await page.close()
                    except Exception as e:
                        logger.debug(f"Error closing page: {e}")

    async def close(self):
        """Close the browser and cleanup resources."""
        async with self._lock:
            await self._cleanup()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
