"""Browser factory and per-scan browser sessions.

Each scan launches its own browser process through ``BrowserFactory.launch``
and receives a ``BrowserSession``. The session is an async context manager,
so the browser and every page it opened are released on every exit path of
the caller, including exceptions and cancellation.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

from playwright.async_api import (
    Browser,
    BrowserContext,
    Page,
    Playwright,
    async_playwright,
)

from ...config import DEFAULT_USER_AGENT, EngineSettings

logger = logging.getLogger(__name__)


class BrowserEngineType:
    """Supported browser engine types."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


class BrowserConfig:
    """Configuration for browser launch and context setup."""

    def __init__(
        self,
        engine: str = BrowserEngineType.CHROMIUM,
        headless: bool = True,
        user_agent: Optional[str] = DEFAULT_USER_AGENT,
        viewport: Optional[Dict[str, int]] = None,
        locale: Optional[str] = None,
        ignore_https_errors: bool = True,
        args: Optional[List[str]] = None,
    ):
        """Initialize browser configuration.

        Args:
            engine: Browser engine to use (chromium, firefox, webkit)
            headless: Run browser in headless mode
            user_agent: User-Agent presented to scanned sites
            viewport: Viewport size dict with 'width' and 'height'
            locale: Locale for the browser context
            ignore_https_errors: Ignore SSL/TLS certificate errors
            args: Extra command line arguments for the browser process
        """
        self.engine = engine
        self.headless = headless
        self.user_agent = user_agent
        self.viewport = viewport or {'width': 1920, 'height': 1080}
        self.locale = locale
        self.ignore_https_errors = ignore_https_errors
        self.args = args or []

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "BrowserConfig":
        return cls(
            engine=settings.browser_engine,
            headless=settings.headless,
            user_agent=settings.user_agent,
        )

    def to_browser_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser launch options."""
        options: Dict[str, Any] = {'headless': self.headless}
        if self.args:
            options['args'] = self.args
        return options

    def to_context_options(self) -> Dict[str, Any]:
        """Convert to Playwright browser context options."""
        options: Dict[str, Any] = {}
        if self.viewport:
            options['viewport'] = self.viewport
        if self.user_agent:
            options['user_agent'] = self.user_agent
        if self.locale:
            options['locale'] = self.locale
        if self.ignore_https_errors:
            options['ignore_https_errors'] = True
        return options


class BrowserSession:
    """One launched browser and its context, owned by a single scan."""

    def __init__(self, playwright: Playwright, browser: Browser, context: BrowserContext):
        self.playwright = playwright
        self.browser = browser
        self.context = context
        self._pages: List[Page] = []
        self._closed = False

    async def new_page(self) -> Page:
        """Open a new tab sharing the session's cookie jar."""
        if self._closed:
            raise RuntimeError("Browser session is closed")
        page = await self.context.new_page()
        self._pages.append(page)
        return page

    @asynccontextmanager
    async def page(self) -> AsyncGenerator[Page, None]:
        """Context manager for a single page that is always closed."""
        page = await self.new_page()
        try:
            yield page
        finally:
            await self._close_page(page)

    async def _close_page(self, page: Page) -> None:
        try:
            if not page.is_closed():
                await page.close()
        except Exception as e:
            logger.debug(f"Error closing page: {e}")
        finally:
            if page in self._pages:
                self._pages.remove(page)

    async def close(self) -> None:
        """Close open pages, the context, the browser and Playwright."""
        if self._closed:
            return
        self._closed = True

        for page in list(self._pages):
            await self._close_page(page)

        try:
            await self.context.close()
        except Exception as e:
            logger.warning(f"Error closing browser context: {e}")

        try:
            await self.browser.close()
        except Exception as e:
            logger.warning(f"Error closing browser: {e}")

        try:
            await self.playwright.stop()
        except Exception as e:
            logger.warning(f"Error stopping Playwright: {e}")

        logger.info("Browser session closed")

    @property
    def is_closed(self) -> bool:
        return self._closed


class BrowserFactory:
    """Launches one browser process per scan."""

    def __init__(self, config: Optional[BrowserConfig] = None):
        self.config = config or BrowserConfig()

    async def start_session(self) -> BrowserSession:
        """Launch a browser and create its context.

        Raises:
            playwright.async_api.Error: If the browser cannot be launched
        """
        logger.info(f"Launching browser with engine: {self.config.engine}")
        playwright = await async_playwright().start()

        try:
            if self.config.engine == BrowserEngineType.FIREFOX:
                browser_type = playwright.firefox
            elif self.config.engine == BrowserEngineType.WEBKIT:
                browser_type = playwright.webkit
            else:
                browser_type = playwright.chromium

            browser = await browser_type.launch(**self.config.to_browser_options())
            context = await browser.new_context(**self.config.to_context_options())
        except Exception as e:
            logger.error(f"Failed to start browser: {e}")
            await playwright.stop()
            raise

        logger.info(f"Browser launched successfully (headless={self.config.headless})")
        return BrowserSession(playwright, browser, context)

    @asynccontextmanager
    async def launch(self) -> AsyncGenerator[BrowserSession, None]:
        """Scoped browser session released on every exit path."""
        session = await self.start_session()
        try:
            yield session
        finally:
            await session.close()
