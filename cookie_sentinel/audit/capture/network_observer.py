"""Network interceptors for a probed page.

The observer is installed before navigation. Every request passes through a
route handler that tags tracker URLs and then continues the request
unchanged. Responses are inspected asynchronously for Set-Cookie headers
and JavaScript bodies; ``drain()`` waits for that work before the page is
read.
"""

import asyncio
import logging
from typing import Optional, Set

from playwright.async_api import Page, Request, Response, Route

from ..cookies.classification import CookieClassifier
from ..cookies.set_cookie import parse_set_cookie
from ..models.scan import CookieSource

logger = logging.getLogger(__name__)


SET_COOKIE_HEADERS = ('set-cookie', 'set-cookie2')


class NetworkObserver:
    """Observes one page's network traffic and feeds the findings sink."""

    def __init__(
        self,
        page: Page,
        classifier: CookieClassifier,
        sink,
        page_url: Optional[str] = None,
        script_body_timeout_s: float = 2.0
    ):
        """Initialize network observer for a page.

        Args:
            page: Playwright page to observe
            classifier: Classifier for cookies, scripts and requests
            sink: Findings sink receiving observations
            page_url: URL being probed, recorded on every observation
            script_body_timeout_s: Time allowed to read a script body
        """
        self.page = page
        self.classifier = classifier
        self.sink = sink
        self.page_url = page_url
        self.script_body_timeout_s = script_body_timeout_s

        self.requests_seen = 0
        self.trackers_found = 0
        self._pending: Set[asyncio.Task] = set()

    async def install(self) -> None:
        """Install request and response interceptors."""
        await self.page.route("**/*", self._on_route)
        self.page.on("response", self._on_response)
        logger.debug("Network observer interceptors installed")

    async def _on_route(self, route: Route) -> None:
        """Tag the request, then let it through unchanged."""
        try:
            self._inspect_request(route.request)
        finally:
            try:
                await route.continue_()
            except Exception as e:
                logger.debug(f"Failed to continue request: {e}")

    def _inspect_request(self, request: Request) -> None:
        self.requests_seen += 1
        try:
            headers = request.headers
        except Exception as e:
            logger.debug(f"Failed to read request headers: {e}")
            headers = {}

        try:
            tracker = self.classifier.classify_request(
                request.url,
                request.resource_type,
                headers,
                page_url=self.page_url
            )
        except Exception as e:
            logger.warning(f"Error analyzing request {request.url}: {e}")
            return

        if tracker is not None:
            self.trackers_found += 1
            self.sink.add(tracker)
            logger.debug(f"Tracker request ({tracker.tracker_type.value}): {request.url}")

    def _on_response(self, response: Response) -> None:
        """Schedule asynchronous response processing."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, skipping response processing")
            return
        task = loop.create_task(self._process_response(response))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _process_response(self, response: Response) -> None:
        """Parse Set-Cookie headers and classify JavaScript responses."""
        url = response.url
        try:
            await self._collect_set_cookies(response)
        except Exception as e:
            logger.warning(f"Error parsing Set-Cookie headers from {url}: {e}")

        try:
            content_type = (response.headers.get('content-type') or '').lower()
        except Exception as e:
            logger.debug(f"Failed to read response headers from {url}: {e}")
            return

        if 'javascript' not in content_type:
            return

        if response.status >= 400:
            logger.debug(f"Skipping script due to HTTP status {response.status}: {url}")
            return

        try:
            content = await asyncio.wait_for(response.text(), timeout=self.script_body_timeout_s)
        except Exception as e:
            # Body may be unavailable after navigation or on timeout
            logger.debug(f"Failed to read script body from {url}: {e}")
            content = None

        script = self.classifier.classify_script(
            url,
            content,
            content_type=content_type,
            page_url=self.page_url
        )
        self.sink.add(script)
        logger.debug(f"Script classified as {script.category.value}: {url}")

    async def _collect_set_cookies(self, response: Response) -> None:
        headers = await response.headers_array()
        values = [
            header['value'] for header in headers
            if header.get('name', '').lower() in SET_COOKIE_HEADERS
        ]
        if not values:
            return

        for parsed in parse_set_cookie(values):
            observation = self.classifier.classify_cookie(
                parsed,
                source=CookieSource.SET_COOKIE,
                page_url=self.page_url
            )
            self.sink.add(observation)
            logger.debug(f"Cookie from Set-Cookie: {observation.name} ({observation.duration.value})")

    async def drain(self) -> None:
        """Wait for in-flight response processing to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def uninstall(self) -> None:
        """Remove the route handler and cancel leftover response work."""
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        try:
            await self.page.unroute("**/*", self._on_route)
        except Exception as e:
            logger.debug(f"Failed to remove route handler: {e}")
