"""Breadth-first URL discovery for a scan.

The frontier visits pages of the scanned site through a single browser tab,
extracts link targets, normalizes and scope-filters them, and returns the
discovered URLs in insertion order. Discovery always returns at least the
seed; one unreachable page is logged and skipped.
"""

import logging
from collections import deque
from typing import Any, Deque, Dict, List, Optional

from playwright.async_api import Error as PlaywrightError

from ..errors import DiscoveryError
from .utils.scope_matcher import ScopeMatcher
from .utils.url_normalizer import URLNormalizationError, normalize

logger = logging.getLogger(__name__)


# Collects anchor hrefs, form actions and inline onclick navigations
EXTRACT_LINKS_SCRIPT = r'''
() => {
    const links = [];
    document.querySelectorAll('a[href]').forEach(anchor => {
        const href = anchor.getAttribute('href');
        if (href) links.push(href);
    });
    document.querySelectorAll('form[action]').forEach(form => {
        const action = form.getAttribute('action');
        if (action) links.push(action);
    });
    document.querySelectorAll('[onclick]').forEach(element => {
        const onclick = element.getAttribute('onclick') || '';
        const match = onclick.match(/(?:location\.href|window\.location)\s*=\s*["']([^"']+)["']/);
        if (match) links.push(match[1]);
    });
    return links;
}
'''


class DiscoveryStats:
    """Counters for one discovery run."""

    def __init__(self):
        self.pages_visited = 0
        self.pages_failed = 0
        self.links_seen = 0
        self.links_out_of_scope = 0

    def export(self) -> Dict[str, Any]:
        return {
            'pages_visited': self.pages_visited,
            'pages_failed': self.pages_failed,
            'links_seen': self.links_seen,
            'links_out_of_scope': self.links_out_of_scope,
        }


class UrlFrontier:
    """Breadth-first discovery of same-site URLs bounded by a URL budget."""

    def __init__(self, browser, navigation_timeout_ms: int = 20000):
        """Initialize the frontier.

        Args:
            browser: Browser session providing a ``page()`` context manager
            navigation_timeout_ms: Navigation timeout per visited page
        """
        self.browser = browser
        self.navigation_timeout_ms = navigation_timeout_ms
        self.stats = DiscoveryStats()

    async def discover(
        self,
        seed_url: str,
        max_urls: int = 100,
        include_subdomains: bool = False,
        max_depth: Optional[int] = None
    ) -> List[str]:
        """Discover URLs reachable from the seed.

        Args:
            seed_url: Starting URL
            max_urls: URL budget, including the seed
            include_subdomains: Accept sibling subdomains of the seed
            max_depth: Maximum path depth of accepted URLs

        Returns:
            Discovered URLs in the order they were first seen, seed first
        """
        seed = normalize(seed_url)
        scope = ScopeMatcher(seed, include_subdomains=include_subdomains, max_depth=max_depth)

        # Dict keeps insertion order for the result
        discovered: Dict[str, None] = {seed: None}
        visited = set()
        queue: Deque[str] = deque([seed])

        logger.info(
            f"Starting URL discovery from {seed} "
            f"(max_urls={max_urls}, include_subdomains={include_subdomains})"
        )

        try:
            async with self.browser.page() as page:
                while queue and len(discovered) < max_urls:
                    current = queue.popleft()
                    if current in visited:
                        continue
                    visited.add(current)

                    try:
                        links = await self._extract_links(page, current)
                    except DiscoveryError as e:
                        self.stats.pages_failed += 1
                        logger.warning(f"Skipping unreachable page during discovery: {e}")
                        continue

                    self.stats.pages_visited += 1
                    for link in links:
                        if len(discovered) >= max_urls:
                            break
                        candidate = self._accept(link, current, scope)
                        if candidate and candidate not in discovered:
                            discovered[candidate] = None
                            queue.append(candidate)

        except PlaywrightError as e:
            logger.error(f"URL discovery aborted for {seed}: {e}")

        urls = list(discovered)
        logger.info(f"Discovered {len(urls)} URLs from {seed}")
        return urls

    def _accept(self, link: str, base_url: str, scope: ScopeMatcher) -> Optional[str]:
        """Normalize a raw link target and apply the scope rules."""
        self.stats.links_seen += 1

        if not isinstance(link, str) or not scope.is_navigable(link):
            return None

        try:
            normalized = normalize(link, base_url=base_url)
        except URLNormalizationError:
            return None

        if not scope.is_in_scope(normalized):
            self.stats.links_out_of_scope += 1
            return None

        return normalized

    async def _extract_links(self, page, url: str) -> List[str]:
        """Visit a page and return raw link targets.

        Raises:
            DiscoveryError: If navigation or link extraction fails
        """
        try:
            await page.goto(
                url,
                wait_until="domcontentloaded",
                timeout=self.navigation_timeout_ms
            )
            links = await page.evaluate(EXTRACT_LINKS_SCRIPT)
        except PlaywrightError as e:
            raise DiscoveryError(f"Failed to visit {url}: {e}", url=url) from e

        logger.debug(f"Extracted {len(links or [])} links from {url}")
        return list(links or [])
