"""Single page probe.

A probe drives one browser tab through one URL: it installs the network
interceptors, navigates with a hard timeout, waits for the network to
settle, then reads cookies, scripts, storage, iframes and forms. All
observations go to the findings sink; the probe itself keeps no state
between pages.
"""

import logging
from typing import Any, Dict, Optional

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ...errors import ProbeError
from ..cookies.classification import CookieClassifier
from ..cookies.set_cookie import ParsedCookie
from ..models.scan import (
    CookieSource,
    FormInfo,
    FormInput,
    IframeInfo,
    StorageSnapshot,
)
from .network_observer import NetworkObserver

logger = logging.getLogger(__name__)


PAGE_SNAPSHOT_SCRIPT = r'''
() => {
    const str = (value) => (value === undefined || value === null || value === '') ? null : String(value);
    const readStorage = (storage) => {
        const result = {};
        try {
            for (let i = 0; i < storage.length; i++) {
                const key = storage.key(i);
                result[key] = storage.getItem(key);
            }
        } catch (e) {}
        return result;
    };

    const scripts = Array.from(document.querySelectorAll('script')).map(script => ({
        src: script.src || null,
        type: script.type || 'text/javascript',
        async: !!script.async,
        defer: !!script.defer,
        content: script.src ? null : (script.innerText || '').slice(0, 20000)
    }));

    const iframes = Array.from(document.querySelectorAll('iframe')).map(iframe => ({
        src: str(iframe.src),
        title: str(iframe.title),
        name: str(iframe.name),
        id: str(iframe.id),
        width: str(iframe.width),
        height: str(iframe.height),
        sandbox: iframe.sandbox ? str(iframe.sandbox.value) : null,
        allow: str(iframe.allow),
        loading: str(iframe.loading)
    }));

    const forms = Array.from(document.querySelectorAll('form')).map(form => ({
        action: str(form.action),
        method: str(form.method),
        inputs: Array.from(form.querySelectorAll('input')).map(input => ({
            type: str(input.type),
            name: str(input.name),
            id: str(input.id),
            required: !!input.required,
            autocomplete: str(input.autocomplete),
            pattern: str(input.pattern)
        }))
    }));

    return {
        scripts,
        iframes,
        forms,
        storage: {
            local: readStorage(window.localStorage),
            session: readStorage(window.sessionStorage)
        }
    };
}
'''


class PageProbe:
    """Visits one URL and reports everything it emits."""

    def __init__(
        self,
        browser,
        classifier: CookieClassifier,
        navigation_timeout_ms: int = 20000,
        idle_timeout_ms: Optional[int] = None
    ):
        """Initialize the probe.

        Args:
            browser: Browser session providing a ``page()`` context manager
            classifier: Classifier used for every observation
            navigation_timeout_ms: Hard navigation timeout
            idle_timeout_ms: Time allowed for the network to go idle after
                load, defaults to the navigation timeout
        """
        self.browser = browser
        self.classifier = classifier
        self.navigation_timeout_ms = navigation_timeout_ms
        self.idle_timeout_ms = idle_timeout_ms or navigation_timeout_ms

    async def probe(self, url: str, sink) -> None:
        """Probe a URL, appending observations to the sink.

        Raises:
            ProbeError: If navigation or page evaluation fails
        """
        async with self.browser.page() as page:
            observer = NetworkObserver(page, self.classifier, sink, page_url=url)
            await observer.install()
            try:
                await self._navigate(page, url)
                await observer.drain()
                await self._collect_cookies(page, url, sink)
                await self._collect_page_snapshot(page, url, sink)
            finally:
                await observer.uninstall()

        logger.debug(
            f"Probe finished for {url} "
            f"({observer.requests_seen} requests, {observer.trackers_found} trackers)"
        )

    async def _navigate(self, page: Page, url: str) -> None:
        try:
            await page.goto(url, wait_until="load", timeout=self.navigation_timeout_ms)
        except PlaywrightError as e:
            raise ProbeError(f"Navigation failed for {url}: {e}", url=url) from e

        try:
            await page.wait_for_load_state("networkidle", timeout=self.idle_timeout_ms)
        except PlaywrightTimeoutError:
            # Long-polling pages never go idle; continue with what loaded
            logger.warning(f"Network idle wait timed out for {url}")

    async def _collect_cookies(self, page: Page, url: str, sink) -> None:
        try:
            cookies = await page.context.cookies()
        except PlaywrightError as e:
            raise ProbeError(f"Failed to read cookies for {url}: {e}", url=url) from e

        for cookie in cookies:
            parsed = ParsedCookie.from_playwright(cookie)
            if not parsed.name:
                continue
            sink.add(self.classifier.classify_cookie(parsed, source=CookieSource.BROWSER, page_url=url))

    async def _collect_page_snapshot(self, page: Page, url: str, sink) -> None:
        try:
            snapshot: Dict[str, Any] = await page.evaluate(PAGE_SNAPSHOT_SCRIPT) or {}
        except PlaywrightError as e:
            raise ProbeError(f"Page evaluation failed for {url}: {e}", url=url) from e

        for script in snapshot.get('scripts', []):
            load_type = 'async' if script.get('async') else ('defer' if script.get('defer') else 'sync')
            sink.add(self.classifier.classify_script(
                script.get('src'),
                script.get('content'),
                content_type=script.get('type') or 'text/javascript',
                load_type=load_type,
                page_url=url
            ))

        storage = snapshot.get('storage') or {}
        sink.add(StorageSnapshot(
            page_url=url,
            local_storage=storage.get('local') or {},
            session_storage=storage.get('session') or {},
        ))

        for iframe in snapshot.get('iframes', []):
            sink.add(IframeInfo(page_url=url, **iframe))

        for form in snapshot.get('forms', []):
            sink.add(FormInfo(
                page_url=url,
                action=form.get('action'),
                method=form.get('method'),
                inputs=[FormInput(**field) for field in form.get('inputs', [])],
            ))
