"""Unit tests for the single page probe."""

from unittest.mock import AsyncMock

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from cookie_sentinel.audit.capture.page_probe import PAGE_SNAPSHOT_SCRIPT, PageProbe
from cookie_sentinel.audit.models.scan import (
    CookieObservation,
    CookieSource,
    FormInfo,
    IframeInfo,
    ScriptCategory,
    ScriptRecord,
    StorageSnapshot,
)
from cookie_sentinel.errors import ProbeError

URL = "https://example.com"

SNAPSHOT = {
    'scripts': [
        {'src': 'https://www.googletagmanager.com/gtm.js?id=GTM-X', 'type': 'text/javascript',
         'async': True, 'defer': False, 'content': None},
        {'src': None, 'type': '', 'async': False, 'defer': False,
         'content': "fbq('init', '123');"},
    ],
    'iframes': [
        {'src': 'https://www.youtube.com/embed/x', 'title': 'Video', 'name': None, 'id': None,
         'width': '560', 'height': '315', 'sandbox': None, 'allow': 'autoplay', 'loading': 'lazy'},
    ],
    'forms': [
        {'action': 'https://example.com/subscribe', 'method': 'post', 'inputs': [
            {'type': 'email', 'name': 'email', 'id': None, 'required': True,
             'autocomplete': 'email', 'pattern': None},
        ]},
    ],
    'storage': {'local': {'theme': 'dark'}, 'session': {}},
}


def by_type(items, cls):
    return [item for item in items if isinstance(item, cls)]


class TestPageProbe:

    @pytest.mark.asyncio
    async def test_collects_all_signals(self, mock_browser, mock_page, classifier, sink):
        mock_page.context.cookies = AsyncMock(return_value=[
            {'name': '_ga', 'value': 'GA1.2.3', 'domain': '.example.com', 'path': '/',
             'expires': -1, 'httpOnly': False, 'secure': False, 'sameSite': 'Lax'},
            {'name': '', 'value': 'nameless'},
        ])
        mock_page.evaluate = AsyncMock(return_value=SNAPSHOT)

        probe = PageProbe(mock_browser, classifier, navigation_timeout_ms=5000)
        await probe.probe(URL, sink)

        mock_page.goto.assert_awaited_once_with(URL, wait_until="load", timeout=5000)
        mock_page.wait_for_load_state.assert_awaited_once_with("networkidle", timeout=5000)
        mock_page.evaluate.assert_awaited_once_with(PAGE_SNAPSHOT_SCRIPT)

        items = sink.drain()
        [cookie] = by_type(items, CookieObservation)
        assert cookie.name == "_ga"
        assert cookie.source == CookieSource.BROWSER
        assert cookie.page_url == URL

        external, inline = by_type(items, ScriptRecord)
        assert external.category == ScriptCategory.TAG_MANAGER
        assert external.load_type == "async"
        assert inline.inline is True
        assert inline.category == ScriptCategory.MARKETING
        assert inline.content_type == "text/javascript"

        [storage] = by_type(items, StorageSnapshot)
        assert storage.local_storage == {'theme': 'dark'}

        [iframe] = by_type(items, IframeInfo)
        assert iframe.src == 'https://www.youtube.com/embed/x'

        [form] = by_type(items, FormInfo)
        assert form.inputs[0].required is True

        mock_page.unroute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_navigation_failure_raises_probe_error(self, mock_browser, mock_page, classifier, sink):
        mock_page.goto = AsyncMock(side_effect=PlaywrightError("net::ERR_NAME_NOT_RESOLVED"))

        probe = PageProbe(mock_browser, classifier)
        with pytest.raises(ProbeError) as exc_info:
            await probe.probe(URL, sink)

        assert exc_info.value.url == URL
        mock_page.unroute.assert_awaited_once()
        mock_page.evaluate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_idle_timeout_is_tolerated(self, mock_browser, mock_page, classifier, sink):
        mock_page.wait_for_load_state = AsyncMock(side_effect=PlaywrightTimeoutError("idle"))
        mock_page.evaluate = AsyncMock(return_value={})

        await PageProbe(mock_browser, classifier).probe(URL, sink)

        [storage] = sink.drain()
        assert isinstance(storage, StorageSnapshot)
        assert storage.page_url == URL

    @pytest.mark.asyncio
    async def test_evaluation_failure_raises_probe_error(self, mock_browser, mock_page, classifier, sink):
        mock_page.evaluate = AsyncMock(side_effect=PlaywrightError("Execution context was destroyed"))

        with pytest.raises(ProbeError):
            await PageProbe(mock_browser, classifier).probe(URL, sink)
