"""Shared test fixtures and configuration for Cookie Sentinel tests."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from cookie_sentinel.audit.aggregation import FindingsSink
from cookie_sentinel.audit.cookies.classification import CookieClassifier
from cookie_sentinel.audit.cookies.providers import KnownProviderDirectory
from cookie_sentinel.config import EngineSettings
from cookie_sentinel.persistence import DatabaseConfig


@pytest_asyncio.fixture(scope="function")
async def test_db_config() -> AsyncGenerator[DatabaseConfig, None]:
    """Create test database configuration with in-memory SQLite."""
    config = DatabaseConfig(url="sqlite+aiosqlite:///:memory:", echo=False)
    await config.create_all()

    yield config

    await config.close()


@pytest.fixture
def classifier():
    """Classifier backed by the built-in provider directory."""
    return CookieClassifier(KnownProviderDirectory())


@pytest.fixture
def sink():
    return FindingsSink()


@pytest.fixture
def settings():
    """Fast settings: no backoff delay, small batches."""
    return EngineSettings(
        max_concurrent_scans=2,
        max_retries=3,
        retry_delay_ms=0,
        scan_timeout_ms=5000,
        max_pages_per_scan=10,
    )


@pytest.fixture
def mock_page():
    """Mock Playwright page."""
    page = AsyncMock()
    page.on = MagicMock()
    page.remove_listener = MagicMock()
    page.context = MagicMock()
    page.context.cookies = AsyncMock(return_value=[])
    return page


@pytest.fixture
def mock_browser(mock_page):
    """Mock browser session whose page() context manager yields mock_page."""
    browser = MagicMock()

    @asynccontextmanager
    async def page():
        yield mock_page

    browser.page = page
    browser.new_page = AsyncMock(return_value=mock_page)
    browser.close = AsyncMock()
    return browser
