"""Test configuration and fixtures for persistence and inventory tests."""

from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from cookie_sentinel.audit.models.scan import (
    CookieCategory,
    CookieObservation,
    CookieSource,
    DurationBucket,
)
from cookie_sentinel.persistence import DatabaseConfig, ScanDAO
from cookie_sentinel.scheduling import DomainScanConfig


@pytest_asyncio.fixture
async def db_session(test_db_config: DatabaseConfig) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with test_db_config.session() as session:
        yield session


@pytest_asyncio.fixture
async def dao(db_session: AsyncSession) -> ScanDAO:
    """Create DAO instance with test session."""
    return ScanDAO(db_session)


@pytest_asyncio.fixture
async def domain_id(test_db_config: DatabaseConfig) -> str:
    """Committed domain row for example.com."""
    async with test_db_config.session() as session:
        row = await ScanDAO(session).create_domain(
            "example.com",
            DomainScanConfig().model_dump(mode="json")
        )
        return row.id


def _make_cookie(
    name: str,
    path: str = "/",
    domain: Optional[str] = ".example.com",
    provider: str = "Unknown",
    category: CookieCategory = CookieCategory.UNKNOWN,
    **kwargs
) -> CookieObservation:
    """Classified cookie observation with test defaults."""
    kwargs.setdefault('duration', DurationBucket.SESSION)
    kwargs.setdefault('source', CookieSource.BROWSER)
    kwargs.setdefault('page_url', "https://example.com")
    return CookieObservation(
        name=name,
        path=path,
        domain=domain,
        provider=provider,
        category=category,
        **kwargs
    )


@pytest.fixture
def make_cookie():
    """Factory for classified cookie observations."""
    return _make_cookie


@pytest.fixture
def ga_cookie() -> CookieObservation:
    return _make_cookie(
        "_ga",
        provider="Google Analytics",
        category=CookieCategory.ANALYTICS,
        duration=DurationBucket.LONG_TERM,
    )
