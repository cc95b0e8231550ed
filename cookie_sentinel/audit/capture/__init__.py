"""Browser capture package for page probing.

This package drives a Playwright browser: scoped per-scan sessions, network
interceptors and the page probe, plus the retry policy applied to probes.
"""

from .browser_factory import BrowserConfig, BrowserEngineType, BrowserFactory, BrowserSession
from .network_observer import NetworkObserver
from .page_probe import PageProbe
from .retry import RetryPolicy, retry_with_backoff

__all__ = [
    'BrowserConfig',
    'BrowserEngineType',
    'BrowserFactory',
    'BrowserSession',
    'NetworkObserver',
    'PageProbe',
    'RetryPolicy',
    'retry_with_backoff',
]
