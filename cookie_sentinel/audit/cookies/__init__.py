"""Cookie, script and request classification."""

from .classification import (
    CookieClassifier,
    classify_category,
    classify_duration,
    classify_request,
    classify_script,
    detect_tracker,
    filter_headers,
    is_first_party,
    resolve_expiry,
)
from .providers import KnownProviderDirectory, ProviderDirectory, ProviderMatch
from .set_cookie import ParsedCookie, parse_set_cookie

__all__ = [
    'CookieClassifier',
    'classify_category',
    'classify_duration',
    'classify_request',
    'classify_script',
    'detect_tracker',
    'filter_headers',
    'is_first_party',
    'resolve_expiry',
    'KnownProviderDirectory',
    'ProviderDirectory',
    'ProviderMatch',
    'ParsedCookie',
    'parse_set_cookie',
]
