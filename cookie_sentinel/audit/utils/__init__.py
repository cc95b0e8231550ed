"""Audit utilities package."""

from .url_normalizer import (
    normalize,
    get_hostname,
    extract_base_domain,
    path_depth,
    is_valid_http_url,
    URLNormalizationError,
)
from .scope_matcher import ScopeMatcher

__all__ = [
    'normalize',
    'get_hostname',
    'extract_base_domain',
    'path_depth',
    'is_valid_http_url',
    'URLNormalizationError',
    'ScopeMatcher',
]
