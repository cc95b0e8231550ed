"""URL normalization utility for consistent deduplication during discovery.

Discovered URLs are canonicalized before they enter the frontier so the
same page reached through tracking links, plain http or a trailing slash is
visited only once.
"""

from typing import Optional
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse


# Query parameters that identify a campaign, not a page
TRACKING_PARAMS = frozenset({'utm_source', 'utm_medium', 'utm_campaign', 'fbclid'})


class URLNormalizationError(Exception):
    """Raised when URL normalization fails."""
    pass


def normalize(url: str, base_url: Optional[str] = None) -> str:
    """Normalize a URL for consistent deduplication and comparison.

    Tracking query parameters are removed, the scheme is forced to https,
    the host is lowercased, the fragment is dropped and a trailing slash is
    stripped from the path.

    Args:
        url: The URL to normalize, absolute or relative to base_url
        base_url: Optional page URL used to resolve relative links

    Returns:
        The normalized URL string

    Raises:
        URLNormalizationError: If the URL cannot be normalized

    Example:
        >>> normalize("http://Example.com/about/?utm_source=x&id=3#top")
        "https://example.com/about?id=3"
    """
    if not url or not isinstance(url, str):
        raise URLNormalizationError("URL must be a non-empty string")

    url = url.strip()
    if not url:
        raise URLNormalizationError("URL cannot be empty or whitespace only")

    if base_url:
        url = urljoin(base_url, url)

    try:
        parsed = urlparse(url)
    except ValueError as e:
        raise URLNormalizationError(f"Failed to parse URL '{url}': {e}")

    scheme = parsed.scheme.lower()
    if scheme not in ('http', 'https'):
        raise URLNormalizationError(f"Unsupported URL scheme: {scheme or '(none)'}")
    if not parsed.hostname:
        raise URLNormalizationError(f"URL missing host: {url}")

    host = parsed.hostname.lower()
    try:
        host = host.encode('idna').decode('ascii')
    except UnicodeError:
        # Keep the original host if IDN encoding fails
        pass

    netloc = host
    try:
        port = parsed.port
    except ValueError:
        raise URLNormalizationError(f"Invalid port in URL: {url}")
    if port and port not in (80, 443):
        netloc = f"{host}:{port}"

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if key not in TRACKING_PARAMS
    ]
    query = urlencode(query_pairs)

    path = parsed.path.rstrip('/')

    return urlunparse(('https', netloc, path, parsed.params, query, ''))


def get_hostname(url: str) -> str:
    """Return the lowercased hostname of a URL, or an empty string."""
    try:
        return (urlparse(url).hostname or '').lower()
    except ValueError:
        return ''


def extract_base_domain(hostname: str) -> str:
    """Reduce a hostname to its last two labels.

    This is the registrable-domain approximation used for subdomain
    matching; multi-part public suffixes such as co.uk are not special-cased.

    Examples:
        >>> extract_base_domain("blog.example.com")
        "example.com"
        >>> extract_base_domain(".example.com")
        "example.com"
    """
    parts = hostname.lstrip('.').lower().split('.')
    if len(parts) >= 2:
        return '.'.join(parts[-2:])
    return hostname.lstrip('.').lower()


def path_depth(url: str) -> int:
    """Number of non-empty path segments in a URL."""
    try:
        path = urlparse(url).path
    except ValueError:
        return 0
    return len([segment for segment in path.split('/') if segment])


def is_valid_http_url(url: str) -> bool:
    """Check if a URL is a valid HTTP/HTTPS URL."""
    try:
        normalize(url)
        return True
    except URLNormalizationError:
        return False
