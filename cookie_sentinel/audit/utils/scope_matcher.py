"""Scope matching for URL filtering during discovery.

A URL is in scope when it is http(s), its host passes the hostname rule for
the seed, it is not a well-known social or messaging link, and its path is
no deeper than the configured depth.
"""

from typing import FrozenSet, Iterable, Optional

from .url_normalizer import extract_base_domain, get_hostname, path_depth


# Outbound links that never belong to the scanned site
SOCIAL_HOSTS: FrozenSet[str] = frozenset({
    'facebook.com', 'instagram.com', 'twitter.com', 'x.com', 'linkedin.com',
    'youtube.com', 'tiktok.com', 'pinterest.com', 'whatsapp.com',
    'telegram.org', 'snapchat.com',
})

NON_NAVIGABLE_PREFIXES = ('mailto:', 'tel:', 'sms:', 'viber:', 'skype:', 'javascript:', '#')


class ScopeMatcher:
    """Decides whether a discovered URL belongs to the scanned site.

    With include_subdomains the candidate's base domain (last two labels)
    must equal the seed's base domain; otherwise the hostname must match
    the seed hostname exactly.
    """

    def __init__(
        self,
        seed_url: str,
        include_subdomains: bool = False,
        max_depth: Optional[int] = None,
        excluded_hosts: Optional[Iterable[str]] = None
    ):
        """Initialize the scope matcher.

        Args:
            seed_url: Normalized seed URL of the scan
            include_subdomains: Whether sibling subdomains are in scope
            max_depth: Maximum number of path segments, None for unlimited
            excluded_hosts: Base domains to reject, defaults to SOCIAL_HOSTS
        """
        self.seed_host = get_hostname(seed_url)
        self.seed_base_domain = extract_base_domain(self.seed_host)
        self.include_subdomains = include_subdomains
        self.max_depth = max_depth
        self.excluded_hosts = frozenset(excluded_hosts) if excluded_hosts is not None else SOCIAL_HOSTS

    def is_navigable(self, href: str) -> bool:
        """Reject link targets that can never be pages."""
        return bool(href) and not href.strip().lower().startswith(NON_NAVIGABLE_PREFIXES)

    def matches_host(self, hostname: str) -> bool:
        """Apply the hostname/subdomain rule."""
        if not hostname:
            return False
        hostname = hostname.lower()
        if self.include_subdomains:
            return extract_base_domain(hostname) == self.seed_base_domain
        return hostname == self.seed_host

    def is_in_scope(self, url: str) -> bool:
        """Check if an absolute URL is within the configured scope."""
        if not url.lower().startswith(('http://', 'https://')):
            return False

        hostname = get_hostname(url)
        if extract_base_domain(hostname) in self.excluded_hosts:
            return False
        if not self.matches_host(hostname):
            return False

        if self.max_depth is not None and path_depth(url) > self.max_depth:
            return False

        return True
