"""Provider (vendor) directory used to attribute cookies and scripts.

The classifier only depends on the ``ProviderDirectory`` interface; the
built-in ``KnownProviderDirectory`` covers common analytics, advertising and
platform vendors by cookie name pattern and by domain.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple

from ..utils.url_normalizer import extract_base_domain, get_hostname

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderMatch:
    """A vendor attribution."""
    name: str
    category: Optional[str] = None
    iab_vendor_id: Optional[int] = None


class ProviderDirectory(ABC):
    """Lookup interface for vendor attribution."""

    @abstractmethod
    def lookup_cookie(self, name: str, domain: Optional[str] = None) -> Optional[ProviderMatch]:
        """Attribute a cookie by name and, failing that, by domain."""
        pass

    @abstractmethod
    def lookup_script(self, url: Optional[str], content: Optional[str] = None) -> Optional[ProviderMatch]:
        """Attribute a script by URL and, failing that, by inline content."""
        pass


GOOGLE_ANALYTICS = ProviderMatch("Google Analytics", "analytics", 755)
GOOGLE_ADS = ProviderMatch("Google Ads", "marketing", 755)
GOOGLE_TAG_MANAGER = ProviderMatch("Google Tag Manager", "tag_manager", 755)
FACEBOOK = ProviderMatch("Facebook", "marketing", 891)
HOTJAR = ProviderMatch("Hotjar", "analytics", 765)
LINKEDIN = ProviderMatch("LinkedIn", "marketing", 145)
TWITTER = ProviderMatch("Twitter", "marketing", 13)

DOMAIN_PROVIDERS: Dict[str, ProviderMatch] = {
    'google-analytics.com': GOOGLE_ANALYTICS,
    'analytics.google.com': GOOGLE_ANALYTICS,
    'googletagmanager.com': GOOGLE_TAG_MANAGER,
    'doubleclick.net': GOOGLE_ADS,
    'googleadservices.com': GOOGLE_ADS,
    'googlesyndication.com': GOOGLE_ADS,
    'hotjar.com': HOTJAR,
    'facebook.com': FACEBOOK,
    'facebook.net': FACEBOOK,
    'linkedin.com': LINKEDIN,
    'licdn.com': LINKEDIN,
    'twitter.com': TWITTER,
    'adnxs.com': ProviderMatch("AppNexus", "advertising", 32),
    'pubmatic.com': ProviderMatch("PubMatic", "advertising", 76),
    'rubiconproject.com': ProviderMatch("Rubicon Project", "advertising", 52),
    'criteo.com': ProviderMatch("Criteo", "advertising", 91),
    'optimizely.com': ProviderMatch("Optimizely", "personalization", 565),
    'crazyegg.com': ProviderMatch("Crazy Egg", "personalization"),
    'clarity.ms': ProviderMatch("Microsoft Clarity", "analytics"),
    'cookiebot.com': ProviderMatch("Cookiebot", "necessary"),
    'onetrust.com': ProviderMatch("OneTrust", "necessary"),
}

NAME_PATTERNS: List[Tuple[str, ProviderMatch]] = [
    (r'^_ga(_.*)?$', GOOGLE_ANALYTICS),
    (r'^_gid$', GOOGLE_ANALYTICS),
    (r'^_gat', GOOGLE_ANALYTICS),
    (r'^__utm', GOOGLE_ANALYTICS),
    (r'^(_gcl|_gac)', GOOGLE_ADS),
    (r'^(IDE|DSID|test_cookie)$', GOOGLE_ADS),
    (r'^_fbp$', FACEBOOK),
    (r'^_fbc$', FACEBOOK),
    (r'^fr$', FACEBOOK),
    (r'^_hjid', HOTJAR),
    (r'^_hjSession', HOTJAR),
    (r'^li_', LINKEDIN),
    (r'^_lfa', LINKEDIN),
    (r'^_twitter_sess', TWITTER),
    (r'^_ttp', TWITTER),
    (r'^(_clck|_clsk)$', ProviderMatch("Microsoft Clarity", "analytics")),
    (r'optimizely', ProviderMatch("Optimizely", "personalization", 565)),
    (r'mailchimp', ProviderMatch("Mailchimp", "marketing")),
    (r'^(woocommerce|wc_|wp_woocommerce_session_)', ProviderMatch("WooCommerce", "necessary")),
    (r'^(wordpress|wp-)', ProviderMatch("WordPress", "necessary")),
    (r'cookieyes', ProviderMatch("CookieYes", "necessary")),
    (r'^cookiebot', ProviderMatch("Cookiebot", "necessary")),
    (r'^(onetrust|OptanonConsent)', ProviderMatch("OneTrust", "necessary")),
    (r'^consent', ProviderMatch("Consent Management", "necessary")),
    (r'^sbjs_', ProviderMatch("Sourcebuster", "analytics")),
    (r'^PHPSESSID$', ProviderMatch("PHP Session", "necessary")),
    (r'^JSESSIONID$', ProviderMatch("Java Session", "necessary")),
]

CONTENT_PATTERNS: List[Tuple[str, ProviderMatch]] = [
    (r'googletagmanager|gtm\.start', GOOGLE_TAG_MANAGER),
    (r'gtag\(|google-analytics', GOOGLE_ANALYTICS),
    (r'fbq\(', FACEBOOK),
    (r'hotjar|hjid', HOTJAR),
    (r'_linkedin_partner_id', LINKEDIN),
]


def _compile(patterns: List[Tuple[str, ProviderMatch]], flags: int = 0) -> List[Tuple[Pattern, ProviderMatch]]:
    return [(re.compile(pattern, flags), match) for pattern, match in patterns]


class KnownProviderDirectory(ProviderDirectory):
    """Built-in directory of well-known vendors."""

    def __init__(
        self,
        extra_domains: Optional[Dict[str, ProviderMatch]] = None,
        extra_name_patterns: Optional[List[Tuple[str, ProviderMatch]]] = None
    ):
        self._domains = dict(DOMAIN_PROVIDERS)
        if extra_domains:
            self._domains.update(extra_domains)
        self._name_patterns = _compile((extra_name_patterns or []) + NAME_PATTERNS)
        self._content_patterns = _compile(CONTENT_PATTERNS, re.IGNORECASE)

    def lookup_cookie(self, name: str, domain: Optional[str] = None) -> Optional[ProviderMatch]:
        for pattern, match in self._name_patterns:
            if pattern.search(name):
                return match
        if domain:
            return self.lookup_domain(domain)
        return None

    def lookup_script(self, url: Optional[str], content: Optional[str] = None) -> Optional[ProviderMatch]:
        if url:
            match = self.lookup_domain(get_hostname(url))
            if match:
                return match
        if content:
            for pattern, match in self._content_patterns:
                if pattern.search(content):
                    return match
        return None

    def lookup_domain(self, domain: str) -> Optional[ProviderMatch]:
        """Match a hostname or cookie domain against the domain map.

        The full host is tried before its base domain so entries such as
        analytics.google.com take precedence over broader ones.
        """
        host = domain.lower().lstrip('.')
        if host.startswith('www.'):
            host = host[4:]
        if not host:
            return None
        return self._domains.get(host) or self._domains.get(extract_base_domain(host))
