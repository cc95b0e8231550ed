"""Signal classification for cookies, scripts and network requests.

Everything here is deterministic: the module-level functions are pure and
``CookieClassifier`` only adds provider attribution through an injected
``ProviderDirectory``.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Pattern, Tuple

from ..models.scan import (
    CookieCategory,
    CookieObservation,
    CookieSource,
    DurationBucket,
    ScriptCategory,
    ScriptRecord,
    TrackerRecord,
    TrackerType,
    UNKNOWN_PROVIDER,
    utcnow,
)
from .providers import ProviderDirectory
from .set_cookie import ParsedCookie

logger = logging.getLogger(__name__)


def _compile_all(patterns: List[str]) -> List[Pattern]:
    return [re.compile(pattern, re.IGNORECASE) for pattern in patterns]


# Evaluated in order; the first category with a matching pattern wins
CATEGORY_PATTERNS: List[Tuple[CookieCategory, List[Pattern]]] = [
    (CookieCategory.NECESSARY, _compile_all([
        r'^(csrf|session|auth|secure|__Secure-|__Host-)',
        r'_csrf$',
        r'^XSRF-TOKEN$',
        r'^ARRAffinity',
        r'^ASP\.NET',
        r'^AWSALB',
        r'^connect\.sid$',
        r'^express\.sess',
    ])),
    (CookieCategory.FUNCTIONALITY, _compile_all([
        r'^(prefs|settings|language|timezone|display)',
        r'_preferences$',
        r'^ui-',
        r'^player',
        r'^volume',
        r'^fontSize',
        r'^colorScheme',
    ])),
    (CookieCategory.ANALYTICS, _compile_all([
        r'^(_ga|_gid|_gat|__utm)',
        r'^_pk_',
        r'^amplitude',
        r'^mp_',
        r'^_hjid',
        r'^_hjsession',
        r'^_clck',
        r'^_clsk',
        r'^ki_',
        r'^km_',
        r'^optimizely',
        r'^segment',
        r'^ajs_',
        r'^_vwo_',
        r'^_vis_opt_',
        r'^_gaexp',
        r'^_opt_',
        r'^zarget',
        r'^_ce\.s$',
        r'^_BEAMER_',
    ])),
    (CookieCategory.MARKETING, _compile_all([
        r'^(_fbp|_fbc|fr|xs|c_user|datr|sb|spin|wd|presence)',
        r'^(_gcl|_gac)',
        r'^pinterest_',
        r'^_ttp',
        r'^_uetvid$',
        r'^_uetsid$',
        r'^mautic',
        r'^mtc_',
        r'^_mkto_trk$',
        r'^visitor_id',
        r'^pardot',
        r'^BIGipServer',
        r'^mc_',
        r'^_mcid$',
        r'^aa_',
        r'^_pinterest_',
        r'^_pin_unauth$',
        r'^_routing_id$',
        r'^_shopify_',
        r'^_landing_page$',
        r'^_orig_referrer$',
        r'^cart_',
        r'^checkout_',
    ])),
    (CookieCategory.ADVERTISING, _compile_all([
        r'^(ide|test_cookie|_drt_|id|RUL|DSID|uid|uuid|guid)',
        r'^doubleclick',
        r'^adroll',
        r'^__ar_v4$',
        r'^_te_$',
        r'^tuuid',
        r'^c$',
        r'^cto_',
        r'^criteo',
        r'^tluid$',
        r'^taboola',
        r'^t_gid$',
        r'^TDCPM$',
        r'^TDID$',
        r'^anj$',
        r'^uuid2$',
        r'^sessid$',
        r'^ssid$',
        r'^_kuid_$',
        r'^bito$',
        r'^bitoIsSecure$',
        r'^_cc_',
        r'^_pubcid$',
        r'^panoramaId',
        r'^ad-id$',
        r'^ad-privacy$',
    ])),
]

TRACKER_PATTERNS: List[Tuple[TrackerType, List[Pattern]]] = [
    (TrackerType.PIXELS, _compile_all([
        r'facebook\.com/tr/',
        r'google-analytics\.com/collect',
        r'linkedin\.com/px',
        r'ads\.twitter\.com',
    ])),
    (TrackerType.BEACONS, _compile_all([
        r'beacon\.js',
        r'analytics\.js',
        r'gtm\.js',
    ])),
    (TrackerType.TRACKING, _compile_all([
        r'tracking',
        r'analytics',
        r'telemetry',
        r'stats\.',
    ])),
]

# Request headers worth keeping on tracker records
RELEVANT_HEADERS = ('referer', 'origin', 'user-agent', 'cookie', 'x-requested-with')


def classify_category(name: str, http_only: bool = False, secure: bool = False) -> CookieCategory:
    """Assign a consent category from the cookie name and flags.

    Examples:
        >>> classify_category("__Secure-session")
        CookieCategory.NECESSARY
        >>> classify_category("_fbp")
        CookieCategory.MARKETING
    """
    for category, patterns in CATEGORY_PATTERNS:
        if any(pattern.search(name) for pattern in patterns):
            return category

    if http_only and secure:
        return CookieCategory.NECESSARY
    if 'consent' in name.lower():
        return CookieCategory.NECESSARY

    return CookieCategory.UNKNOWN


def resolve_expiry(
    expires: Optional[datetime],
    max_age: Optional[int] = None,
    now: Optional[datetime] = None
) -> Optional[datetime]:
    """Effective expiry; Max-Age takes precedence over Expires."""
    if max_age is not None:
        now = now or utcnow()
        return now + timedelta(seconds=max(max_age, 0))
    return expires


def classify_duration(expires: Optional[datetime], now: Optional[datetime] = None) -> DurationBucket:
    """Bucket a cookie by the number of days until it expires."""
    if expires is None:
        return DurationBucket.SESSION

    now = now or utcnow()
    days = (expires - now).total_seconds() / 86400

    if days <= 1:
        return DurationBucket.SESSION
    if days <= 30:
        return DurationBucket.SHORT_TERM
    if days <= 365:
        return DurationBucket.MEDIUM_TERM
    return DurationBucket.LONG_TERM


def is_first_party(domain: Optional[str]) -> bool:
    """Party flag: host-only cookies and dot-prefixed domains count as first party.

    This approximation does not compare the cookie domain with the page
    host.
    """
    if not domain:
        return True
    return domain.startswith('.')


def cookie_size(name: str, value: Optional[str]) -> int:
    """Size in bytes of the serialized name=value pair."""
    return len(f"{name}={value or ''}".encode('utf-8'))


def detect_tracker(url: str) -> Optional[TrackerType]:
    """Return the first tracker family whose pattern matches the URL."""
    for tracker_type, patterns in TRACKER_PATTERNS:
        if any(pattern.search(url) for pattern in patterns):
            return tracker_type
    return None


def filter_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Keep only the allow-listed request headers."""
    lowered = {key.lower(): value for key, value in headers.items()}
    return {name: lowered[name] for name in RELEVANT_HEADERS if lowered.get(name)}


def classify_request(url: str, resource_type: str, is_tracker: bool) -> Optional[str]:
    """Category label of a network request."""
    if resource_type == 'image' and is_tracker:
        return 'tracking_pixel'
    if resource_type == 'script' and is_tracker:
        return 'tracking_script'
    if 'analytics' in url or 'track' in url:
        return 'analytics'
    return None


def classify_script(src: Optional[str], content: Optional[str] = None) -> ScriptCategory:
    """Categorize a script by its URL, then by its inline content.

    Tag manager URLs are checked first so loaders such as
    googletagmanager.com/gtm.js are not reported as analytics.
    """
    if src:
        url = src.lower()
        if 'tag-manager' in url or 'tagmanager' in url:
            return ScriptCategory.TAG_MANAGER
        if 'analytics' in url or 'tracking' in url:
            return ScriptCategory.ANALYTICS
        if 'ads' in url or 'advertising' in url:
            return ScriptCategory.ADVERTISING

    if content:
        text = content.lower()
        if 'gtag' in text or 'analytics' in text:
            return ScriptCategory.ANALYTICS
        if 'fbq' in text or 'pixel' in text:
            return ScriptCategory.MARKETING
        if 'datalayer' in text:
            return ScriptCategory.TAG_MANAGER

    return ScriptCategory.UNKNOWN


class CookieClassifier:
    """Turns raw observations into classified records.

    Provider attribution is delegated to the directory; "Unknown" is used
    only when the directory has no match.
    """

    def __init__(self, providers: ProviderDirectory):
        self.providers = providers

    def _provider_for_cookie(self, name: str, domain: Optional[str]) -> str:
        try:
            match = self.providers.lookup_cookie(name, domain)
        except Exception as e:
            logger.warning(f"Provider lookup failed for cookie {name}: {e}")
            return UNKNOWN_PROVIDER
        return match.name if match and match.name else UNKNOWN_PROVIDER

    def _provider_for_script(self, url: Optional[str], content: Optional[str]) -> str:
        try:
            match = self.providers.lookup_script(url, content)
        except Exception as e:
            logger.warning(f"Provider lookup failed for script {url}: {e}")
            return UNKNOWN_PROVIDER
        return match.name if match and match.name else UNKNOWN_PROVIDER

    def classify_cookie(
        self,
        cookie: ParsedCookie,
        source: CookieSource = CookieSource.BROWSER,
        page_url: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> CookieObservation:
        """Classify one parsed cookie."""
        now = now or utcnow()
        expires = resolve_expiry(cookie.expires, cookie.max_age, now)

        return CookieObservation(
            name=cookie.name,
            value=cookie.value,
            domain=cookie.domain,
            path=cookie.path or '/',
            expires=expires,
            max_age=cookie.max_age,
            secure=cookie.secure,
            http_only=cookie.http_only,
            same_site=cookie.same_site,
            category=classify_category(cookie.name, cookie.http_only, cookie.secure),
            provider=self._provider_for_cookie(cookie.name, cookie.domain),
            duration=classify_duration(expires, now),
            first_party=is_first_party(cookie.domain),
            size=cookie_size(cookie.name, cookie.value),
            source=source,
            page_url=page_url,
        )

    def classify_script(
        self,
        src: Optional[str],
        content: Optional[str] = None,
        content_type: str = "text/javascript",
        load_type: str = "sync",
        page_url: Optional[str] = None
    ) -> ScriptRecord:
        """Classify a script element or a JavaScript response."""
        return ScriptRecord(
            url=src or None,
            content_type=content_type or "text/javascript",
            category=classify_script(src, content),
            provider=self._provider_for_script(src, content),
            load_type=load_type,
            inline=not src,
            page_url=page_url,
        )

    def classify_request(
        self,
        url: str,
        resource_type: str,
        headers: Mapping[str, str],
        page_url: Optional[str] = None
    ) -> Optional[TrackerRecord]:
        """Return a tracker record when the request matches a tracker family."""
        tracker_type = detect_tracker(url)
        if tracker_type is None:
            return None

        return TrackerRecord(
            url=url,
            resource_type=resource_type or 'other',
            tracker_type=tracker_type,
            category=classify_request(url, resource_type, True),
            headers=filter_headers(headers),
            page_url=page_url,
        )
