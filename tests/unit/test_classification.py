"""Unit tests for signal classification."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from cookie_sentinel.audit.cookies.classification import (
    CookieClassifier,
    classify_category,
    classify_duration,
    classify_request,
    classify_script,
    cookie_size,
    detect_tracker,
    filter_headers,
    is_first_party,
    resolve_expiry,
)
from cookie_sentinel.audit.cookies.set_cookie import ParsedCookie
from cookie_sentinel.audit.models.scan import (
    CookieCategory,
    CookieSource,
    DurationBucket,
    ScriptCategory,
    TrackerType,
)

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestCategoryRules:

    @pytest.mark.parametrize("name,expected", [
        ("__Secure-session", CookieCategory.NECESSARY),
        ("csrftoken", CookieCategory.NECESSARY),
        ("XSRF-TOKEN", CookieCategory.NECESSARY),
        ("language", CookieCategory.FUNCTIONALITY),
        ("_ga_ABC123", CookieCategory.ANALYTICS),
        ("_gid", CookieCategory.ANALYTICS),
        ("_hjid", CookieCategory.ANALYTICS),
        ("_fbp", CookieCategory.MARKETING),
        ("_gcl_au", CookieCategory.MARKETING),
        ("IDE", CookieCategory.ADVERTISING),
        ("criteo_id", CookieCategory.ADVERTISING),
        ("zz_custom", CookieCategory.UNKNOWN),
    ])
    def test_name_patterns(self, name, expected):
        assert classify_category(name) == expected

    def test_flag_and_consent_fallbacks(self):
        assert classify_category("zz_custom", http_only=True, secure=True) == CookieCategory.NECESSARY
        assert classify_category("zz_custom", http_only=True) == CookieCategory.UNKNOWN
        assert classify_category("my_consent") == CookieCategory.NECESSARY


class TestDuration:

    @pytest.mark.parametrize("delta,expected", [
        (timedelta(hours=12), DurationBucket.SESSION),
        (timedelta(days=10), DurationBucket.SHORT_TERM),
        (timedelta(days=100), DurationBucket.MEDIUM_TERM),
        (timedelta(days=400), DurationBucket.LONG_TERM),
    ])
    def test_buckets(self, delta, expected):
        assert classify_duration(NOW + delta, now=NOW) == expected

    def test_no_expiry_is_session(self):
        assert classify_duration(None, now=NOW) == DurationBucket.SESSION

    def test_max_age_takes_precedence(self):
        expires = resolve_expiry(NOW + timedelta(days=1), max_age=63072000, now=NOW)

        assert expires == NOW + timedelta(seconds=63072000)
        assert classify_duration(expires, now=NOW) == DurationBucket.LONG_TERM

    def test_negative_max_age_expires_now(self):
        assert resolve_expiry(None, max_age=-5, now=NOW) == NOW


class TestAttributes:

    def test_party_and_size(self):
        assert is_first_party(None)
        assert is_first_party(".example.com")
        assert not is_first_party("tracker.net")
        assert cookie_size("a", "bc") == 4
        assert cookie_size("a", None) == 2


class TestTrackers:

    @pytest.mark.parametrize("url,expected", [
        ("https://www.facebook.com/tr/?id=1&ev=PageView", TrackerType.PIXELS),
        ("https://www.google-analytics.com/collect?v=1", TrackerType.PIXELS),
        ("https://www.googletagmanager.com/gtm.js?id=GTM-X", TrackerType.BEACONS),
        ("https://cdn.example.com/beacon.js", TrackerType.BEACONS),
        ("https://example.com/telemetry/v2", TrackerType.TRACKING),
        ("https://example.com/stats.json", TrackerType.TRACKING),
        ("https://example.com/app.js", None),
    ])
    def test_detect_tracker(self, url, expected):
        assert detect_tracker(url) == expected

    def test_filter_headers(self):
        headers = {"Referer": "https://example.com/", "Accept": "*/*", "Cookie": "", "Origin": "https://example.com"}

        assert filter_headers(headers) == {
            "referer": "https://example.com/",
            "origin": "https://example.com",
        }

    def test_request_category(self):
        assert classify_request("https://x.com/p.gif", "image", True) == "tracking_pixel"
        assert classify_request("https://x.com/t.js", "script", True) == "tracking_script"
        assert classify_request("https://x.com/analytics/data", "xhr", False) == "analytics"
        assert classify_request("https://x.com/api", "xhr", False) is None


class TestScriptRules:

    def test_tag_manager_checked_first(self):
        assert classify_script("https://www.googletagmanager.com/gtm.js?id=GTM-X") == ScriptCategory.TAG_MANAGER

    def test_url_rules(self):
        assert classify_script("https://www.google-analytics.com/analytics.js") == ScriptCategory.ANALYTICS
        assert classify_script("https://ads.example.net/show.js") == ScriptCategory.ADVERTISING

    def test_inline_content_rules(self):
        assert classify_script(None, "gtag('config', 'G-1')") == ScriptCategory.ANALYTICS
        assert classify_script(None, "fbq('init', '123')") == ScriptCategory.MARKETING
        assert classify_script(None, "window.dataLayer = window.dataLayer || []") == ScriptCategory.TAG_MANAGER
        assert classify_script(None, "console.log('hi')") == ScriptCategory.UNKNOWN


class TestCookieClassifier:

    def test_classify_cookie(self, classifier):
        cookie = ParsedCookie(name="_ga", value="GA1.2.3", domain=".example.com", max_age=63072000, secure=True)

        observation = classifier.classify_cookie(
            cookie,
            source=CookieSource.SET_COOKIE,
            page_url="https://example.com",
            now=NOW
        )

        assert observation.category == CookieCategory.ANALYTICS
        assert observation.provider == "Google Analytics"
        assert observation.duration == DurationBucket.LONG_TERM
        assert observation.expires == NOW + timedelta(seconds=63072000)
        assert observation.first_party is True
        assert observation.size == len("_ga=GA1.2.3")
        assert observation.source == CookieSource.SET_COOKIE
        assert observation.key == ("_ga", "/")

    def test_unknown_provider(self, classifier):
        observation = classifier.classify_cookie(ParsedCookie(name="zz_custom", value="1"), now=NOW)

        assert observation.provider == "Unknown"
        assert observation.category == CookieCategory.UNKNOWN
        assert observation.duration == DurationBucket.SESSION

    def test_provider_lookup_failure_falls_back_to_unknown(self):
        directory = MagicMock()
        directory.lookup_cookie.side_effect = RuntimeError("directory offline")
        classifier = CookieClassifier(directory)

        observation = classifier.classify_cookie(ParsedCookie(name="_ga", value="1"), now=NOW)

        assert observation.provider == "Unknown"
        assert observation.category == CookieCategory.ANALYTICS

    def test_classify_script(self, classifier):
        record = classifier.classify_script("https://www.googletagmanager.com/gtm.js?id=GTM-X", load_type="async")

        assert record.category == ScriptCategory.TAG_MANAGER
        assert record.provider == "Google Tag Manager"
        assert record.inline is False
        assert record.load_type == "async"

        inline = classifier.classify_script(None, "fbq('track', 'PageView')")
        assert inline.inline is True
        assert inline.provider == "Facebook"

    def test_classify_request(self, classifier):
        record = classifier.classify_request(
            "https://www.googletagmanager.com/gtm.js?id=GTM-X",
            "script",
            {"Referer": "https://example.com/"},
            page_url="https://example.com"
        )

        assert record.tracker_type == TrackerType.BEACONS
        assert record.category == "tracking_script"
        assert record.headers == {"referer": "https://example.com/"}
        assert classifier.classify_request("https://example.com/app.css", "stylesheet", {}) is None
