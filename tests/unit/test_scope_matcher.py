"""Unit tests for discovery scope matching."""

from cookie_sentinel.audit.utils.scope_matcher import ScopeMatcher


class TestScopeMatcher:
    """Test cases for ScopeMatcher."""

    def test_exact_host_without_subdomains(self):
        scope = ScopeMatcher("https://example.com")

        assert scope.is_in_scope("https://example.com/about")
        assert not scope.is_in_scope("https://blog.example.com/post")
        assert not scope.is_in_scope("https://other.com/")

    def test_subdomains_share_base_domain(self):
        scope = ScopeMatcher("https://www.example.com", include_subdomains=True)

        assert scope.is_in_scope("https://blog.example.com/post")
        assert scope.is_in_scope("https://example.com/")
        assert not scope.is_in_scope("https://example.org/")

    def test_social_hosts_excluded(self):
        scope = ScopeMatcher("https://facebook.com", include_subdomains=True)
        assert not scope.is_in_scope("https://www.facebook.com/page")

        custom = ScopeMatcher("https://facebook.com", excluded_hosts=[])
        assert custom.is_in_scope("https://facebook.com/page")

    def test_depth_limit(self):
        scope = ScopeMatcher("https://example.com", max_depth=2)

        assert scope.is_in_scope("https://example.com/a/b")
        assert not scope.is_in_scope("https://example.com/a/b/c")

    def test_non_http_rejected(self):
        scope = ScopeMatcher("https://example.com")
        assert not scope.is_in_scope("ftp://example.com/file")

    def test_non_navigable_links(self):
        scope = ScopeMatcher("https://example.com")

        for href in ["mailto:a@example.com", "tel:+123", "javascript:void(0)", "#top", "", "  MAILTO:x@y.z"]:
            assert not scope.is_navigable(href), href
        assert scope.is_navigable("/about")
