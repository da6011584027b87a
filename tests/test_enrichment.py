"""
Tests for request enrichment services.

Tests cover:
- User-Agent classification, browser name normalisation and major version
- Bot detection
- Referrer domain extraction and categorisation
- GeoIP resolver degradation
"""

from unittest.mock import MagicMock

import geoip2.errors
import pytest

from pagepulse.services.geoip import MaxMindGeoIPResolver, NullGeoIPResolver, open_geoip_resolver
from pagepulse.services.referrer import categorize, classify_referrer, extract_domain
from pagepulse.services.user_agent import (
    UserAgentClassifier,
    extract_major_version,
    is_bot_user_agent,
    normalize_browser_name,
)

CHROME_DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.6099.109 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
IPAD_UA = (
    "Mozilla/5.0 (iPad; CPU OS 17_1 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
)
GOOGLEBOT_UA = "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"
HEADLESS_UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) HeadlessChrome/120.0.0.0 Safari/537.36"
)


class TestUserAgentClassifier:
    """Tests for UserAgentClassifier.classify."""

    @pytest.fixture
    def classifier(self):
        return UserAgentClassifier()

    def test_desktop_chrome(self, classifier):
        result = classifier.classify(CHROME_DESKTOP_UA)
        assert result.browser_name == "Google Chrome"
        assert result.browser_major_version == "120"
        assert result.os_name == "Windows"
        assert result.device_type == "desktop"
        assert result.is_bot is False

    def test_iphone_safari(self, classifier):
        result = classifier.classify(IPHONE_UA)
        assert result.browser_name == "iOS Safari"
        assert result.browser_major_version == "17"
        assert result.os_name == "iOS"
        assert result.device_type == "mobile"

    def test_ipad_is_tablet(self, classifier):
        assert classifier.classify(IPAD_UA).device_type == "tablet"

    @pytest.mark.parametrize("ua", [GOOGLEBOT_UA, HEADLESS_UA, "curl/8.4.0", "python-requests/2.31.0"])
    def test_bots(self, classifier, ua):
        assert classifier.classify(ua).is_bot is True

    def test_unparseable_ua_has_no_device_type(self, classifier):
        result = classifier.classify("definitely-not-a-browser")
        assert result.device_type is None
        assert result.browser_name is None

    def test_empty_ua(self, classifier):
        result = classifier.classify("")
        assert result.device_type is None
        assert result.is_bot is False


class TestBrowserNormalisation:
    """Tests for browser display names and version extraction."""

    @pytest.mark.parametrize("raw,expected", [
        ("Chrome", "Google Chrome"),
        ("Chrome Mobile", "Google Chrome"),
        ("Mobile Safari", "iOS Safari"),
        ("Edge", "Microsoft Edge"),
        ("Firefox", "Firefox"),
        ("Some New Browser", "Some New Browser"),
        (None, None),
        ("", None),
    ])
    def test_normalize_browser_name(self, raw, expected):
        assert normalize_browser_name(raw) == expected

    @pytest.mark.parametrize("version,expected", [
        ("120.0.6099.109", "120"),
        ("17.1", "17"),
        ("99", "99"),
        ("beta.1", None),
        ("", None),
        (None, None),
    ])
    def test_extract_major_version(self, version, expected):
        assert extract_major_version(version) == expected

    def test_is_bot_user_agent_empty(self):
        assert is_bot_user_agent("") is False


class TestReferrer:
    """Tests for referrer domain extraction and categorisation."""

    @pytest.mark.parametrize("url,expected", [
        ("https://www.google.com/search?q=x", "google.com"),
        ("https://News.Ycombinator.com/item?id=1", "news.ycombinator.com"),
        ("http://example.org:8080/path", "example.org"),
        ("", None),
        (None, None),
        ("not a url", None),
    ])
    def test_extract_domain(self, url, expected):
        assert extract_domain(url) == expected

    @pytest.mark.parametrize("domain,expected", [
        (None, "Direct"),
        ("google.com", "Search"),
        ("google.co.uk", "Search"),
        ("duckduckgo.com", "Search"),
        ("m.facebook.com", "Social"),
        ("t.co", "Social"),
        ("linkedin.com", "Social"),
        ("blog.example.org", "External"),
        ("notgoogle.com", "External"),
    ])
    def test_categorize(self, domain, expected):
        assert categorize(domain, "mysite.com") == expected

    def test_same_site_is_internal(self):
        assert categorize("mysite.com", "www.mysite.com") == "Internal"
        assert categorize("docs.mysite.com", "mysite.com") == "Internal"

    def test_classify_referrer(self):
        info = classify_referrer("https://www.google.com/search?q=x", hostname="mysite.com")
        assert info.domain == "google.com"
        assert info.category == "Search"

    def test_client_flagged_internal(self):
        info = classify_referrer("https://mysite.com/", hostname="mysite.com", is_internal=True)
        assert info.category == "Internal"

    def test_no_referrer_is_direct(self):
        assert classify_referrer(None, hostname="mysite.com").category == "Direct"


class TestGeoIP:
    """Tests for GeoIP resolvers."""

    def test_missing_database_degrades_to_null_resolver(self, tmp_path):
        resolver = open_geoip_resolver(str(tmp_path / "missing.mmdb"))
        assert isinstance(resolver, NullGeoIPResolver)
        assert resolver.lookup_country("8.8.8.8") is None

    def test_lookup_uppercases_code(self):
        reader = MagicMock()
        reader.country.return_value.country.iso_code = "us"
        assert MaxMindGeoIPResolver(reader).lookup_country("8.8.8.8") == "US"

    def test_address_not_found(self):
        reader = MagicMock()
        reader.country.side_effect = geoip2.errors.AddressNotFoundError("127.0.0.1 not found")
        assert MaxMindGeoIPResolver(reader).lookup_country("127.0.0.1") is None

    def test_malformed_address(self):
        reader = MagicMock()
        reader.country.side_effect = ValueError("'nope' does not appear to be an IPv4 or IPv6 address")
        assert MaxMindGeoIPResolver(reader).lookup_country("nope") is None

    def test_reader_failure(self):
        reader = MagicMock()
        reader.country.side_effect = RuntimeError("corrupt database")
        assert MaxMindGeoIPResolver(reader).lookup_country("8.8.8.8") is None

    def test_empty_ip_skips_reader(self):
        reader = MagicMock()
        assert MaxMindGeoIPResolver(reader).lookup_country("") is None
        reader.country.assert_not_called()
