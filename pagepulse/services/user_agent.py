"""
User-Agent classification: browser, OS, device type and bot detection.

Parsing uses the ``user_agents`` library. Bot detection combines its
verdict with a pattern list of crawlers, HTTP libraries and headless
automation tools.
"""

import re
from dataclasses import dataclass
from typing import Optional

import structlog
from user_agents import parse as parse_ua

logger = structlog.get_logger(__name__)

# Raw family (lower-case) -> display name
BROWSER_DISPLAY_NAMES = {
    "chrome": "Google Chrome",
    "chrome mobile": "Google Chrome",
    "chrome mobile ios": "Google Chrome",
    "chrome mobile webview": "Google Chrome",
    "chromium": "Chromium",
    "safari": "Safari",
    "mobile safari": "iOS Safari",
    "mobile safari ui/wkwebview": "iOS Safari",
    "firefox": "Firefox",
    "firefox mobile": "Firefox",
    "firefox ios": "Firefox",
    "edge": "Microsoft Edge",
    "edge mobile": "Microsoft Edge",
    "opera": "Opera",
    "opera mobile": "Opera",
    "samsung internet": "Samsung Internet",
    "brave": "Brave",
    "vivaldi": "Vivaldi",
    "ie": "Internet Explorer",
    "ie mobile": "Internet Explorer",
}

BOT_PATTERNS = [
    r"bot",
    r"crawl",
    r"spider",
    r"scrape",
    r"slurp",
    r"wget",
    r"curl",
    r"python-requests",
    r"python-urllib",
    r"httpx",
    r"java/",
    r"httpclient",
    r"libwww",
    r"facebookexternalhit",
    r"lighthouse",
    r"pingdom",
    r"uptime",
]

HEADLESS_INDICATORS = [
    r"headless",
    r"phantomjs",
    r"puppeteer",
    r"playwright",
    r"selenium",
    r"webdriver",
]

_bot_pattern = re.compile("|".join(BOT_PATTERNS + HEADLESS_INDICATORS), re.IGNORECASE)
_major_version = re.compile(r"^\d+$")

UNKNOWN_FAMILY = "Other"


@dataclass(frozen=True)
class UAClassification:
    browser_name: Optional[str] = None
    browser_version: Optional[str] = None
    browser_major_version: Optional[str] = None
    os_name: Optional[str] = None
    os_version: Optional[str] = None
    # None when the UA could not be parsed; the client's value is used instead
    device_type: Optional[str] = None
    is_bot: bool = False


def normalize_browser_name(browser_name: Optional[str]) -> Optional[str]:
    """Map raw parser families to display names ("Mobile Safari" -> "iOS Safari")."""
    if not browser_name:
        return None
    return BROWSER_DISPLAY_NAMES.get(browser_name.strip().lower(), browser_name)


def extract_major_version(browser_version: Optional[str]) -> Optional[str]:
    """
    First dotted segment of a version string, if it is numeric.

    "120.0.6099.109" -> "120", "17.1" -> "17", "Safari" -> None, None -> None
    """
    if not browser_version or not browser_version.strip():
        return None
    first_segment = browser_version.split(".")[0].strip()
    if not _major_version.match(first_segment):
        return None
    return first_segment


def is_bot_user_agent(user_agent: str) -> bool:
    if not user_agent:
        return False
    return bool(_bot_pattern.search(user_agent))


class UserAgentClassifier:
    """Stateless; safe to share across requests."""

    def classify(self, user_agent: str) -> UAClassification:
        if not user_agent or not user_agent.strip():
            return UAClassification()

        try:
            ua = parse_ua(user_agent)
        except Exception as e:
            logger.warning("User-Agent parsing failed", error_type=type(e).__name__)
            return UAClassification(is_bot=is_bot_user_agent(user_agent))

        browser_family = ua.browser.family if ua.browser.family != UNKNOWN_FAMILY else None
        os_family = ua.os.family if ua.os.family != UNKNOWN_FAMILY else None
        browser_version = ua.browser.version_string or None
        parsed = browser_family is not None or os_family is not None

        return UAClassification(
            browser_name=normalize_browser_name(browser_family),
            browser_version=browser_version,
            browser_major_version=extract_major_version(browser_version),
            os_name=os_family,
            os_version=ua.os.version_string or None,
            device_type=_device_type(ua) if parsed else None,
            is_bot=bool(ua.is_bot) or is_bot_user_agent(user_agent),
        )


def _device_type(ua) -> Optional[str]:
    if ua.is_tablet:
        return "tablet"
    if ua.is_mobile:
        return "mobile"
    if ua.is_pc:
        return "desktop"
    return None
