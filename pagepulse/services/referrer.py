"""
Referrer classification.

Buckets a document.referrer into one of: Direct, Internal, Search,
Social, External. The bare domain (no "www.") is stored alongside so
dashboards can group by source without re-parsing URLs.
"""

from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

DIRECT = "Direct"
INTERNAL = "Internal"
SEARCH = "Search"
SOCIAL = "Social"
EXTERNAL = "External"

SEARCH_ENGINES = (
    "google.",
    "bing.com",
    "yahoo.",
    "duckduckgo.com",
    "baidu.com",
    "yandex.",
    "ecosia.org",
    "search.brave.com",
    "startpage.com",
    "qwant.com",
)

SOCIAL_NETWORKS = (
    "facebook.com",
    "fb.com",
    "instagram.com",
    "twitter.com",
    "t.co",
    "x.com",
    "linkedin.com",
    "lnkd.in",
    "reddit.com",
    "pinterest.com",
    "youtube.com",
    "tiktok.com",
    "mastodon.social",
    "threads.net",
    "news.ycombinator.com",
)


@dataclass(frozen=True)
class ReferrerInfo:
    domain: Optional[str]
    category: str


def extract_domain(referrer: Optional[str]) -> Optional[str]:
    if not referrer:
        return None
    try:
        host = urlsplit(referrer.strip()).hostname
    except ValueError:
        return None
    if not host:
        return None
    host = host.lower()
    return host[4:] if host.startswith("www.") else host


def _matches(domain: str, known: tuple) -> bool:
    for entry in known:
        if entry.endswith("."):
            # "google." matches google.com, google.co.uk, ...
            if domain.startswith(entry) or f".{entry}" in f".{domain}":
                return True
        elif domain == entry or domain.endswith(f".{entry}"):
            return True
    return False


def categorize(domain: Optional[str], site_hostname: Optional[str] = None) -> str:
    """Bucket an already-extracted referrer domain."""
    if not domain:
        return DIRECT

    site = (site_hostname or "").lower()
    if site.startswith("www."):
        site = site[4:]
    if site and (domain == site or domain.endswith(f".{site}")):
        return INTERNAL

    if _matches(domain, SEARCH_ENGINES):
        return SEARCH
    if _matches(domain, SOCIAL_NETWORKS):
        return SOCIAL
    return EXTERNAL


def classify_referrer(
    referrer: Optional[str],
    hostname: Optional[str] = None,
    is_internal: bool = False,
) -> ReferrerInfo:
    """
    Classify a referrer URL relative to the page it led to.

    Examples:
        classify_referrer(None)                                 -> (None, "Direct")
        classify_referrer("https://www.google.com/search?q=x")  -> ("google.com", "Search")
        classify_referrer("https://t.co/abc")                   -> ("t.co", "Social")
        classify_referrer("https://blog.example.org/post")      -> ("blog.example.org", "External")
    """
    domain = extract_domain(referrer)
    if is_internal:
        return ReferrerInfo(domain=domain, category=INTERNAL)
    return ReferrerInfo(domain=domain, category=categorize(domain, hostname))
