"""Hostname extraction, domain categorization and similarity scoring."""

from collections.abc import Callable, Iterable, Mapping
from urllib.parse import urlsplit

UNKNOWN_DOMAIN = "unknown"
OTHER_CATEGORY = "other"

# Default categorization policy. Hosts match an entry exactly or as a subdomain;
# the longest matching entry wins, so docs.google.com is work, not search.
DEFAULT_DOMAIN_CATEGORIES: dict[str, tuple[str, ...]] = {
    "work": (
        "gmail.com",
        "docs.google.com",
        "slack.com",
        "teams.microsoft.com",
        "github.com",
        "gitlab.com",
        "bitbucket.org",
    ),
    "social": (
        "facebook.com",
        "twitter.com",
        "instagram.com",
        "linkedin.com",
        "reddit.com",
        "discord.com",
    ),
    "shopping": ("amazon.com", "ebay.com", "shopify.com", "etsy.com", "alibaba.com"),
    "news": ("cnn.com", "bbc.com", "reuters.com", "news.google.com", "nytimes.com"),
    "entertainment": ("youtube.com", "netflix.com", "spotify.com", "twitch.tv", "hulu.com"),
    "search": ("google.com", "bing.com", "duckduckgo.com", "yahoo.com"),
    "reference": ("wikipedia.org", "stackoverflow.com", "mdn.mozilla.org", "w3schools.com"),
}

DomainCategorizer = Callable[[str | None], str]


def extract_domain(url: str | None) -> str | None:
    """
    Extract the lowercase hostname from a URL.

    Returns:
        Hostname, or None when the URL is missing or unparseable
    """
    if not url or not isinstance(url, str):
        return None
    try:
        hostname = urlsplit(url).hostname
    except ValueError:
        return None
    return hostname or None


def root_domain(domain: str) -> str:
    """Last two labels of a hostname (``mail.example.com`` -> ``example.com``)."""
    return ".".join(domain.split(".")[-2:])


class DomainClassifier:
    """Table-driven hostname categorizer."""

    def __init__(self, categories: Mapping[str, Iterable[str]] | None = None):
        """
        Args:
            categories: Category name -> hostnames. Uses DEFAULT_DOMAIN_CATEGORIES if None.
        """
        table = DEFAULT_DOMAIN_CATEGORIES if categories is None else categories
        self._entries = sorted(
            ((host.lower(), category) for category, hosts in table.items() for host in hosts),
            key=lambda entry: len(entry[0]),
            reverse=True,
        )

    def classify(self, domain: str | None) -> str:
        if not domain or domain == UNKNOWN_DOMAIN:
            return OTHER_CATEGORY
        domain = domain.lower()
        for host, category in self._entries:
            if domain == host or domain.endswith("." + host):
                return category
        return OTHER_CATEGORY

    __call__ = classify


def domain_similarity(
    a: str,
    b: str,
    categorize: DomainCategorizer,
    category_score: float = 0.5,
) -> float:
    """
    Score how related two hostnames are.

    1.0 for the same host, 0.8 for a shared root domain, ``category_score``
    for a shared known category, otherwise 0.
    """
    if a == b:
        return 1.0
    if root_domain(a) == root_domain(b):
        return 0.8
    category = categorize(a)
    if category != OTHER_CATEGORY and category == categorize(b):
        return category_score
    return 0.0
