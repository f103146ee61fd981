"""Hostname-based tagging and coarse content-type classification."""

import re
from urllib.parse import urlparse

from linkranger.logging import get_logger

logger = get_logger(__name__)

# Matched as a hostname suffix, so "www.github.com" and "gist.github.com" hit "github.com"
DOMAIN_TAGS: dict[str, tuple[str, ...]] = {
    "note.com": ("note",),
    "qiita.com": ("Qiita", "プログラミング"),
    "zenn.dev": ("Zenn", "技術"),
    "github.com": ("GitHub", "code"),
    "youtube.com": ("YouTube", "動画"),
}

MAP_URL_PATTERNS = (
    re.compile(r"maps\.google\."),
    re.compile(r"goo\.gl/maps"),
    re.compile(r"maps\.app\.goo\.gl"),
    re.compile(r"google\..*/maps"),
)

PLACE_NAME_SEPARATOR = "・"

CODE_BLOCK_TUTORIAL_THRESHOLD = 3


def _hostname(url: str) -> str | None:
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return None
    return hostname.lower().rstrip(".") if hostname else None


def _matches_domain(hostname: str, domain: str) -> bool:
    return hostname == domain or hostname.endswith(f".{domain}")


def tags_for_domain(url: str) -> list[str]:
    """Fixed tags for known hosts. Unknown or malformed URLs return []."""
    hostname = _hostname(url or "")
    if hostname is None:
        logger.warning("domain_classifier.unparseable_url", url_chars=len(url or ""))
        return []

    for domain, tags in DOMAIN_TAGS.items():
        if _matches_domain(hostname, domain):
            return list(tags)
    return []


def is_map_url(url: str) -> bool:
    return any(pattern.search(url or "") for pattern in MAP_URL_PATTERNS)


def place_name_from_title(title: str) -> str:
    """Leading segment of a map page title, read as the store/place name."""
    return (title or "").split(PLACE_NAME_SEPARATOR)[0].strip()


def classify_content_type(
    title: str,
    description: str,
    domain: str,
    code_block_count: int = 0,
) -> str:
    """Coarse category: documentation, video, article, blog, tutorial, news or other.

    Domain rules win over text rules; text is title + description only.
    """
    domain = (domain or "").lower()
    text = f"{title or ''} {description or ''}".lower()

    if "github" in domain:
        return "documentation"
    if "youtube" in domain or "vimeo" in domain:
        return "video"
    if "qiita" in domain or "zenn" in domain:
        return "article"
    if "blog" in domain:
        return "blog"

    if any(word in text for word in ("tutorial", "how to", "step")):
        return "tutorial"
    if any(word in text for word in ("documentation", "api", "reference")):
        return "documentation"
    if code_block_count > CODE_BLOCK_TUTORIAL_THRESHOLD:
        return "tutorial"
    if "news" in text or "breaking" in text:
        return "news"

    return "other"
