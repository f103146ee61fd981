"""Structured link metadata for the fetch-metadata endpoint.

Invalid or blocked URLs are client errors. Any other fetch failure degrades to
a hostname-derived placeholder with low classification confidence.
"""

from linkranger.errors import ApiError, ApiErrorCode
from linkranger.logging import get_logger
from linkranger.services.content_fetcher import ContentFetcher
from linkranger.services.domain_classifier import classify_content_type
from linkranger.services.redact import safe_kv
from linkranger.services.url_safety import check_url_static

logger = get_logger(__name__)

CLASSIFIED_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.1

_CLIENT_ERROR_CODES = frozenset({ApiErrorCode.E_INVALID_URL, ApiErrorCode.E_SSRF_BLOCKED})


def fallback_metadata(hostname: str) -> dict:
    return {
        "title": hostname.replace("www.", "", 1),
        "description": "",
        "imageUrl": "",
        "siteName": "",
        "domain": hostname,
        "headings": [],
        "keywords": [],
        "contentType": {"category": "other", "confidence": FALLBACK_CONFIDENCE},
    }


async def fetch_link_metadata(fetcher: ContentFetcher, url: str, *, timeout_s: float) -> dict:
    """Fetch and classify a page.

    Raises:
        ApiError(E_INVALID_URL | E_SSRF_BLOCKED): URL rejected before fetching.
    """
    _normalized, hostname = check_url_static(url)

    try:
        page = await fetcher.fetch_metadata(url, timeout_s=timeout_s)
    except ApiError as e:
        if e.code in _CLIENT_ERROR_CODES:
            raise
        logger.warning(
            "link_metadata.fetch.failed",
            **safe_kv(error_code=e.code.value, domain=hostname),
        )
        return fallback_metadata(hostname)

    category = classify_content_type(
        page.title, page.description, hostname, page.code_block_count
    )
    logger.info(
        "link_metadata.extracted",
        domain=hostname,
        title_chars=len(page.title),
        description_chars=len(page.description),
        heading_count=len(page.headings),
        category=category,
    )

    return {
        "title": page.title.strip(),
        "description": page.description.strip(),
        "imageUrl": page.image_url,
        "siteName": page.site_name,
        "domain": hostname,
        "headings": page.headings,
        "keywords": page.keywords,
        "contentType": {"category": category, "confidence": CLASSIFIED_CONFIDENCE},
    }
