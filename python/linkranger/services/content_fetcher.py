"""Page fetching and Open Graph / meta extraction.

Fetch:
- SSRF checks on the initial URL and on every redirect hop
- Manual redirect handling (max 5 hops by default)
- Bounded per-request timeout and response-size cap
- Only HTML responses are accepted

Parse (lxml):
- title: og:title → twitter:title → <title>
- description: og:description → twitter:description → meta description
- image: og:image → twitter:image (resolved against the page URL)
- site name: og:site_name
- keywords: meta keywords split on commas (trimmed, empties dropped)
- headings: h1-h4 text, 0 < len < 100, first 10
- code blocks: count of pre/code elements (content-type heuristics)

Failures surface as ApiError with distinct codes; callers decide whether to
recover (the tag pipeline and the metadata endpoint both do).
"""

import asyncio
from dataclasses import dataclass, field
from urllib.parse import urljoin

import httpx
from lxml import etree
from lxml.html import HTMLParser, document_fromstring

from linkranger.errors import ApiError, ApiErrorCode
from linkranger.logging import get_logger
from linkranger.services.url_safety import check_url_static, validate_dns_resolution

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 10.0
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_MAX_BYTES = 5 * 1024 * 1024

REDIRECT_STATUS_CODES = frozenset({301, 302, 303, 307, 308})
HTML_CONTENT_TYPES = frozenset({"text/html", "application/xhtml+xml"})

MAX_HEADINGS = 10
MAX_HEADING_CHARS = 100

USER_AGENT = "Mozilla/5.0 (compatible; LinkRangerBot/1.0; +https://linkranger.app/bot)"


@dataclass
class FetchedPage:
    """Raw HTML body of a successfully fetched page."""

    url: str
    status_code: int
    content_type: str | None
    body: bytes
    encoding: str | None = None


@dataclass
class PageMetadata:
    """Metadata extracted from a page's HTML."""

    title: str = ""
    description: str = ""
    image_url: str = ""
    site_name: str = ""
    keywords: list[str] = field(default_factory=list)
    headings: list[str] = field(default_factory=list)
    code_block_count: int = 0


class ContentFetcher:
    """SSRF-guarded async page fetcher.

    The httpx client must be created with follow_redirects=False and
    trust_env=False; redirects are followed here so each hop is checked.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        max_redirects: int = DEFAULT_MAX_REDIRECTS,
        max_bytes: int = DEFAULT_MAX_BYTES,
        resolve_dns: bool = True,
    ):
        self._client = client
        self._max_redirects = max_redirects
        self._max_bytes = max_bytes
        self._resolve_dns = resolve_dns

    async def fetch(self, url: str, *, timeout_s: float = DEFAULT_TIMEOUT_S) -> FetchedPage:
        """Fetch an HTML page.

        Raises:
            ApiError: E_INVALID_URL, E_SSRF_BLOCKED, E_FETCH_TIMEOUT, E_FETCH_FAILED,
                E_FETCH_HTTP_STATUS, E_FETCH_NOT_HTML or E_FETCH_TOO_LARGE.
        """
        current = url
        for _hop in range(self._max_redirects + 1):
            current = await self._check_target(current)

            try:
                async with self._client.stream(
                    "GET",
                    current,
                    headers={"User-Agent": USER_AGENT, "Accept": "text/html,application/xhtml+xml"},
                    timeout=httpx.Timeout(timeout_s),
                ) as response:
                    if response.status_code in REDIRECT_STATUS_CODES:
                        location = response.headers.get("location")
                        if not location:
                            raise ApiError(ApiErrorCode.E_FETCH_FAILED, "Redirect without Location")
                        current = urljoin(current, location)
                        continue

                    return await self._read_page(current, response)

            except httpx.TimeoutException as e:
                logger.warning("content_fetch.timeout", timeout_s=timeout_s)
                raise ApiError(ApiErrorCode.E_FETCH_TIMEOUT, "Page fetch timed out") from e
            except httpx.HTTPError as e:
                logger.warning("content_fetch.failed", error_type=type(e).__name__)
                raise ApiError(ApiErrorCode.E_FETCH_FAILED, "Page fetch failed") from e

        raise ApiError(ApiErrorCode.E_FETCH_FAILED, "Too many redirects")

    async def fetch_metadata(
        self, url: str, *, timeout_s: float = DEFAULT_TIMEOUT_S
    ) -> PageMetadata:
        """Fetch a page and extract its metadata."""
        page = await self.fetch(url, timeout_s=timeout_s)
        return parse_page_metadata(page.body, base_url=page.url, encoding=page.encoding)

    async def _check_target(self, url: str) -> str:
        normalized, hostname = check_url_static(url)
        if self._resolve_dns:
            await asyncio.to_thread(validate_dns_resolution, hostname)
        return normalized

    async def _read_page(self, url: str, response: httpx.Response) -> FetchedPage:
        if not 200 <= response.status_code < 300:
            raise ApiError(
                ApiErrorCode.E_FETCH_HTTP_STATUS,
                f"Page returned HTTP {response.status_code}",
            )

        content_type = response.headers.get("content-type")
        if content_type:
            mime = content_type.split(";")[0].strip().lower()
            if mime not in HTML_CONTENT_TYPES:
                raise ApiError(ApiErrorCode.E_FETCH_NOT_HTML, f"Unsupported content type: {mime}")

        declared_length = response.headers.get("content-length")
        if declared_length and declared_length.isdigit() and int(declared_length) > self._max_bytes:
            raise ApiError(ApiErrorCode.E_FETCH_TOO_LARGE, "Page exceeds size limit")

        chunks: list[bytes] = []
        total = 0
        async for chunk in response.aiter_bytes():
            total += len(chunk)
            if total > self._max_bytes:
                raise ApiError(ApiErrorCode.E_FETCH_TOO_LARGE, "Page exceeds size limit")
            chunks.append(chunk)

        return FetchedPage(
            url=url,
            status_code=response.status_code,
            content_type=content_type,
            body=b"".join(chunks),
            encoding=response.charset_encoding,
        )


def _meta(doc, attr: str, value: str) -> str:
    for element in doc.iter("meta"):
        if (element.get(attr) or "").strip().lower() == value:
            content = (element.get("content") or "").strip()
            if content:
                return content
    return ""


def _first(*values: str) -> str:
    for value in values:
        if value:
            return value
    return ""


def parse_page_metadata(
    body: bytes | str, *, base_url: str | None = None, encoding: str | None = None
) -> PageMetadata:
    """Extract metadata from HTML.

    Unparseable or empty documents yield an empty PageMetadata.
    """
    if not body or not body.strip():
        return PageMetadata()

    if isinstance(body, str):
        body = body.encode("utf-8")
        encoding = "utf-8"

    try:
        parser = HTMLParser(encoding=encoding) if encoding else None
        doc = document_fromstring(body, parser=parser)
    except (etree.ParserError, ValueError, LookupError):
        return PageMetadata()

    title_el = doc.find(".//title")
    page_title = title_el.text_content().strip() if title_el is not None else ""

    title = _first(
        _meta(doc, "property", "og:title"),
        _meta(doc, "name", "twitter:title"),
        _meta(doc, "property", "twitter:title"),
        page_title,
    )
    description = _first(
        _meta(doc, "property", "og:description"),
        _meta(doc, "name", "twitter:description"),
        _meta(doc, "property", "twitter:description"),
        _meta(doc, "name", "description"),
    )
    image_url = _first(
        _meta(doc, "property", "og:image"),
        _meta(doc, "name", "twitter:image"),
        _meta(doc, "property", "twitter:image"),
    )
    if image_url and base_url:
        image_url = urljoin(base_url, image_url)

    raw_keywords = _meta(doc, "name", "keywords")
    keywords = [k.strip() for k in raw_keywords.split(",") if k.strip()]

    headings: list[str] = []
    for element in doc.iter("h1", "h2", "h3", "h4"):
        text = " ".join(element.text_content().split())
        if 0 < len(text) < MAX_HEADING_CHARS:
            headings.append(text)
        if len(headings) >= MAX_HEADINGS:
            break

    code_block_count = sum(1 for _ in doc.iter("pre", "code"))

    return PageMetadata(
        title=title,
        description=description,
        image_url=image_url,
        site_name=_meta(doc, "property", "og:site_name"),
        keywords=keywords,
        headings=headings,
        code_block_count=code_block_count,
    )
