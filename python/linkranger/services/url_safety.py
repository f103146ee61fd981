"""SSRF guards for outbound page fetches.

Every URL the service fetches on a user's behalf passes through here, and so
does every redirect hop:
- URL validation (scheme, port, userinfo, host present)
- Hostname denylist (localhost, .local, .internal, .lan, .home)
- IP literal and DNS resolution checks (blocks private/reserved ranges)
"""

import socket
from ipaddress import IPv4Address, IPv6Address, ip_address
from urllib.parse import urlparse, urlunparse

from linkranger.errors import ApiError, ApiErrorCode
from linkranger.logging import get_logger

logger = get_logger(__name__)

ALLOWED_SCHEMES = frozenset({"http", "https"})

# None = default port for scheme
ALLOWED_PORTS = frozenset({80, 443, None})

HOSTNAME_DENYLIST_EXACT = frozenset({"localhost"})
HOSTNAME_DENYLIST_SUFFIXES = (".local", ".internal", ".lan", ".home", ".localhost")

METADATA_IP = "169.254.169.254"


def normalize_url(url: str) -> str:
    """Normalize URL for fetching.

    - Lowercase scheme and host
    - Remove default ports (80 for http, 443 for https)
    - Strip fragment
    - Preserve path and query
    """
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()

    port = parsed.port
    if port == 80 and scheme == "http":
        port = None
    if port == 443 and scheme == "https":
        port = None

    if ":" in host:
        host = f"[{host}]"
    netloc = f"{host}:{port}" if port is not None else host
    path = parsed.path or "/"

    return urlunparse((scheme, netloc, path, parsed.params, parsed.query, ""))


def validate_url(url: str) -> tuple[str, str, int | None]:
    """Validate URL for SSRF protection.

    Returns:
        Tuple of (normalized_url, hostname, port)

    Raises:
        ApiError(E_INVALID_URL): Not a parseable absolute URL.
        ApiError(E_SSRF_BLOCKED): Disallowed scheme, credentials, or port.
    """
    if not url or not isinstance(url, str):
        raise ApiError(ApiErrorCode.E_INVALID_URL, "URL is required")

    try:
        parsed = urlparse(url.strip())
        port = parsed.port
    except ValueError as e:
        raise ApiError(ApiErrorCode.E_INVALID_URL, f"Invalid URL: {e}") from e

    scheme = parsed.scheme.lower()
    if not scheme or not parsed.netloc:
        raise ApiError(ApiErrorCode.E_INVALID_URL, "URL must be absolute")

    if scheme not in ALLOWED_SCHEMES:
        raise ApiError(
            ApiErrorCode.E_SSRF_BLOCKED,
            f"URL scheme must be http or https, got: {scheme}",
        )

    if parsed.username is not None or parsed.password is not None or "@" in parsed.netloc:
        raise ApiError(ApiErrorCode.E_SSRF_BLOCKED, "URL must not contain credentials")

    hostname = parsed.hostname
    if not hostname:
        raise ApiError(ApiErrorCode.E_INVALID_URL, "URL must have a host")

    if port not in ALLOWED_PORTS:
        raise ApiError(
            ApiErrorCode.E_SSRF_BLOCKED,
            f"URL port must be 80 or 443, got: {port}",
        )

    return normalize_url(url.strip()), hostname, port


def check_hostname_denylist(hostname: str) -> None:
    """Check hostname against denylist (pre-DNS).

    Raises:
        ApiError(E_SSRF_BLOCKED): If hostname is in denylist.
    """
    hostname_lower = hostname.lower().rstrip(".")

    if hostname_lower in HOSTNAME_DENYLIST_EXACT:
        raise ApiError(ApiErrorCode.E_SSRF_BLOCKED, "Request blocked for security reasons")

    if hostname_lower.endswith(HOSTNAME_DENYLIST_SUFFIXES):
        raise ApiError(ApiErrorCode.E_SSRF_BLOCKED, "Request blocked for security reasons")


def is_private_ip(ip: IPv4Address | IPv6Address) -> bool:
    """Check if IP address is private/reserved.

    Blocks:
    - Loopback (127.0.0.0/8, ::1)
    - Private (10/8, 172.16/12, 192.168/16, fc00::/7)
    - Link-local (169.254/16, fe80::/10) including the metadata endpoint
    - Reserved, multicast and unspecified ranges
    """
    if isinstance(ip, IPv6Address) and ip.ipv4_mapped is not None:
        return is_private_ip(ip.ipv4_mapped)

    if (
        ip.is_loopback
        or ip.is_private
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    ):
        return True

    return str(ip) == METADATA_IP


def check_ip_literal(hostname: str) -> bool:
    """Reject private IP literals before any DNS work.

    Returns:
        True if hostname is an IP literal (public), False if it is a name.

    Raises:
        ApiError(E_SSRF_BLOCKED): If hostname is a private/reserved IP literal.
    """
    try:
        ip = ip_address(hostname.strip("[]"))
    except ValueError:
        return False

    if is_private_ip(ip):
        logger.warning("ssrf_blocked", reason="private_ip_literal")
        raise ApiError(ApiErrorCode.E_SSRF_BLOCKED, "Request blocked for security reasons")
    return True


def validate_dns_resolution(hostname: str) -> None:
    """Resolve hostname and validate all IPs are public.

    Raises:
        ApiError(E_FETCH_FAILED): If resolution fails.
        ApiError(E_SSRF_BLOCKED): If any resolved IP is private.
    """
    try:
        results = socket.getaddrinfo(hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except socket.gaierror as e:
        logger.warning("dns_resolution_failed", hostname=hostname, error=str(e))
        raise ApiError(ApiErrorCode.E_FETCH_FAILED, "Failed to resolve hostname") from e

    if not results:
        raise ApiError(ApiErrorCode.E_FETCH_FAILED, "Failed to resolve hostname")

    for _family, _, _, _, sockaddr in results:
        ip_str = sockaddr[0]
        try:
            ip = ip_address(ip_str)
        except ValueError:
            continue

        if is_private_ip(ip):
            logger.warning("ssrf_blocked", reason="private_ip_resolved", hostname=hostname)
            raise ApiError(ApiErrorCode.E_SSRF_BLOCKED, "Request blocked for security reasons")


def check_url_static(url: str) -> tuple[str, str]:
    """Run every check that needs no network access.

    Returns:
        Tuple of (normalized_url, hostname)
    """
    normalized, hostname, _port = validate_url(url)
    check_hostname_denylist(hostname)
    check_ip_literal(hostname)
    return normalized, hostname
