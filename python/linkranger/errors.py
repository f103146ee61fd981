"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes
and the RPC-style status string the mobile client switches on.
"""

from enum import Enum


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"
    E_WEBHOOK_SIGNATURE_INVALID = "E_WEBHOOK_SIGNATURE_INVALID"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"
    E_WEBHOOK_SOURCE_FORBIDDEN = "E_WEBHOOK_SOURCE_FORBIDDEN"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_SUBSCRIPTION_NOT_FOUND = "E_SUBSCRIPTION_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_URL = "E_INVALID_URL"
    E_SSRF_BLOCKED = "E_SSRF_BLOCKED"
    E_WEBHOOK_PAYLOAD_INVALID = "E_WEBHOOK_PAYLOAD_INVALID"
    E_PAYLOAD_TOO_LARGE = "E_PAYLOAD_TOO_LARGE"  # 413

    # Quota / rate limits (429)
    E_QUOTA_EXCEEDED = "E_QUOTA_EXCEEDED"
    E_LINK_LIMIT_EXCEEDED = "E_LINK_LIMIT_EXCEEDED"
    E_RATE_LIMITED = "E_RATE_LIMITED"

    # Upstream fetch errors
    E_FETCH_FAILED = "E_FETCH_FAILED"  # 502
    E_FETCH_TIMEOUT = "E_FETCH_TIMEOUT"  # 504
    E_FETCH_HTTP_STATUS = "E_FETCH_HTTP_STATUS"  # 502
    E_FETCH_NOT_HTML = "E_FETCH_NOT_HTML"  # 502
    E_FETCH_TOO_LARGE = "E_FETCH_TOO_LARGE"  # 502

    # AI errors
    E_AI_TIMEOUT = "E_AI_TIMEOUT"  # 504
    E_AI_UNAVAILABLE = "E_AI_UNAVAILABLE"  # 503

    # Server errors
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_WEBHOOK_SIGNATURE_INVALID: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_WEBHOOK_SOURCE_FORBIDDEN: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_SUBSCRIPTION_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_URL: 400,
    ApiErrorCode.E_SSRF_BLOCKED: 400,
    ApiErrorCode.E_WEBHOOK_PAYLOAD_INVALID: 400,
    ApiErrorCode.E_PAYLOAD_TOO_LARGE: 413,
    ApiErrorCode.E_QUOTA_EXCEEDED: 429,
    ApiErrorCode.E_LINK_LIMIT_EXCEEDED: 429,
    ApiErrorCode.E_RATE_LIMITED: 429,
    ApiErrorCode.E_FETCH_FAILED: 502,
    ApiErrorCode.E_FETCH_TIMEOUT: 504,
    ApiErrorCode.E_FETCH_HTTP_STATUS: 502,
    ApiErrorCode.E_FETCH_NOT_HTML: 502,
    ApiErrorCode.E_FETCH_TOO_LARGE: 502,
    ApiErrorCode.E_AI_TIMEOUT: 504,
    ApiErrorCode.E_AI_UNAVAILABLE: 503,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
}

# Error code to RPC status (the callable-function error vocabulary used by clients)
ERROR_CODE_TO_RPC_STATUS: dict[ApiErrorCode, str] = {
    ApiErrorCode.E_UNAUTHENTICATED: "unauthenticated",
    ApiErrorCode.E_WEBHOOK_SIGNATURE_INVALID: "unauthenticated",
    ApiErrorCode.E_FORBIDDEN: "permission-denied",
    ApiErrorCode.E_WEBHOOK_SOURCE_FORBIDDEN: "permission-denied",
    ApiErrorCode.E_NOT_FOUND: "not-found",
    ApiErrorCode.E_SUBSCRIPTION_NOT_FOUND: "not-found",
    ApiErrorCode.E_INVALID_REQUEST: "invalid-argument",
    ApiErrorCode.E_INVALID_URL: "invalid-argument",
    ApiErrorCode.E_SSRF_BLOCKED: "invalid-argument",
    ApiErrorCode.E_WEBHOOK_PAYLOAD_INVALID: "invalid-argument",
    ApiErrorCode.E_PAYLOAD_TOO_LARGE: "invalid-argument",
    ApiErrorCode.E_QUOTA_EXCEEDED: "resource-exhausted",
    ApiErrorCode.E_LINK_LIMIT_EXCEEDED: "resource-exhausted",
    ApiErrorCode.E_RATE_LIMITED: "resource-exhausted",
    ApiErrorCode.E_FETCH_FAILED: "unavailable",
    ApiErrorCode.E_FETCH_TIMEOUT: "deadline-exceeded",
    ApiErrorCode.E_FETCH_HTTP_STATUS: "unavailable",
    ApiErrorCode.E_FETCH_NOT_HTML: "failed-precondition",
    ApiErrorCode.E_FETCH_TOO_LARGE: "failed-precondition",
    ApiErrorCode.E_AI_TIMEOUT: "deadline-exceeded",
    ApiErrorCode.E_AI_UNAVAILABLE: "unavailable",
    ApiErrorCode.E_AUTH_UNAVAILABLE: "unavailable",
    ApiErrorCode.E_INTERNAL: "internal",
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
        rpc_status: RPC-style status string (derived from code)
    """

    def __init__(self, code: ApiErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        self.rpc_status = ERROR_CODE_TO_RPC_STATUS.get(code, "internal")
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class ForbiddenError(ApiError):
    """Authorization failure error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_FORBIDDEN, message: str = "Forbidden"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)
