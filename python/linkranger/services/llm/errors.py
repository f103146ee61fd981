"""Normalized model-call errors.

Adapters raise transport errors as they come; the router catches them once
and maps them here to an LLMErrorClass. Callers only ever see LLMError:
the tagger turns any class into the keyword fallback, the analysis handler
maps TIMEOUT to 504 and everything else to 503.
"""

from enum import Enum

from linkranger.logging import get_logger

logger = get_logger(__name__)


class LLMErrorClass(str, Enum):
    INVALID_KEY = "E_LLM_INVALID_KEY"
    RATE_LIMIT = "E_LLM_RATE_LIMIT"
    CONTEXT_TOO_LARGE = "E_LLM_CONTEXT_TOO_LARGE"
    TIMEOUT = "E_LLM_TIMEOUT"
    PROVIDER_DOWN = "E_LLM_PROVIDER_DOWN"
    CONTENT_BLOCKED = "E_LLM_CONTENT_BLOCKED"
    MODEL_NOT_AVAILABLE = "E_MODEL_NOT_AVAILABLE"
    NOT_CONFIGURED = "E_LLM_NOT_CONFIGURED"


class LLMError(Exception):
    def __init__(
        self,
        error_class: LLMErrorClass,
        message: str,
        provider: str | None = None,
    ):
        self.error_class = error_class
        self.message = message
        self.provider = provider
        super().__init__(message)


# google.rpc status names found in Gemini error bodies
_GEMINI_RPC_STATUS = {
    "UNAUTHENTICATED": LLMErrorClass.INVALID_KEY,
    "PERMISSION_DENIED": LLMErrorClass.INVALID_KEY,
    "RESOURCE_EXHAUSTED": LLMErrorClass.RATE_LIMIT,
    "NOT_FOUND": LLMErrorClass.MODEL_NOT_AVAILABLE,
    "DEADLINE_EXCEEDED": LLMErrorClass.TIMEOUT,
}

_GEMINI_HTTP_STATUS = {
    401: LLMErrorClass.INVALID_KEY,
    403: LLMErrorClass.INVALID_KEY,
    404: LLMErrorClass.MODEL_NOT_AVAILABLE,
    429: LLMErrorClass.RATE_LIMIT,
    504: LLMErrorClass.TIMEOUT,
}


def classify_provider_error(
    provider: str,
    status_code: int | None,
    json_body: dict | None,
    exception: Exception | None,
) -> LLMErrorClass:
    """Map a failed call to an error class.

    Exceptions are checked first (timeouts, connection failures), then the
    provider's HTTP status and error body.
    """
    if exception is not None:
        exception_type = type(exception).__name__
        if "Timeout" in exception_type or "timeout" in str(exception).lower():
            return LLMErrorClass.TIMEOUT
        if "Network" in exception_type or "Connection" in exception_type:
            return LLMErrorClass.PROVIDER_DOWN

    if status_code is None:
        return LLMErrorClass.PROVIDER_DOWN

    if provider == "gemini":
        return _classify_gemini_error(status_code, json_body)

    logger.warning("llm.error.unknown_provider", provider=provider)
    return LLMErrorClass.PROVIDER_DOWN


def _classify_gemini_error(status_code: int, json_body: dict | None) -> LLMErrorClass:
    """Gemini answers {"error": {"code", "message", "status", "details"}}.

    A bad key is a 400 whose details carry reason API_KEY_INVALID, so the
    body is consulted before the HTTP status.
    """
    error = (json_body or {}).get("error") or {}
    if not isinstance(error, dict):
        error = {}

    reasons = {
        detail.get("reason")
        for detail in error.get("details") or []
        if isinstance(detail, dict)
    }
    if "API_KEY_INVALID" in reasons:
        return LLMErrorClass.INVALID_KEY

    if "exceeds the maximum" in str(error.get("message", "")).lower():
        return LLMErrorClass.CONTEXT_TOO_LARGE

    rpc_status = error.get("status")
    if rpc_status in _GEMINI_RPC_STATUS:
        return _GEMINI_RPC_STATUS[rpc_status]

    return _GEMINI_HTTP_STATUS.get(status_code, LLMErrorClass.PROVIDER_DOWN)
