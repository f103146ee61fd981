"""Provider selection and failure normalization for model calls.

LLMRouter.generate() is the only way the app reaches Gemini. It checks the
provider flag and the API key, runs the adapter once and converts whatever
went wrong into an LLMError:
- timeouts -> E_LLM_TIMEOUT
- connection failures and malformed replies -> E_LLM_PROVIDER_DOWN
- non-2xx replies -> classify_provider_error() on status and body
- LLMErrors raised by the adapter (blocked content) pass through

Each call logs llm.request.started and then llm.request.finished or
llm.request.failed. Events carry sizes, token counts and latency through
safe_kv(), never prompt or reply text.
"""

import time

import httpx

from linkranger.logging import get_logger
from linkranger.services.llm.adapter import LLMAdapter
from linkranger.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from linkranger.services.llm.gemini_adapter import GeminiAdapter
from linkranger.services.llm.types import (
    LLMCallContext,
    LLMOperation,
    LLMRequest,
    LLMResponse,
)
from linkranger.services.redact import safe_kv

logger = get_logger(__name__)

DEFAULT_TIMEOUT_S = 30


def _base_log_fields(provider: str, req: LLMRequest, call_ctx: LLMCallContext | None) -> dict:
    fields: dict = {
        "provider": provider,
        "model_name": req.model_name,
        "llm_operation": (call_ctx.operation if call_ctx else LLMOperation.OTHER).value,
    }
    if call_ctx and call_ctx.cache_key:
        fields["cache_key"] = call_ctx.cache_key
    return fields


def _response_json(response: httpx.Response) -> dict | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def normalize_failure(provider: str, exc: Exception) -> tuple[LLMError, int | None]:
    """Convert an adapter failure to an LLMError plus the HTTP status, if any."""
    if isinstance(exc, LLMError):
        return exc, None
    if isinstance(exc, httpx.TimeoutException):
        return LLMError(LLMErrorClass.TIMEOUT, "Request timed out", provider=provider), None
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        error_class = classify_provider_error(
            provider, status_code, _response_json(exc.response), None
        )
        return (
            LLMError(error_class, f"Provider returned HTTP {status_code}", provider=provider),
            status_code,
        )
    if isinstance(exc, httpx.NetworkError):
        return LLMError(LLMErrorClass.PROVIDER_DOWN, "Network error", provider=provider), None
    return (
        LLMError(
            LLMErrorClass.PROVIDER_DOWN,
            f"Unexpected error: {type(exc).__name__}",
            provider=provider,
        ),
        None,
    )


class LLMRouter:
    def __init__(self, client: httpx.AsyncClient, *, enable_gemini: bool = True):
        """
        Args:
            client: Shared httpx.AsyncClient for connection pooling.
            enable_gemini: ENABLE_GEMINI flag; a disabled provider fails every call.
        """
        self._feature_flags = {"gemini": enable_gemini}
        self._adapters: dict[str, LLMAdapter] = {"gemini": GeminiAdapter(client)}

    def resolve_adapter(self, provider: str) -> LLMAdapter:
        """Raises LLMError(MODEL_NOT_AVAILABLE) for unknown or disabled providers."""
        if provider not in self._adapters:
            raise LLMError(
                LLMErrorClass.MODEL_NOT_AVAILABLE, f"Unknown provider: {provider}", provider=provider
            )
        if not self._feature_flags.get(provider, False):
            raise LLMError(
                LLMErrorClass.MODEL_NOT_AVAILABLE,
                f"Provider {provider} is disabled",
                provider=provider,
            )
        return self._adapters[provider]

    def is_provider_available(self, provider: str) -> bool:
        return provider in self._adapters and self._feature_flags.get(provider, False)

    async def generate(
        self,
        provider: str,
        req: LLMRequest,
        api_key: str | None,
        *,
        timeout_s: int = DEFAULT_TIMEOUT_S,
        call_context: LLMCallContext | None = None,
    ) -> LLMResponse:
        """Run one generation.

        Raises:
            LLMError: Any failure, already classified.
        """
        adapter = self.resolve_adapter(provider)
        if not api_key:
            raise LLMError(
                LLMErrorClass.NOT_CONFIGURED,
                f"No API key configured for {provider}",
                provider=provider,
            )

        base = _base_log_fields(provider, req, call_context)
        logger.info(
            "llm.request.started",
            **safe_kv(**base, prompt_chars=sum(len(m.content) for m in req.messages)),
        )
        start = time.monotonic()

        try:
            response = await adapter.generate(req, api_key=api_key, timeout_s=timeout_s)
        except Exception as e:
            error, status_code = normalize_failure(provider, e)
            logger.error(
                "llm.request.failed",
                **safe_kv(
                    **base,
                    outcome="error",
                    error_class=error.error_class.value,
                    latency_ms=int((time.monotonic() - start) * 1000),
                    status_code=status_code,
                ),
            )
            if error is e:
                raise
            raise error from e

        usage = response.usage
        logger.info(
            "llm.request.finished",
            **safe_kv(
                **base,
                outcome="success",
                latency_ms=int((time.monotonic() - start) * 1000),
                tokens_input=usage.prompt_tokens if usage else None,
                tokens_output=usage.completion_tokens if usage else None,
                tokens_total=usage.total_tokens if usage else None,
                response_chars=len(response.text),
            ),
        )
        return response
