"""Gemini access for tagging and analysis.

Callers build an LLMRequest and go through LLMRouter.generate(), which picks
the adapter, enforces the provider flag and the API key, logs
llm.request.* events and turns every failure into an LLMError.

Usage:
    router = LLMRouter(httpx_client)
    request = LLMRequest(
        model_name="gemini-2.0-flash",
        messages=single_user_turn(build_tagging_prompt(...)),
        max_tokens=200,
    )
    response = await router.generate("gemini", request, api_key=settings.gemini_api_key)
"""

from linkranger.services.llm.adapter import LLMAdapter
from linkranger.services.llm.errors import LLMError, LLMErrorClass, classify_provider_error
from linkranger.services.llm.router import LLMRouter
from linkranger.services.llm.types import (
    LLMCallContext,
    LLMOperation,
    LLMRequest,
    LLMResponse,
    LLMUsage,
    Turn,
)

__all__ = [
    "Turn",
    "LLMRequest",
    "LLMResponse",
    "LLMUsage",
    "LLMOperation",
    "LLMCallContext",
    "LLMAdapter",
    "LLMRouter",
    "LLMError",
    "LLMErrorClass",
    "classify_provider_error",
]
