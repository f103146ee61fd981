"""Value types passed between callers, the router and the Gemini adapter."""

from dataclasses import dataclass
from enum import Enum
from typing import Literal


@dataclass(frozen=True)
class Turn:
    """One message of a conversation; tagging and analysis send a single user turn."""

    role: Literal["system", "user", "assistant"]
    content: str


@dataclass(frozen=True)
class LLMUsage:
    """Token counts reported by the provider. Any of them may be missing."""

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None


@dataclass(frozen=True)
class LLMRequest:
    """A single non-streaming generation request.

    Attributes:
        model_name: Provider model id (for example "gemini-2.0-flash")
        messages: Turns in order, system turn first if present
        max_tokens: Completion token ceiling
        temperature, top_p, top_k: Sampling overrides; None keeps the model default
    """

    model_name: str
    messages: list[Turn]
    max_tokens: int
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None


@dataclass(frozen=True)
class LLMResponse:
    text: str
    usage: LLMUsage | None
    provider_request_id: str | None


class LLMOperation(str, Enum):
    """What a model call is for. Logged with every router event."""

    TAG_GENERATION = "tag_generation"
    ENTITY_EXTRACTION = "entity_extraction"
    ANALYSIS = "analysis"
    OTHER = "other"


@dataclass(frozen=True)
class LLMCallContext:
    operation: LLMOperation
    # Tag cache key of the request being served, for correlating log lines
    cache_key: str | None = None
