"""Model-backed tag generation with a static fallback.

Two calls per tagging run, both through the injected LLMRouter:
- tags: one comma-separated line, parsed and length-filtered; any LLMError
  falls back to fallback_tags so a provider failure never fails the request
- main entities: salient proper nouns; any LLMError yields []

No retries: a single attempt, then fallback.
"""

import re
from dataclasses import dataclass

from linkranger.logging import get_logger
from linkranger.services.llm import LLMCallContext, LLMError, LLMOperation, LLMRequest, LLMRouter
from linkranger.services.llm.prompt import (
    build_main_entities_prompt,
    build_tagging_prompt,
    single_user_turn,
)
from linkranger.services.redact import safe_kv

logger = get_logger(__name__)

PROVIDER = "gemini"
MAX_TAG_CHARS = 20
TAGS_MAX_OUTPUT_TOKENS = 200
ENTITIES_MAX_OUTPUT_TOKENS = 100
TAGS_TEMPERATURE = 0.4

FALLBACK_VOCABULARY = ("技術", "ビジネス", "デザインシステム", "プログラミング", "AI", "ツール")

_TAG_SEPARATOR = re.compile(r"[,、，]")


def parse_tag_list(text: str, max_length: int | None = MAX_TAG_CHARS) -> list[str]:
    """Split a comma-separated model line into trimmed, non-empty tags.

    Handles ASCII and full-width commas. Tags longer than max_length are dropped.
    """
    tags = []
    for raw in _TAG_SEPARATOR.split(text or ""):
        tag = raw.strip().strip("`\"'「」")
        if not tag:
            continue
        if max_length is not None and len(tag) > max_length:
            continue
        tags.append(tag)
    return tags


def fallback_tags(text: str, max_tags: int) -> list[str]:
    """Static vocabulary terms that occur in text (case-insensitive), up to max_tags."""
    lowered = (text or "").lower()
    return [term for term in FALLBACK_VOCABULARY if term.lower() in lowered][:max_tags]


@dataclass(frozen=True)
class AITagResult:
    tags: list[str]
    prompt: str
    used_fallback: bool
    total_tokens: int | None = None


class AITagger:
    """Tag and main-entity extraction through the shared LLM router."""

    def __init__(
        self,
        router: LLMRouter,
        api_key: str | None,
        *,
        model_name: str,
        timeout_s: int,
    ):
        self._router = router
        self._api_key = api_key
        self._model_name = model_name
        self._timeout_s = timeout_s

    async def _complete(
        self, prompt: str, *, max_tokens: int, operation: LLMOperation, cache_key: str | None
    ):
        request = LLMRequest(
            model_name=self._model_name,
            messages=single_user_turn(prompt),
            max_tokens=max_tokens,
            temperature=TAGS_TEMPERATURE,
        )
        return await self._router.generate(
            PROVIDER,
            request,
            self._api_key,
            timeout_s=self._timeout_s,
            call_context=LLMCallContext(operation=operation, cache_key=cache_key),
        )

    async def generate_tags(
        self,
        *,
        title: str,
        description: str,
        content: str,
        key_terms: list[str],
        max_tags: int,
        fallback_text: str,
        max_tag_length: int = MAX_TAG_CHARS,
        cache_key: str | None = None,
    ) -> AITagResult:
        """Ask the model for tags; on any LLMError use the fallback vocabulary."""
        prompt = build_tagging_prompt(title, description, content, key_terms, max_tags)

        try:
            response = await self._complete(
                prompt,
                max_tokens=TAGS_MAX_OUTPUT_TOKENS,
                operation=LLMOperation.TAG_GENERATION,
                cache_key=cache_key,
            )
        except LLMError as e:
            logger.warning(
                "ai_tagger.fallback",
                **safe_kv(error_class=e.error_class.value, cache_key=cache_key),
            )
            return AITagResult(
                tags=fallback_tags(fallback_text, max_tags),
                prompt=prompt,
                used_fallback=True,
            )

        tags = parse_tag_list(response.text, max_tag_length)[:max_tags]
        total_tokens = response.usage.total_tokens if response.usage else None
        return AITagResult(
            tags=tags, prompt=prompt, used_fallback=False, total_tokens=total_tokens
        )

    async def extract_main_entities(
        self,
        *,
        title: str,
        description: str,
        content: str,
        max_length: int = MAX_TAG_CHARS,
        cache_key: str | None = None,
    ) -> list[str]:
        prompt = build_main_entities_prompt(title, description, content)
        try:
            response = await self._complete(
                prompt,
                max_tokens=ENTITIES_MAX_OUTPUT_TOKENS,
                operation=LLMOperation.ENTITY_EXTRACTION,
                cache_key=cache_key,
            )
        except LLMError as e:
            logger.warning(
                "ai_tagger.main_entities_failed",
                **safe_kv(error_class=e.error_class.value, cache_key=cache_key),
            )
            return []

        return parse_tag_list(response.text, max_length)
