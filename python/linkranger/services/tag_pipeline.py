"""Tag generation pipeline.

One implementation serves every tagging endpoint; a TaggingStrategy selects
the plan limits and which passes run.

Flow:
1. Cache lookup (per-user key over "title description")
2. Page metadata fetch (failure is non-fatal; caller values are used)
3. Domain tags (+ place name for map links)
4. Key terms from title/description, page keywords and domain tags
5. Short-circuit: short text with domain tags → no model call, no usage row
6. Quota check (E_QUOTA_EXCEEDED)
7. AI tags (fallback on failure), main entities, candidate entities
8. Priority merge, cache write, usage record

Dependencies (router, fetcher, key, model) arrive in a TaggingContext built
once at startup and stored on app.state.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from uuid import UUID

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from linkranger.db.models import UsageType
from linkranger.errors import ApiError, ApiErrorCode
from linkranger.logging import get_logger
from linkranger.services.ai_tagger import MAX_TAG_CHARS, AITagger
from linkranger.services.content_fetcher import ContentFetcher, PageMetadata
from linkranger.services.domain_classifier import (
    is_map_url,
    place_name_from_title,
    tags_for_domain,
)
from linkranger.services.keyword_extractor import (
    MAX_TERM_CHARS,
    MIN_TERM_CHARS,
    extract_key_terms,
)
from linkranger.services.llm import LLMRouter
from linkranger.services.plans import PlanPolicy, get_plan_policy
from linkranger.services.redact import safe_kv
from linkranger.services.tag_cache import build_cache_key, get_cached_tags, store_cached_tags
from linkranger.services.tag_merger import extract_candidate_entities, merge_tags
from linkranger.services.usage import check_usage_limit, estimate_tokens, record_usage

logger = get_logger(__name__)

SHORT_CONTENT_CHARS = 50


@dataclass
class TaggingContext:
    """Process-wide collaborators for tagging, built once at startup."""

    router: LLMRouter
    fetcher: ContentFetcher
    api_key: str | None
    model_name: str
    llm_timeout_s: int = 30
    fetch_timeout_s: float = 10.0
    metadata_fetch_timeout_s: float = 15.0
    cache_ttl: timedelta = field(default_factory=lambda: timedelta(days=7))
    analysis_model_name: str | None = None
    analysis_timeout_s: int = 110

    def tagger(self) -> AITagger:
        return AITagger(
            self.router,
            self.api_key,
            model_name=self.model_name,
            timeout_s=self.llm_timeout_s,
        )


@dataclass(frozen=True)
class TaggingStrategy:
    """Per-call knobs: plan limits and which passes run."""

    policy: PlanPolicy
    short_content_chars: int = SHORT_CONTENT_CHARS
    max_tag_length: int = MAX_TAG_CHARS
    extract_main_entities: bool = True
    use_page_metadata: bool = True

    @classmethod
    def for_plan(cls, plan, **overrides) -> "TaggingStrategy":
        return cls(policy=get_plan_policy(plan), **overrides)


@dataclass(frozen=True)
class TagRequest:
    user_id: UUID
    url: str
    title: str
    description: str | None = None

    @property
    def combined_text(self) -> str:
        return f"{self.title} {self.description or ''}".strip()


@dataclass(frozen=True)
class TagResult:
    tags: list[str]
    from_cache: bool
    tokens_used: int
    cost: float

    def to_dict(self) -> dict:
        return {
            "tags": self.tags,
            "fromCache": self.from_cache,
            "tokensUsed": self.tokens_used,
            "cost": self.cost,
        }


class TagPipeline:
    """Runs a TagRequest through cache, heuristics, model calls and merge."""

    def __init__(self, context: TaggingContext):
        self._context = context

    async def _page_metadata(self, request: TagRequest, cache_key: str) -> PageMetadata:
        try:
            return await self._context.fetcher.fetch_metadata(
                request.url, timeout_s=self._context.fetch_timeout_s
            )
        except ApiError as e:
            logger.warning(
                "tag_pipeline.fetch.failed",
                **safe_kv(error_code=e.code.value, cache_key=cache_key),
            )
            return PageMetadata()

    async def run(self, db: Session, request: TagRequest, strategy: TaggingStrategy) -> TagResult:
        policy = strategy.policy
        max_tags = policy.max_tags_per_request
        combined = request.combined_text
        cache_key = build_cache_key(request.user_id, combined)

        cached = await run_in_threadpool(get_cached_tags, db, cache_key, self._context.cache_ttl)
        if cached is not None:
            logger.info("tag_pipeline.cache.hit", cache_key=cache_key, tag_count=len(cached))
            return TagResult(tags=cached, from_cache=True, tokens_used=0, cost=0)

        page = PageMetadata()
        if strategy.use_page_metadata:
            page = await self._page_metadata(request, cache_key)

        analysis_title = page.title or request.title or ""
        analysis_description = page.description or request.description or ""

        domain_tags = tags_for_domain(request.url)
        if is_map_url(request.url) and request.title:
            place_name = place_name_from_title(request.title)
            if place_name:
                domain_tags.append(place_name)

        key_terms = extract_key_terms(analysis_title, analysis_description)
        key_terms.extend(
            k
            for k in page.keywords
            if MIN_TERM_CHARS <= len(k) <= MAX_TERM_CHARS and k not in key_terms
        )
        key_terms.extend(t for t in domain_tags if t not in key_terms)

        if len(combined) < strategy.short_content_chars and domain_tags:
            tags = merge_tags(max_tags, domain_tags, key_terms)
            await run_in_threadpool(store_cached_tags, db, cache_key, tags)
            logger.info(
                "tag_pipeline.short_circuit",
                cache_key=cache_key,
                combined_chars=len(combined),
                tag_count=len(tags),
            )
            return TagResult(tags=tags, from_cache=False, tokens_used=0, cost=0)

        quota = await run_in_threadpool(
            check_usage_limit, db, request.user_id, policy.plan, UsageType.tags
        )
        if not quota.allowed:
            raise ApiError(ApiErrorCode.E_QUOTA_EXCEEDED, quota.reason or "Usage limit reached")

        tagger = self._context.tagger()
        ai = await tagger.generate_tags(
            title=analysis_title,
            description=analysis_description,
            content=combined,
            key_terms=key_terms,
            max_tags=max_tags,
            fallback_text=combined,
            max_tag_length=strategy.max_tag_length,
            cache_key=cache_key,
        )

        main_entities: list[str] = []
        if strategy.extract_main_entities:
            main_entities = await tagger.extract_main_entities(
                title=analysis_title,
                description=analysis_description,
                content=combined,
                max_length=strategy.max_tag_length,
                cache_key=cache_key,
            )

        candidates = extract_candidate_entities(
            analysis_title, analysis_description, max_length=strategy.max_tag_length
        )

        tags = merge_tags(max_tags, domain_tags, ai.tags, main_entities, candidates, key_terms)

        tokens_used = ai.total_tokens or estimate_tokens(ai.prompt)
        cost = policy.cost_per_request

        await run_in_threadpool(store_cached_tags, db, cache_key, tags)
        await run_in_threadpool(
            record_usage, db, request.user_id, UsageType.tags, tokens_used, cost
        )

        logger.info(
            "tag_pipeline.completed",
            cache_key=cache_key,
            tag_count=len(tags),
            domain_tag_count=len(domain_tags),
            ai_tag_count=len(ai.tags),
            main_entity_count=len(main_entities),
            used_fallback=ai.used_fallback,
            tokens_used=tokens_used,
        )
        return TagResult(tags=tags, from_cache=False, tokens_used=tokens_used, cost=cost)
