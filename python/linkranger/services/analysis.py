"""Long-form AI analysis of a saved theme.

Unlike tagging there is nothing to degrade to, so model failures surface as
E_AI_TIMEOUT / E_AI_UNAVAILABLE. Cost is computed from per-token pricing using
provider-reported usage when present, chars/4 estimates otherwise.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from linkranger.db.models import Plan, UsageType
from linkranger.errors import ApiError, ApiErrorCode
from linkranger.logging import get_logger
from linkranger.services.llm import (
    LLMCallContext,
    LLMError,
    LLMErrorClass,
    LLMOperation,
    LLMRequest,
)
from linkranger.services.llm.prompt import build_analysis_prompt, single_user_turn
from linkranger.services.tag_pipeline import TaggingContext
from linkranger.services.usage import check_usage_limit, estimate_tokens, record_usage

logger = get_logger(__name__)

PROVIDER = "gemini"
ANALYSIS_MAX_OUTPUT_TOKENS = 3072
ANALYSIS_TEMPERATURE = 0.7
ANALYSIS_TOP_P = 0.8
ANALYSIS_TOP_K = 40

# USD per 1M tokens
INPUT_PRICE_PER_MTOK = 0.075
OUTPUT_PRICE_PER_MTOK = 0.30


@dataclass(frozen=True)
class AnalysisCost:
    input_tokens: int
    output_tokens: int
    total_tokens: int
    input_cost: float
    output_cost: float
    has_actual_usage: bool

    @property
    def total_cost(self) -> float:
        return self.input_cost + self.output_cost


def compute_analysis_cost(prompt: str, text: str, usage) -> AnalysisCost:
    input_tokens = (usage.prompt_tokens if usage else None) or estimate_tokens(prompt)
    output_tokens = (usage.completion_tokens if usage else None) or estimate_tokens(text)
    total_tokens = (usage.total_tokens if usage else None) or (input_tokens + output_tokens)
    return AnalysisCost(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        total_tokens=total_tokens,
        input_cost=input_tokens / 1_000_000 * INPUT_PRICE_PER_MTOK,
        output_cost=output_tokens / 1_000_000 * OUTPUT_PRICE_PER_MTOK,
        has_actual_usage=usage is not None,
    )


async def generate_analysis(
    db: Session,
    context: TaggingContext,
    user_id: UUID,
    plan: Plan | str,
    title: str,
    analysis_prompt: str,
) -> dict:
    """Run one analysis call and meter it.

    Raises:
        ApiError(E_QUOTA_EXCEEDED): Plan analysis quota reached.
        ApiError(E_AI_TIMEOUT | E_AI_UNAVAILABLE): Model call failed.
    """
    quota = await run_in_threadpool(check_usage_limit, db, user_id, plan, UsageType.analysis)
    if not quota.allowed:
        raise ApiError(ApiErrorCode.E_QUOTA_EXCEEDED, quota.reason or "Usage limit reached")

    model_name = context.analysis_model_name or context.model_name
    prompt = build_analysis_prompt(analysis_prompt)
    request = LLMRequest(
        model_name=model_name,
        messages=single_user_turn(prompt),
        max_tokens=ANALYSIS_MAX_OUTPUT_TOKENS,
        temperature=ANALYSIS_TEMPERATURE,
        top_p=ANALYSIS_TOP_P,
        top_k=ANALYSIS_TOP_K,
    )

    logger.info(
        "analysis.started",
        user_id=str(user_id),
        title_chars=len(title),
        prompt_chars=len(prompt),
    )

    try:
        response = await context.router.generate(
            PROVIDER,
            request,
            context.api_key,
            timeout_s=context.analysis_timeout_s,
            call_context=LLMCallContext(operation=LLMOperation.ANALYSIS),
        )
    except LLMError as e:
        if e.error_class == LLMErrorClass.TIMEOUT:
            raise ApiError(ApiErrorCode.E_AI_TIMEOUT, "AI analysis timed out") from e
        raise ApiError(ApiErrorCode.E_AI_UNAVAILABLE, "AI analysis is unavailable") from e

    cost = compute_analysis_cost(prompt, response.text, response.usage)
    await run_in_threadpool(
        record_usage, db, user_id, UsageType.analysis, cost.total_tokens, cost.total_cost
    )

    logger.info(
        "analysis.finished",
        user_id=str(user_id),
        tokens_input=cost.input_tokens,
        tokens_output=cost.output_tokens,
        has_actual_usage=cost.has_actual_usage,
        response_chars=len(response.text),
    )

    return {
        "analysis": response.text,
        "fromCache": False,
        "tokensUsed": cost.total_tokens,
        "cost": cost.total_cost,
        "usage": {
            "inputTokens": cost.input_tokens,
            "outputTokens": cost.output_tokens,
            "inputCost": cost.input_cost,
            "outputCost": cost.output_cost,
            "model": model_name,
            "hasActualUsage": cost.has_actual_usage,
            "promptCharacterCount": len(prompt),
            "responseCharacterCount": len(response.text),
        },
    }
