"""AI analysis route."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from linkranger.api.deps import ensure_same_user, get_db, get_rate_limiter, get_tagging_context
from linkranger.auth.middleware import Viewer, get_viewer
from linkranger.responses import success_response
from linkranger.schemas.analysis import GenerateAnalysisRequest
from linkranger.schemas.common import DataRequest
from linkranger.services.analysis import generate_analysis
from linkranger.services.rate_limit import RateLimiter
from linkranger.services.tag_pipeline import TaggingContext

router = APIRouter()


@router.post("/generate-ai-analysis")
async def generate_ai_analysis(
    body: DataRequest[GenerateAnalysisRequest],
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    context: Annotated[TaggingContext, Depends(get_tagging_context)],
    rate_limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> dict:
    """Generate a long-form analysis for a theme.

    Errors:
        E_QUOTA_EXCEEDED (429): Plan analysis quota reached
        E_AI_TIMEOUT (504) / E_AI_UNAVAILABLE (503): Model call failed
    """
    payload = body.data
    ensure_same_user(viewer, payload.user_id)
    rate_limiter.check_rpm_limit(viewer.user_id)
    result = await generate_analysis(
        db, context, viewer.user_id, viewer.plan, payload.title, payload.analysis_prompt
    )
    return success_response(result)
