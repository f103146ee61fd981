"""Tag generation routes.

Both endpoints run the same pipeline; they differ only in payload shape.
Routes are transport-only: authorize, rate limit, call the pipeline.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from linkranger.api.deps import ensure_same_user, get_db, get_rate_limiter, get_tagging_context
from linkranger.auth.middleware import Viewer, get_viewer
from linkranger.responses import success_response
from linkranger.schemas.common import DataRequest
from linkranger.schemas.tags import GenerateEnhancedTagsRequest, GenerateTagsRequest
from linkranger.services.rate_limit import RateLimiter
from linkranger.services.tag_pipeline import TaggingContext, TaggingStrategy, TagPipeline, TagRequest

router = APIRouter()


async def _run_pipeline(
    db: Session,
    context: TaggingContext,
    viewer: Viewer,
    url: str,
    title: str,
    description: str | None,
) -> dict:
    request = TagRequest(user_id=viewer.user_id, url=url, title=title, description=description)
    result = await TagPipeline(context).run(db, request, TaggingStrategy.for_plan(viewer.plan))
    return success_response(result.to_dict())


@router.post("/generate-tags")
async def generate_tags(
    body: DataRequest[GenerateTagsRequest],
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    context: Annotated[TaggingContext, Depends(get_tagging_context)],
    rate_limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> dict:
    """Generate tags for a URL with title and optional description.

    Errors:
        E_FORBIDDEN (403): userId is not the caller
        E_RATE_LIMITED (429): Per-minute burst limit
        E_QUOTA_EXCEEDED (429): Plan quota reached
    """
    payload = body.data
    ensure_same_user(viewer, payload.user_id)
    rate_limiter.check_rpm_limit(viewer.user_id)
    return await _run_pipeline(
        db, context, viewer, payload.url, payload.title, payload.description
    )


@router.post("/generate-enhanced-tags")
async def generate_enhanced_tags(
    body: DataRequest[GenerateEnhancedTagsRequest],
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    context: Annotated[TaggingContext, Depends(get_tagging_context)],
    rate_limiter: Annotated[RateLimiter, Depends(get_rate_limiter)],
) -> dict:
    """Generate tags from client-side link metadata."""
    payload = body.data
    ensure_same_user(viewer, payload.user_id)
    rate_limiter.check_rpm_limit(viewer.user_id)
    metadata = payload.metadata
    return await _run_pipeline(
        db, context, viewer, metadata.url, metadata.title, metadata.description
    )
