"""AI usage routes: stats, limit check, and client-reported usage."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from linkranger.api.deps import ensure_same_user, get_db
from linkranger.auth.middleware import Viewer, get_viewer
from linkranger.responses import success_response
from linkranger.schemas.common import DataRequest
from linkranger.schemas.usage import CheckUsageRequest, RecordUsageRequest
from linkranger.services.usage import check_usage_limit, get_usage_stats, record_usage

router = APIRouter(prefix="/ai-usage")


@router.post("/stats")
def usage_stats(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Current month totals, today's request count and monthly analysis count."""
    return success_response(get_usage_stats(db, viewer.user_id))


@router.post("/check")
def check_usage(
    body: DataRequest[CheckUsageRequest],
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Report whether another AI call of the given type is within plan limits.

    A breach is a normal result ({allowed: false, reason}), not an error.
    """
    payload = body.data
    ensure_same_user(viewer, payload.user_id)
    result = check_usage_limit(db, viewer.user_id, viewer.plan, payload.type)

    data: dict = {"allowed": result.allowed}
    if result.reason:
        data["reason"] = result.reason
    return success_response(data)


@router.post("/record")
def record(
    body: DataRequest[RecordUsageRequest],
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    payload = body.data
    ensure_same_user(viewer, payload.user_id)
    record_usage(db, viewer.user_id, payload.type, payload.tokens_used, payload.cost)
    return success_response({"success": True})
