"""Developer-only maintenance routes."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from linkranger.api.deps import get_db
from linkranger.auth.middleware import Viewer, require_developer
from linkranger.logging import get_logger
from linkranger.responses import success_response
from linkranger.services.tag_cache import clear_tag_cache

router = APIRouter(prefix="/admin")

logger = get_logger(__name__)


@router.post("/clear-tag-cache")
def clear_cache(
    viewer: Annotated[Viewer, Depends(require_developer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Delete every tag cache entry.

    Errors:
        E_FORBIDDEN (403): Caller's e-mail is not a configured developer
    """
    deleted = clear_tag_cache(db)
    logger.info(
        "admin.tag_cache.cleared", admin_user_id=str(viewer.user_id), deleted_count=deleted
    )

    if deleted == 0:
        message = "Cache was already empty."
    else:
        message = f"Successfully deleted {deleted} cache entries."
    return success_response({"success": True, "deletedCount": deleted, "message": message})
