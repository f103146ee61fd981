"""Shared link route (share sheet saves)."""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from linkranger.api.deps import get_db
from linkranger.auth.middleware import Viewer, get_viewer
from linkranger.responses import success_response
from linkranger.schemas.common import DataRequest
from linkranger.schemas.links import ShareLinkRequest
from linkranger.services.links import save_shared_link

router = APIRouter()


@router.post("/links/share")
def share_link(
    body: DataRequest[ShareLinkRequest],
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Save a URL as a pending link for the caller.

    Errors:
        E_INVALID_URL / E_SSRF_BLOCKED (400): URL rejected
        E_LINK_LIMIT_EXCEEDED (429): Daily share ceiling reached
    """
    payload = body.data
    result = save_shared_link(
        db, viewer.user_id, viewer.plan, payload.url, payload.title, payload.source
    )
    return success_response(result)
