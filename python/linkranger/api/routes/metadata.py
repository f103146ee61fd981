"""Link metadata route."""

from typing import Annotated

from fastapi import APIRouter, Depends

from linkranger.api.deps import get_tagging_context
from linkranger.auth.middleware import Viewer, get_viewer
from linkranger.responses import success_response
from linkranger.schemas.common import DataRequest
from linkranger.schemas.metadata import FetchMetadataRequest
from linkranger.services.link_metadata import fetch_link_metadata
from linkranger.services.tag_pipeline import TaggingContext

router = APIRouter()


@router.post("/fetch-metadata")
async def fetch_metadata(
    body: DataRequest[FetchMetadataRequest],
    viewer: Annotated[Viewer, Depends(get_viewer)],
    context: Annotated[TaggingContext, Depends(get_tagging_context)],
) -> dict:
    """Fetch title, description, image and headings for a URL.

    Unreachable pages return a hostname placeholder rather than an error.

    Errors:
        E_INVALID_URL / E_SSRF_BLOCKED (400): URL rejected before fetching
    """
    metadata = await fetch_link_metadata(
        context.fetcher, body.data.url, timeout_s=context.metadata_fetch_timeout_s
    )
    return success_response(metadata)
