"""API route definitions.

Uses a factory pattern to avoid import-time settings loading.
This allows tests to import modules without requiring all environment
variables to be configured upfront.
"""

from fastapi import APIRouter

from linkranger.api.routes.admin import router as admin_router
from linkranger.api.routes.analysis import router as analysis_router
from linkranger.api.routes.health import router as health_router
from linkranger.api.routes.links import router as links_router
from linkranger.api.routes.metadata import router as metadata_router
from linkranger.api.routes.tags import router as tags_router
from linkranger.api.routes.usage import router as usage_router
from linkranger.api.routes.webhooks import router as webhooks_router


def create_api_router() -> APIRouter:
    """Create the API router with every route group registered."""
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(tags_router, tags=["tags"])
    api_router.include_router(metadata_router, tags=["metadata"])
    api_router.include_router(usage_router, tags=["usage"])
    api_router.include_router(analysis_router, tags=["analysis"])
    api_router.include_router(links_router, tags=["links"])
    api_router.include_router(admin_router, tags=["admin"])
    api_router.include_router(webhooks_router, tags=["webhooks"])
    return api_router


__all__ = ["create_api_router"]
