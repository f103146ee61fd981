"""FastAPI dependencies for route handlers.

Collaborators built once at startup live on app.state; these accessors hand
them to routes so tests can swap them via app.state or dependency_overrides.
"""

from fastapi import Request

from linkranger.auth.middleware import Viewer
from linkranger.db.session import get_db, get_session_factory
from linkranger.errors import ForbiddenError
from linkranger.services.apple_notifications import AppleNotificationVerifier
from linkranger.services.content_fetcher import ContentFetcher
from linkranger.services.rate_limit import RateLimiter
from linkranger.services.tag_pipeline import TaggingContext

__all__ = [
    "ensure_same_user",
    "get_apple_verifier",
    "get_db",
    "get_fetcher",
    "get_rate_limiter",
    "get_session_factory",
    "get_tagging_context",
]


def get_tagging_context(request: Request) -> TaggingContext:
    """Shared router, fetcher, key and model settings for AI calls."""
    return request.app.state.tagging_context


def get_fetcher(request: Request) -> ContentFetcher:
    return request.app.state.tagging_context.fetcher


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_apple_verifier(request: Request) -> AppleNotificationVerifier:
    return request.app.state.apple_verifier


def ensure_same_user(viewer: Viewer, user_id) -> None:
    """Reject payloads that act on behalf of another user.

    Raises:
        ForbiddenError(E_FORBIDDEN): user_id is not the authenticated viewer.
    """
    if user_id != viewer.user_id:
        raise ForbiddenError(message="User ID mismatch")
