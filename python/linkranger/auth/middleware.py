"""Authentication middleware for FastAPI.

Provides:
- AuthMiddleware: Global middleware for bearer token verification
- get_viewer: Dependency for accessing the authenticated viewer
- require_developer: Dependency restricting a route to developer e-mails
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from uuid import UUID

from fastapi import Depends, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from linkranger.auth.verifier import TokenVerifier
from linkranger.config import get_settings
from linkranger.db.models import Plan
from linkranger.errors import ApiError, ApiErrorCode, ForbiddenError
from linkranger.responses import error_response
from linkranger.services.redact import redact_text

logger = logging.getLogger(__name__)

AUTHORIZATION_HEADER = "authorization"

# Paths that don't require a bearer token. The Apple webhook authenticates
# with its signed payload instead.
PUBLIC_PATHS = {"/health", "/docs", "/redoc", "/openapi.json", "/webhooks/apple"}

BootstrapCallback = Callable[[UUID, str | None], Plan]


@dataclass
class Viewer:
    """Authenticated viewer identity.

    Attributes:
        user_id: The viewer's user ID (from JWT sub claim).
        email: E-mail claim, if the token carries one.
        plan: Server-side subscription plan resolved at bootstrap.
    """

    user_id: UUID
    email: str | None = None
    plan: Plan = Plan.free


class AuthMiddleware(BaseHTTPMiddleware):
    """Bearer token authentication.

    Order of checks:
    1. Skip if public path
    2. Extract bearer token
    3. Verify token via TokenVerifier
    4. Bootstrap user and subscription, resolving the plan
    5. Attach Viewer to request state
    """

    def __init__(
        self,
        app: ASGIApp,
        verifier: TokenVerifier,
        bootstrap_callback: BootstrapCallback | None = None,
    ):
        super().__init__(app)
        self.verifier = verifier
        self.bootstrap_callback = bootstrap_callback

    async def dispatch(self, request: Request, call_next) -> JSONResponse:
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        token, error_response_obj = self._extract_bearer_token(request)
        if error_response_obj:
            return error_response_obj

        try:
            payload = self.verifier.verify(token)
        except ApiError as e:
            return self._error_json_response(e.code, e.message, e.status_code)

        user_id = UUID(payload["sub"])
        email = payload.get("email") or None

        plan = Plan.free
        if self.bootstrap_callback:
            try:
                plan = self.bootstrap_callback(user_id, email)
            except Exception as e:
                logger.exception("Bootstrap failed for user %s: %s", user_id, e)
                return self._error_json_response(
                    ApiErrorCode.E_INTERNAL,
                    "Internal server error",
                    500,
                )

        request.state.viewer = Viewer(user_id=user_id, email=email, plan=plan)

        return await call_next(request)

    def _extract_bearer_token(self, request: Request) -> tuple[str, JSONResponse | None]:
        """Extract bearer token from Authorization header.

        Returns:
            Tuple of (token, error_response). Token is empty string if error.
        """
        auth_header = request.headers.get(AUTHORIZATION_HEADER)

        if not auth_header:
            reason, message = "missing_header", "Authentication required"
        elif not auth_header.lower().startswith("bearer ") or not auth_header[7:].strip():
            reason, message = "invalid_header_format", "Invalid authorization header format"
        else:
            return auth_header[7:].strip(), None

        logger.warning(
            "auth_failure",
            extra={"reason": reason, "request_path": request.url.path},
        )
        return "", self._error_json_response(ApiErrorCode.E_UNAUTHENTICATED, message, 401)

    def _error_json_response(
        self, code: ApiErrorCode, message: str, status_code: int
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content=error_response(code, message),
        )


def get_viewer(request: Request) -> Viewer:
    """FastAPI dependency to get the authenticated viewer.

    Raises:
        ApiError(E_UNAUTHENTICATED): Middleware didn't run or path is public.
    """
    viewer = getattr(request.state, "viewer", None)
    if viewer is None:
        raise ApiError(ApiErrorCode.E_UNAUTHENTICATED, "Authentication required")
    return viewer


def require_developer(viewer: Viewer = Depends(get_viewer)) -> Viewer:
    """Allow only viewers whose e-mail claim is in DEVELOPER_EMAILS."""
    allowed = get_settings().developer_email_list
    if not viewer.email or viewer.email not in allowed:
        logger.warning(
            "auth_failure",
            extra={
                "reason": "not_developer",
                "user_id": str(viewer.user_id),
                "email_masked": redact_text(viewer.email or "", keep=3),
            },
        )
        raise ForbiddenError(message="管理者権限が必要です")
    return viewer


# Type alias for dependency injection
ViewerDep = Depends(get_viewer)
