"""FastAPI application creation and configuration.

Creates the app, registers exception handlers, auth middleware and routes.

Middleware Ordering (Critical):
- Middleware runs in reverse order of registration
- RequestIDMiddleware is added LAST (see add_request_id_middleware) so it
  runs FIRST and every response, including auth failures, gets X-Request-ID

Shared clients (lifespan):
- httpx.AsyncClient for model calls, wrapped by LLMRouter
- A second httpx.AsyncClient for page fetches (no automatic redirects, no
  proxy env) wrapped by ContentFetcher, which re-checks every redirect hop
- TaggingContext bundling both plus key, model and timeouts
- Redis (optional) for the per-minute rate limiter
- AppleNotificationVerifier for the store webhook
All live on app.state; routes reach them through api.deps.
"""

import json
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import timedelta
from uuid import UUID

import httpx
import redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from starlette.exceptions import HTTPException as StarletteHTTPException

from linkranger.api.routes import create_api_router
from linkranger.auth.middleware import AuthMiddleware
from linkranger.auth.verifier import SupabaseJwksVerifier
from linkranger.config import get_settings
from linkranger.db.models import Plan
from linkranger.db.session import session_scope
from linkranger.errors import ApiError, ApiErrorCode
from linkranger.logging import configure_logging, get_logger
from linkranger.middleware.request_id import RequestIDMiddleware
from linkranger.responses import (
    api_error_handler,
    error_response,
    http_exception_handler,
    unhandled_exception_handler,
)
from linkranger.services.apple_notifications import AppleNotificationVerifier
from linkranger.services.bootstrap import ensure_user_and_subscription
from linkranger.services.content_fetcher import ContentFetcher
from linkranger.services.llm import LLMRouter
from linkranger.services.rate_limit import RateLimiter
from linkranger.services.tag_pipeline import TaggingContext

# Configure structured logging at import time
configure_logging()

logger = get_logger(__name__)

# Routes that parse their own bodies and answer in plain text
RAW_BODY_PATHS = frozenset({"/webhooks/apple"})


def create_bootstrap_callback(
    session_factory: sessionmaker[Session] | None = None,
) -> Callable[[UUID, str | None], Plan]:
    """Bootstrap callback for the auth middleware.

    Each call opens its own session, ensures the user and subscription rows,
    and returns the server-side plan.
    """
    def bootstrap(user_id: UUID, email: str | None) -> Plan:
        with session_scope(session_factory) as db:
            return ensure_user_and_subscription(db, user_id, email)

    return bootstrap


def create_token_verifier() -> SupabaseJwksVerifier:
    """Supabase JWKS verifier; only configuration differs between environments."""
    settings = get_settings()

    return SupabaseJwksVerifier(
        jwks_url=settings.supabase_jwks_url,  # type: ignore
        issuer=settings.normalized_issuer,  # type: ignore
        audiences=settings.audience_list,
    )


def _connect_redis(redis_url: str | None):
    if not redis_url:
        return None
    try:
        client = redis.Redis.from_url(redis_url, decode_responses=True, socket_timeout=5)
        client.ping()
    except redis.RedisError as e:
        logger.warning("redis_client_init_failed", error=str(e))
        return None
    logger.info("redis_client_initialized")
    return client


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create shared clients at startup and close them at shutdown."""
    settings = get_settings()

    app.state.httpx_client = httpx.AsyncClient(
        timeout=httpx.Timeout(60.0, connect=10.0),
        limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
    )
    app.state.fetch_client = httpx.AsyncClient(
        follow_redirects=False,
        trust_env=False,
        limits=httpx.Limits(max_connections=50, max_keepalive_connections=10),
    )

    app.state.llm_router = LLMRouter(
        app.state.httpx_client,
        enable_gemini=settings.enable_gemini,
    )
    logger.info("llm_router_initialized", enable_gemini=settings.enable_gemini)

    app.state.tagging_context = TaggingContext(
        router=app.state.llm_router,
        fetcher=ContentFetcher(
            app.state.fetch_client,
            max_redirects=settings.fetch_max_redirects,
            max_bytes=settings.fetch_max_bytes,
        ),
        api_key=settings.gemini_api_key,
        model_name=settings.gemini_model,
        llm_timeout_s=settings.llm_timeout_s,
        fetch_timeout_s=settings.fetch_timeout_s,
        metadata_fetch_timeout_s=settings.metadata_fetch_timeout_s,
        cache_ttl=timedelta(days=settings.tag_cache_ttl_days),
        analysis_model_name=settings.gemini_analysis_model,
        analysis_timeout_s=settings.analysis_timeout_s,
    )

    redis_client = _connect_redis(settings.redis_url)
    app.state.redis_client = redis_client
    app.state.rate_limiter = RateLimiter(
        redis_client=redis_client,
        rpm_limit=settings.rate_limit_rpm,
    )

    app.state.apple_verifier = AppleNotificationVerifier(
        settings.apple_jwks_url,
        verify_sandbox=settings.apple_verify_sandbox,
    )

    yield

    await app.state.httpx_client.aclose()
    await app.state.fetch_client.aclose()
    if redis_client is not None:
        redis_client.close()
    logger.info("httpx_client_closed")


def create_app(
    skip_auth_middleware: bool = False,
    token_verifier=None,
    session_factory: sessionmaker[Session] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        skip_auth_middleware: If True, skip adding auth middleware (for testing).
        token_verifier: Optional custom token verifier (for testing).
        session_factory: Session factory for the auth bootstrap (for testing).
    """
    settings = get_settings()

    app = FastAPI(
        title="LinkRanger API",
        description="Backend API for LinkRanger - link saving with AI tagging",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Missing or mistyped fields map to invalid-argument."""
        return JSONResponse(
            status_code=400,
            content=error_response(ApiErrorCode.E_INVALID_REQUEST, "Invalid request body"),
        )

    @app.middleware("http")
    async def catch_json_decode_errors(request: Request, call_next):
        """Reject malformed JSON bodies before they reach route handlers."""
        if request.method in ("POST", "PUT", "PATCH") and request.url.path not in RAW_BODY_PATHS:
            content_type = request.headers.get("content-type", "")
            if "application/json" in content_type:
                body = await request.body()
                if body:
                    try:
                        json.loads(body)
                    except json.JSONDecodeError:
                        return JSONResponse(
                            status_code=400,
                            content=error_response(
                                ApiErrorCode.E_INVALID_REQUEST, "Malformed JSON body"
                            ),
                        )
        return await call_next(request)

    app.include_router(create_api_router())

    if not skip_auth_middleware:
        app.add_middleware(
            AuthMiddleware,
            verifier=token_verifier or create_token_verifier(),
            bootstrap_callback=create_bootstrap_callback(session_factory),
        )
        logger.info("auth_middleware_enabled", env=settings.linkranger_env.value)

    return app


def add_request_id_middleware(app: FastAPI, log_requests: bool = True) -> None:
    """Add request-id middleware to the app.

    Call AFTER all other middleware is added so it runs FIRST.
    """
    app.add_middleware(RequestIDMiddleware, log_requests=log_requests)
    logger.info("request_id_middleware_enabled")
