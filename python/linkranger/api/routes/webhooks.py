"""App Store server notification webhook.

Public path (no bearer token); authenticity comes from the signed payload.
Responses are plain text because the caller is Apple, not the app. Any
non-2xx makes Apple retry, and retries are absorbed by the notification
UUID dedupe.
"""

import json
from http import HTTPStatus
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from linkranger.api.deps import get_apple_verifier, get_db
from linkranger.config import Environment, get_settings
from linkranger.errors import ApiError
from linkranger.logging import get_logger
from linkranger.services.apple_notifications import (
    AppleNotificationVerifier,
    WebhookOutcome,
    decode_notification,
    process_notification,
)

router = APIRouter()

logger = get_logger(__name__)

APPLE_USER_AGENT_MARKERS = ("StoreKit", "App Store Server Notifications", "Apple")


def _text(status_code: int, message: str) -> PlainTextResponse:
    return PlainTextResponse(message, status_code=status_code)


def is_apple_user_agent(user_agent: str | None) -> bool:
    return bool(user_agent) and any(marker in user_agent for marker in APPLE_USER_AGENT_MARKERS)


@router.post("/webhooks/apple", response_class=PlainTextResponse)
async def apple_webhook(
    request: Request,
    db: Annotated[Session, Depends(get_db)],
    verifier: Annotated[AppleNotificationVerifier, Depends(get_apple_verifier)],
) -> PlainTextResponse:
    """Receive an App Store server notification.

    Returns:
        200 "OK" when applied, 200 "OK - Duplicate notification" on replay.

    Errors (plain text):
        400: Wrong content type, missing signedPayload, malformed payload,
             missing originalTransactionId
        401: Signature verification failed
        403: Non-Apple user agent (prod only)
        404: No user owns the transaction
        413: Body over the configured cap
    """
    settings = get_settings()
    max_bytes = settings.apple_webhook_max_bytes

    if "application/json" not in request.headers.get("content-type", ""):
        logger.warning("apple_webhook.rejected", reason="invalid_content_type")
        return _text(400, "Bad Request: Invalid Content-Type")

    if not is_apple_user_agent(request.headers.get("user-agent")):
        logger.warning("apple_webhook.suspicious_user_agent")
        if settings.linkranger_env == Environment.PROD:
            return _text(403, "Forbidden: Invalid User-Agent")

    declared_length = request.headers.get("content-length", "0")
    if declared_length.isdigit() and int(declared_length) > max_bytes:
        logger.warning("apple_webhook.rejected", reason="too_large", body_length=declared_length)
        return _text(413, "Payload Too Large")

    raw = await request.body()
    if len(raw) > max_bytes:
        logger.warning("apple_webhook.rejected", reason="too_large", body_length=len(raw))
        return _text(413, "Payload Too Large")

    try:
        body = json.loads(raw) if raw else {}
    except json.JSONDecodeError:
        return _text(400, "Bad Request: Malformed JSON")

    signed_payload = body.get("signedPayload") if isinstance(body, dict) else None
    if not isinstance(signed_payload, str) or not signed_payload:
        logger.warning("apple_webhook.rejected", reason="missing_signed_payload")
        return _text(400, "Bad Request: signedPayload is required.")

    logger.info("apple_webhook.received", signed_payload_chars=len(signed_payload))

    try:
        claims = await run_in_threadpool(verifier.verify, signed_payload)
        notification = decode_notification(claims)
        outcome = await run_in_threadpool(
            process_notification, db, notification, settings.apple_product_plans
        )
    except ApiError as e:
        logger.warning(
            "apple_webhook.failed",
            error_code=e.code.value,
            status_code=e.status_code,
        )
        return _text(e.status_code, f"{HTTPStatus(e.status_code).phrase}: {e.message}")

    if outcome is WebhookOutcome.duplicate:
        return _text(200, "OK - Duplicate notification")
    return _text(200, "OK")
