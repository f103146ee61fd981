"""App Store server notification (V2) verification and processing.

Provides:
- AppleNotificationVerifier: JWS verification of signedPayload
- decode_notification: payload dict -> AppleNotification
- process_notification: dedupe, user lookup and dispatch in one transaction

Production payloads are verified with ES256 against keys from the configured
JWKS. Sandbox payloads are structurally decoded only unless sandbox
verification is enabled.
"""

import threading
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

import jwt
from jwt import PyJWKClient
from jwt.exceptions import InvalidTokenError, PyJWKClientConnectionError, PyJWKClientError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from linkranger.db.models import ProcessedNotification, Subscription
from linkranger.db.session import transaction
from linkranger.errors import ApiError, ApiErrorCode, NotFoundError
from linkranger.logging import get_logger
from linkranger.services.subscriptions import (
    AppleNotification,
    apply_notification,
    find_user_by_transaction_id,
    write_notification_log,
)

logger = get_logger(__name__)

ENVIRONMENTS = frozenset({"Sandbox", "Production"})
REQUIRED_FIELDS = ("notificationType", "notificationUUID")

# Accepted without an original transaction id; logged against no user.
USERLESS_TYPES = frozenset({"TEST"})


class SigningKeyClient(Protocol):
    def get_signing_key_from_jwt(self, token: str) -> Any: ...


class WebhookOutcome(str, Enum):
    processed = "processed"
    duplicate = "duplicate"


def _invalid_signature(message: str = "Invalid signature") -> ApiError:
    return ApiError(ApiErrorCode.E_WEBHOOK_SIGNATURE_INVALID, message)


def _invalid_payload(message: str) -> ApiError:
    return ApiError(ApiErrorCode.E_WEBHOOK_PAYLOAD_INVALID, message)


def _decode_unverified(token: str) -> dict:
    return jwt.decode(token, options={"verify_signature": False})


def notification_environment(payload: dict) -> str | None:
    """V2 payloads carry environment under data; older ones at the top level."""
    data = payload.get("data")
    if isinstance(data, dict) and data.get("environment"):
        return data["environment"]
    return payload.get("environment")


class AppleNotificationVerifier:
    """Verifies App Store signedPayload JWS values."""

    def __init__(
        self,
        jwks_url: str,
        *,
        verify_sandbox: bool = False,
        key_client: SigningKeyClient | None = None,
        cache_ttl: int = 3600,
    ):
        self.jwks_url = jwks_url
        self.verify_sandbox = verify_sandbox
        self.cache_ttl = cache_ttl
        self._key_client = key_client
        self._lock = threading.Lock()

    def _get_key_client(self) -> SigningKeyClient:
        with self._lock:
            if self._key_client is None:
                self._key_client = PyJWKClient(
                    self.jwks_url,
                    cache_keys=True,
                    lifespan=self.cache_ttl,
                )
            return self._key_client

    def verify(self, signed_payload: str) -> dict:
        """Verify a signedPayload and return its decoded payload.

        Raises:
            ApiError(E_WEBHOOK_SIGNATURE_INVALID): Malformed JWS or bad signature.
            ApiError(E_WEBHOOK_PAYLOAD_INVALID): Environment missing or unknown.
            ApiError(E_AUTH_UNAVAILABLE): Key set could not be fetched.
        """
        if signed_payload.count(".") != 2:
            logger.warning("apple_webhook.verify.failed", reason="invalid_format")
            raise _invalid_signature("Invalid JWS format")

        try:
            claims = _decode_unverified(signed_payload)
        except InvalidTokenError as e:
            logger.warning("apple_webhook.verify.failed", reason="decode_error")
            raise _invalid_signature("Invalid JWS payload") from e

        environment = notification_environment(claims)
        if environment not in ENVIRONMENTS:
            logger.warning("apple_webhook.verify.failed", reason="invalid_environment")
            raise _invalid_payload("Invalid environment")

        if environment == "Sandbox" and not self.verify_sandbox:
            logger.info("apple_webhook.verify.sandbox_structural")
            return claims

        return self._verify_signature(signed_payload)

    def _verify_signature(self, signed_payload: str) -> dict:
        try:
            signing_key = self._get_key_client().get_signing_key_from_jwt(signed_payload)
        except PyJWKClientConnectionError as e:
            logger.error("apple_webhook.verify.jwks_unavailable", error=str(e))
            raise ApiError(
                ApiErrorCode.E_AUTH_UNAVAILABLE, "Signing keys unavailable"
            ) from e
        except (PyJWKClientError, InvalidTokenError) as e:
            logger.warning("apple_webhook.verify.failed", reason="signing_key_not_found")
            raise _invalid_signature() from e

        try:
            claims = jwt.decode(
                signed_payload,
                signing_key.key,
                algorithms=["ES256"],
                options={"verify_aud": False, "verify_iss": False},
            )
        except InvalidTokenError as e:
            logger.warning("apple_webhook.verify.failed", reason="invalid_signature")
            raise _invalid_signature() from e

        logger.info("apple_webhook.verify.ok", environment=notification_environment(claims))
        return claims


def _parse_apple_date(value) -> datetime | None:
    """Store dates are epoch milliseconds; ISO strings are accepted too."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    if isinstance(value, str):
        if value.isdigit():
            return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _parse_price(value) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _nested_jws(data: dict, key: str) -> dict:
    token = data.get(key)
    if not isinstance(token, str) or not token:
        return {}
    try:
        return _decode_unverified(token)
    except InvalidTokenError as e:
        raise _invalid_payload(f"Invalid {key}") from e


def decode_notification(payload: dict) -> AppleNotification:
    """Build an AppleNotification from a verified payload.

    Raises:
        ApiError(E_WEBHOOK_PAYLOAD_INVALID): Required fields missing or malformed.
    """
    environment = notification_environment(payload)
    missing = [name for name in REQUIRED_FIELDS if not payload.get(name)]
    if not environment:
        missing.append("environment")
    if missing:
        raise _invalid_payload(f"Missing required fields: {', '.join(missing)}")
    if environment not in ENVIRONMENTS:
        raise _invalid_payload("Invalid environment")

    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    transaction_info = _nested_jws(data, "signedTransactionInfo")
    renewal_info = _nested_jws(data, "signedRenewalInfo")

    def pick(name: str, *sources: dict):
        for source in sources:
            value = source.get(name)
            if value not in (None, ""):
                return value
        return None

    renewal_status = pick("renewalStatus", payload)
    if renewal_status is None and "autoRenewStatus" in renewal_info:
        renewal_status = str(renewal_info["autoRenewStatus"])

    return AppleNotification(
        notification_type=str(payload["notificationType"]),
        notification_uuid=str(payload["notificationUUID"]),
        environment=str(environment),
        subtype=pick("subtype", payload),
        original_transaction_id=pick("originalTransactionId", transaction_info, payload),
        product_id=pick("productId", transaction_info, payload),
        expires_date=_parse_apple_date(pick("expiresDate", transaction_info, payload)),
        offer_id=pick("offerIdentifier", transaction_info) or pick("offerId", payload),
        price=_parse_price(pick("price", transaction_info, payload)),
        new_price=_parse_price(pick("newPrice", payload)),
        renewal_status=renewal_status,
        extension_date=_parse_apple_date(
            pick("renewalDate", renewal_info) or pick("extensionDate", payload)
        ),
        payload=payload,
    )


def _process(db: Session, notification: AppleNotification, product_plans: dict[str, str]):
    with transaction(db):
        if db.get(ProcessedNotification, notification.notification_uuid) is not None:
            return WebhookOutcome.duplicate

        user_id = None
        if notification.original_transaction_id:
            user_id = find_user_by_transaction_id(db, notification.original_transaction_id)
            if user_id is None:
                raise NotFoundError(
                    code=ApiErrorCode.E_SUBSCRIPTION_NOT_FOUND, message="User not found"
                )
        elif notification.notification_type not in USERLESS_TYPES:
            raise _invalid_payload("Missing originalTransactionId")

        if user_id is None:
            write_notification_log(db, None, notification, product_plans)
        else:
            subscription = db.get(Subscription, user_id)
            apply_notification(db, subscription, notification, product_plans)

        db.add(
            ProcessedNotification(
                notification_uuid=notification.notification_uuid,
                notification_type=notification.notification_type,
                user_id=user_id,
            )
        )
        db.flush()

    logger.info(
        "apple_webhook.processed",
        notification_uuid=notification.notification_uuid,
        notification_type=notification.notification_type,
        environment=notification.environment,
        user_id=str(user_id) if user_id else None,
    )
    return WebhookOutcome.processed


def process_notification(
    db: Session, notification: AppleNotification, product_plans: dict[str, str]
) -> WebhookOutcome:
    """Apply a notification exactly once.

    The processed marker is inserted in the same transaction as the
    subscription changes. A concurrent delivery of the same UUID fails on the
    marker's primary key and is reported as a duplicate.

    Raises:
        ApiError(E_WEBHOOK_PAYLOAD_INVALID): originalTransactionId missing.
        NotFoundError(E_SUBSCRIPTION_NOT_FOUND): No user owns the transaction.
    """
    try:
        outcome = _process(db, notification, product_plans)
    except IntegrityError:
        logger.info(
            "apple_webhook.duplicate_race",
            notification_uuid=notification.notification_uuid,
        )
        return WebhookOutcome.duplicate

    if outcome is WebhookOutcome.duplicate:
        logger.info(
            "apple_webhook.duplicate",
            notification_uuid=notification.notification_uuid,
        )
    return outcome
