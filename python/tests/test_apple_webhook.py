"""Tests for the App Store server notification webhook.

Payloads are signed with the test EC key from tests.support.apple_jws; the
app's verifier resolves that key through StaticKeyClient.
"""

import json

import pytest
from jwt.exceptions import PyJWKClientConnectionError
from sqlalchemy import select

from linkranger.api.routes import webhooks
from linkranger.config import clear_settings_cache
from linkranger.db.models import ProcessedNotification, Subscription, SubscriptionNotificationLog
from linkranger.errors import ApiError, ApiErrorCode
from linkranger.services.apple_notifications import (
    AppleNotificationVerifier,
    decode_notification,
    notification_environment,
)
from linkranger.services.bootstrap import ensure_user_and_subscription
from tests.helpers import create_test_user_id
from tests.support.apple_jws import (
    APPLE_HEADERS,
    notification_payload,
    sign,
    sign_with_other_key,
    webhook_body,
)
from tests.support.fakes import ThreadRecorder

WEBHOOK = "/webhooks/apple"


@pytest.fixture
def subscriber(db_session):
    user_id = create_test_user_id()
    ensure_user_and_subscription(db_session, user_id)
    db_session.get(Subscription, user_id).apple_original_transaction_id = "txn-1000"
    db_session.commit()
    return user_id


def _post(client, signed_payload: str, headers=None):
    return client.post(WEBHOOK, content=webhook_body(signed_payload), headers=headers or APPLE_HEADERS)


class _UnreachableKeyClient:
    def get_signing_key_from_jwt(self, token):
        raise PyJWKClientConnectionError("connection refused")


class TestWebhookProcessing:
    def test_subscribed(self, client, db_session, subscriber, apple_key_client):
        payload = notification_payload("SUBSCRIBED")

        response = _post(client, sign(payload))

        assert response.status_code == 200
        assert response.text == "OK"
        assert response.headers["content-type"].startswith("text/plain")
        assert apple_key_client.calls == 1
        subscription = db_session.get(Subscription, subscriber)
        assert (subscription.plan, subscription.status) == ("plus", "active")
        marker = db_session.get(ProcessedNotification, payload["notificationUUID"])
        assert marker.user_id == subscriber

    def test_processing_runs_off_event_loop(self, client, subscriber, monkeypatch):
        recorder = ThreadRecorder()
        monkeypatch.setattr(
            webhooks, "process_notification", recorder.wrap(webhooks.process_notification)
        )

        response = _post(client, sign(notification_payload("SUBSCRIBED")))

        assert response.status_code == 200
        assert recorder.names() == ["process_notification"]
        assert recorder.any_on_event_loop() is False

    def test_replay_is_acknowledged_once(self, client, db_session, subscriber):
        signed = sign(notification_payload("SUBSCRIBED"))
        _post(client, signed)
        db_session.get(Subscription, subscriber).plan = "free"
        db_session.commit()

        response = _post(client, signed)

        assert response.status_code == 200
        assert response.text == "OK - Duplicate notification"
        assert db_session.get(Subscription, subscriber).plan == "free"

    def test_expired_downgrades(self, client, db_session, subscriber):
        _post(client, sign(notification_payload("SUBSCRIBED")))

        response = _post(client, sign(notification_payload("EXPIRED")))

        assert response.text == "OK"
        assert db_session.get(Subscription, subscriber).plan == "free"

    def test_test_notification_without_transaction(self, client, db_session):
        payload = notification_payload("TEST", original_transaction_id=None, product_id=None)

        response = _post(client, sign(payload))

        assert response.text == "OK"
        log = db_session.scalars(select(SubscriptionNotificationLog)).one()
        assert log.notification_type == "TEST"
        assert log.user_id is None

    def test_legacy_flat_payload(self, client, db_session, subscriber):
        payload = {
            "notificationType": "DID_RENEW",
            "notificationUUID": "legacy-uuid-1",
            "environment": "Production",
            "originalTransactionId": "txn-1000",
            "productId": "com.tat22444.wink.plus.yearly",
        }

        response = _post(client, sign(payload))

        assert response.text == "OK"
        assert db_session.get(Subscription, subscriber).apple_product_id == (
            "com.tat22444.wink.plus.yearly"
        )

    def test_sandbox_payload_is_decoded_without_signature_check(
        self, client, db_session, subscriber, apple_key_client
    ):
        payload = notification_payload("SUBSCRIBED", environment="Sandbox")

        response = _post(client, sign_with_other_key(payload))

        assert response.text == "OK"
        assert apple_key_client.calls == 0
        assert db_session.get(Subscription, subscriber).apple_environment == "Sandbox"

    def test_non_apple_user_agent_allowed_outside_prod(self, client, subscriber):
        response = _post(
            client,
            sign(notification_payload("SUBSCRIBED")),
            headers={"content-type": "application/json", "user-agent": "curl/8.0"},
        )

        assert response.status_code == 200


class TestWebhookRejections:
    def test_wrong_signing_key(self, client, subscriber):
        response = _post(client, sign_with_other_key(notification_payload("SUBSCRIBED")))

        assert response.status_code == 401
        assert response.text == "Unauthorized: Invalid signature"

    def test_invalid_jws_format(self, client):
        response = _post(client, "not-a-jws")

        assert response.status_code == 401
        assert response.text == "Unauthorized: Invalid JWS format"

    def test_unknown_transaction(self, client, subscriber):
        payload = notification_payload("SUBSCRIBED", original_transaction_id="txn-other")

        response = _post(client, sign(payload))

        assert response.status_code == 404
        assert response.text == "Not Found: User not found"

    def test_missing_transaction_id(self, client):
        payload = notification_payload("SUBSCRIBED", original_transaction_id=None)

        response = _post(client, sign(payload))

        assert response.status_code == 400
        assert response.text == "Bad Request: Missing originalTransactionId"

    def test_invalid_environment(self, client):
        payload = notification_payload("SUBSCRIBED", environment="Staging")

        response = _post(client, sign(payload))

        assert response.status_code == 400
        assert response.text == "Bad Request: Invalid environment"

    def test_missing_signed_payload(self, client):
        response = client.post(WEBHOOK, content=b"{}", headers=APPLE_HEADERS)

        assert response.status_code == 400
        assert response.text == "Bad Request: signedPayload is required."

    def test_malformed_json(self, client):
        response = client.post(WEBHOOK, content=b"{not json", headers=APPLE_HEADERS)

        assert response.status_code == 400
        assert response.text == "Bad Request: Malformed JSON"

    def test_wrong_content_type(self, client):
        response = client.post(
            WEBHOOK,
            content=webhook_body("a.b.c"),
            headers={"content-type": "text/plain", "user-agent": "App Store Server Notifications"},
        )

        assert response.status_code == 400
        assert response.text == "Bad Request: Invalid Content-Type"

    def test_payload_too_large(self, client, monkeypatch):
        monkeypatch.setenv("APPLE_WEBHOOK_MAX_BYTES", "64")
        clear_settings_cache()

        response = client.post(
            WEBHOOK,
            content=json.dumps({"signedPayload": "x" * 200}).encode(),
            headers=APPLE_HEADERS,
        )

        assert response.status_code == 413
        assert response.text == "Payload Too Large"

    def test_non_apple_user_agent_forbidden_in_prod(self, client, monkeypatch):
        monkeypatch.setenv("LINKRANGER_ENV", "prod")
        monkeypatch.setenv("GEMINI_API_KEY", "test-key")
        clear_settings_cache()

        response = _post(
            client,
            sign(notification_payload("SUBSCRIBED")),
            headers={"content-type": "application/json", "user-agent": "curl/8.0"},
        )

        assert response.status_code == 403
        assert response.text == "Forbidden: Invalid User-Agent"

    def test_signing_keys_unavailable(self, client, subscriber):
        client.app.state.apple_verifier = AppleNotificationVerifier(
            "https://apple.test/keys", key_client=_UnreachableKeyClient()
        )

        response = _post(client, sign(notification_payload("SUBSCRIBED")))

        assert response.status_code == 503
        assert response.text == "Service Unavailable: Signing keys unavailable"


class TestDecodeNotification:
    def test_transaction_info_preferred(self):
        payload = notification_payload("DID_RENEW", expires_ms=1_767_225_600_000)
        payload["originalTransactionId"] = "flat-id"

        notification = decode_notification(payload)

        assert notification.original_transaction_id == "txn-1000"
        assert notification.product_id == "com.tat22444.wink.plus.monthly"
        assert notification.expires_date.year == 2026
        assert notification.environment == "Production"

    def test_missing_required_fields(self):
        with pytest.raises(ApiError) as exc_info:
            decode_notification({"data": {"environment": "Production"}})

        assert exc_info.value.code == ApiErrorCode.E_WEBHOOK_PAYLOAD_INVALID
        assert exc_info.value.message == (
            "Missing required fields: notificationType, notificationUUID"
        )

    def test_malformed_nested_jws(self):
        payload = {
            "notificationType": "DID_RENEW",
            "notificationUUID": "u1",
            "data": {"environment": "Production", "signedTransactionInfo": "garbage"},
        }

        with pytest.raises(ApiError) as exc_info:
            decode_notification(payload)

        assert exc_info.value.message == "Invalid signedTransactionInfo"

    def test_iso_and_string_dates(self):
        payload = {
            "notificationType": "RENEWAL_EXTENDED",
            "notificationUUID": "u2",
            "environment": "Production",
            "expiresDate": "1767225600000",
            "extensionDate": "2026-02-01T00:00:00Z",
        }

        notification = decode_notification(payload)

        assert notification.expires_date.year == 2026
        assert notification.extension_date.month == 2

    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"data": {"environment": "Sandbox"}, "environment": "Production"}, "Sandbox"),
            ({"data": {}, "environment": "Production"}, "Production"),
            ({}, None),
        ],
    )
    def test_environment_lookup(self, payload, expected):
        assert notification_environment(payload) == expected
