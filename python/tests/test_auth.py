"""Integration tests for authentication middleware and bootstrap.

Tests the full auth flow including:
- Bearer token validation
- User and free subscription bootstrap
- Server-side plan resolution
- Developer-only routes
"""

from uuid import UUID

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from linkranger.app import create_app
from linkranger.auth.middleware import AuthMiddleware
from linkranger.db.models import Plan, Subscription, UsageType, User
from linkranger.services.bootstrap import ensure_user_and_subscription
from linkranger.services.usage import record_usage
from tests.helpers import (
    auth_headers,
    create_test_user_id,
    mint_expired_token,
    mint_test_token,
    mint_token_with_bad_signature,
)
from tests.support.mock_verifier import MockJwtVerifier


class TestAuthBoundary:
    """Tests for the authentication boundary.

    These tests verify that unauthenticated requests are rejected correctly.
    """

    def test_no_authorization_header(self, authenticated_client):
        """No Authorization header returns 401 E_UNAUTHENTICATED."""
        response = authenticated_client.post("/ai-usage/stats")

        assert response.status_code == 401
        data = response.json()
        assert data["error"]["code"] == "E_UNAUTHENTICATED"
        assert "authentication" in data["error"]["message"].lower()

    def test_wrong_authorization_format(self, authenticated_client):
        """Authorization header wrong format (Basic...) returns 401."""
        response = authenticated_client.post(
            "/ai-usage/stats", headers={"Authorization": "Basic abc123"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_empty_bearer_token(self, authenticated_client):
        """Authorization header 'Bearer ' (empty token) returns 401."""
        response = authenticated_client.post(
            "/ai-usage/stats", headers={"Authorization": "Bearer "}
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_invalid_token_bad_signature(self, authenticated_client):
        token = mint_token_with_bad_signature(create_test_user_id())

        response = authenticated_client.post(
            "/ai-usage/stats", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_expired_token(self, authenticated_client):
        token = mint_expired_token(create_test_user_id())

        response = authenticated_client.post(
            "/ai-usage/stats", headers={"Authorization": f"Bearer {token}"}
        )

        assert response.status_code == 401
        assert response.json()["error"]["code"] == "E_UNAUTHENTICATED"

    def test_health_no_auth_required(self, authenticated_client):
        """Health endpoint is accessible without authentication."""
        response = authenticated_client.get("/health")

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "ok"

    def test_apple_webhook_is_public(self, authenticated_client):
        """The store webhook authenticates with its signed payload, not a bearer token."""
        response = authenticated_client.post(
            "/webhooks/apple",
            json={},
            headers={"user-agent": "App Store Server Notifications"},
        )

        assert response.status_code == 400
        assert response.text == "Bad Request: signedPayload is required."


class TestBootstrap:
    """Tests for user and subscription bootstrap."""

    def test_first_request_creates_user_and_free_subscription(
        self, authenticated_client, db_session: Session
    ):
        user_id = create_test_user_id()
        assert db_session.get(User, user_id) is None

        response = authenticated_client.post("/ai-usage/stats", headers=auth_headers(user_id))
        assert response.status_code == 200

        db_session.expire_all()
        assert db_session.get(User, user_id) is not None
        subscription = db_session.get(Subscription, user_id)
        assert subscription is not None
        assert subscription.plan == "free"
        assert subscription.status == "active"

    def test_email_claim_is_stored(self, authenticated_client, db_session: Session):
        user_id = create_test_user_id()

        authenticated_client.post(
            "/ai-usage/stats", headers=auth_headers(user_id, email="reader@example.com")
        )

        db_session.expire_all()
        assert db_session.get(User, user_id).email == "reader@example.com"

    def test_bootstrap_is_idempotent(self, db_session: Session):
        user_id = create_test_user_id()

        assert ensure_user_and_subscription(db_session, user_id) == Plan.free
        assert ensure_user_and_subscription(db_session, user_id) == Plan.free

        count = db_session.scalar(
            select(func.count()).select_from(Subscription).where(Subscription.user_id == user_id)
        )
        assert count == 1

    def test_existing_plus_subscription_is_resolved(self, db_session: Session):
        user_id = create_test_user_id()
        ensure_user_and_subscription(db_session, user_id)
        db_session.get(Subscription, user_id).plan = "plus"
        db_session.commit()

        assert ensure_user_and_subscription(db_session, user_id) == Plan.plus

    def test_repeat_requests_keep_single_subscription(
        self, authenticated_client, db_session: Session
    ):
        user_id = create_test_user_id()
        token = mint_test_token(user_id)

        for _ in range(3):
            response = authenticated_client.post(
                "/ai-usage/stats", headers={"Authorization": f"Bearer {token}"}
            )
            assert response.status_code == 200

        db_session.expire_all()
        count = db_session.scalar(
            select(func.count()).select_from(Subscription).where(Subscription.user_id == user_id)
        )
        assert count == 1

    def test_bootstrap_failure_returns_500(self):
        def failing_bootstrap(user_id: UUID, email: str | None) -> Plan:
            raise RuntimeError("database down")

        app = create_app(skip_auth_middleware=True)
        app.add_middleware(
            AuthMiddleware, verifier=MockJwtVerifier(), bootstrap_callback=failing_bootstrap
        )

        with TestClient(app) as client:
            response = client.post(
                "/ai-usage/stats", headers=auth_headers(create_test_user_id())
            )

        assert response.status_code == 500
        assert response.json()["error"]["code"] == "E_INTERNAL"
        assert "database down" not in response.text


class TestServerSidePlan:
    """The effective plan always comes from the subscription row."""

    @pytest.fixture
    def plus_user(self, db_session: Session) -> UUID:
        user_id = create_test_user_id()
        ensure_user_and_subscription(db_session, user_id)
        db_session.get(Subscription, user_id).plan = "plus"
        db_session.commit()
        return user_id

    def test_plus_viewer_gets_plus_limits(self, authenticated_client, db_session, plus_user):
        # Six analyses today: over the free daily limit, under plus
        for _ in range(6):
            record_usage(db_session, plus_user, UsageType.analysis, 100, 0.01)

        response = authenticated_client.post(
            "/ai-usage/check",
            json={"data": {"userId": str(plus_user), "type": "analysis", "plan": "free"}},
            headers=auth_headers(plus_user),
        )

        assert response.status_code == 200
        assert response.json()["data"]["allowed"] is True


class TestRequireDeveloper:
    """Developer-only routes check the e-mail claim against DEVELOPER_EMAILS."""

    @pytest.fixture(autouse=True)
    def developers(self, monkeypatch):
        monkeypatch.setenv("DEVELOPER_EMAILS", "dev@example.com")

    def test_developer_allowed(self, authenticated_client, test_user_id):
        response = authenticated_client.post(
            "/admin/clear-tag-cache",
            headers=auth_headers(test_user_id, email="dev@example.com"),
        )

        assert response.status_code == 200

    @pytest.mark.parametrize("claims", [{}, {"email": "someone@example.com"}])
    def test_non_developer_forbidden(self, authenticated_client, test_user_id, claims):
        response = authenticated_client.post(
            "/admin/clear-tag-cache", headers=auth_headers(test_user_id, **claims)
        )

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "E_FORBIDDEN"
        assert response.json()["error"]["message"] == "管理者権限が必要です"
