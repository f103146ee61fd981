"""Tests for saving shared links."""

import pytest
from sqlalchemy import select

from linkranger.db.models import Link, Plan, Subscription, User
from linkranger.errors import ApiError, ApiErrorCode
from linkranger.services.bootstrap import ensure_user_and_subscription
from linkranger.services.links import (
    DEFAULT_SHARED_TITLE,
    LIMIT_MESSAGE,
    SAVED_MESSAGE,
    save_shared_link,
)
from tests.helpers import auth_headers, create_test_user_id, rpc_body


@pytest.fixture
def user_id(db_session):
    user_id = create_test_user_id()
    ensure_user_and_subscription(db_session, user_id)
    return user_id


def _links(db, user_id):
    return db.scalars(select(Link).where(Link.user_id == user_id)).all()


class TestSaveSharedLink:
    def test_defaults(self, db_session, user_id):
        result = save_shared_link(db_session, user_id, Plan.free, " https://zenn.dev/a ")

        assert result["success"] is True
        assert result["message"] == SAVED_MESSAGE
        (link,) = _links(db_session, user_id)
        assert str(link.id) == result["linkId"]
        assert link.url == "https://zenn.dev/a"
        assert link.title == DEFAULT_SHARED_TITLE
        assert link.status == "pending"
        assert link.source == "share-extension"
        assert link.tag_ids == []

    def test_title_and_source(self, db_session, user_id):
        save_shared_link(
            db_session, user_id, Plan.free, "https://zenn.dev/a", title=" 記事 ", source="safari"
        )

        (link,) = _links(db_session, user_id)
        assert (link.title, link.source) == ("記事", "safari")

    def test_free_daily_ceiling(self, db_session, user_id):
        for i in range(5):
            save_shared_link(db_session, user_id, Plan.free, f"https://example.com/{i}")

        with pytest.raises(ApiError) as exc_info:
            save_shared_link(db_session, user_id, Plan.free, "https://example.com/6")

        assert exc_info.value.code == ApiErrorCode.E_LINK_LIMIT_EXCEEDED
        assert exc_info.value.message == LIMIT_MESSAGE
        assert len(_links(db_session, user_id)) == 5

    def test_plus_ceiling_is_higher(self, db_session, user_id):
        for i in range(6):
            save_shared_link(db_session, user_id, Plan.plus, f"https://example.com/{i}")

        assert db_session.get(User, user_id).today_links_added == 6

    def test_counter_resets_on_new_day(self, db_session, user_id):
        user = db_session.get(User, user_id)
        user.today_links_added = 5
        user.last_link_added_date = "2000-01-01"
        db_session.commit()

        save_shared_link(db_session, user_id, Plan.free, "https://example.com/new")

        user = db_session.get(User, user_id)
        assert user.today_links_added == 1
        assert user.last_link_added_date != "2000-01-01"

    @pytest.mark.parametrize(
        "url,code",
        [
            ("not a url", ApiErrorCode.E_INVALID_URL),
            ("javascript://x/alert", ApiErrorCode.E_SSRF_BLOCKED),
        ],
    )
    def test_invalid_url(self, db_session, user_id, url, code):
        with pytest.raises(ApiError) as exc_info:
            save_shared_link(db_session, user_id, Plan.free, url)

        assert exc_info.value.code == code
        assert _links(db_session, user_id) == []

    def test_unknown_user(self, db_session):
        with pytest.raises(ApiError) as exc_info:
            save_shared_link(db_session, create_test_user_id(), Plan.free, "https://example.com")

        assert exc_info.value.code == ApiErrorCode.E_NOT_FOUND


class TestShareLinkRoute:
    def test_share(self, authenticated_client, db_session, test_user_id):
        response = authenticated_client.post(
            "/links/share",
            json=rpc_body(url="https://qiita.com/u/items/1", title="Qiita記事"),
            headers=auth_headers(test_user_id),
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["success"] is True
        assert data["message"] == SAVED_MESSAGE
        assert [link.title for link in _links(db_session, test_user_id)] == ["Qiita記事"]

    def test_limit_uses_server_side_plan(self, authenticated_client, db_session, test_user_id):
        headers = auth_headers(test_user_id)
        for i in range(5):
            authenticated_client.post(
                "/links/share", json=rpc_body(url=f"https://example.com/{i}"), headers=headers
            )

        response = authenticated_client.post(
            "/links/share", json=rpc_body(url="https://example.com/6"), headers=headers
        )

        assert response.status_code == 429
        assert response.json()["error"]["code"] == "E_LINK_LIMIT_EXCEEDED"
        assert response.json()["error"]["message"] == LIMIT_MESSAGE

    def test_plus_subscriber_limit(self, authenticated_client, db_session, test_user_id):
        ensure_user_and_subscription(db_session, test_user_id)
        db_session.get(Subscription, test_user_id).plan = "plus"
        db_session.commit()
        headers = auth_headers(test_user_id)

        statuses = [
            authenticated_client.post(
                "/links/share", json=rpc_body(url=f"https://example.com/{i}"), headers=headers
            ).status_code
            for i in range(6)
        ]

        assert statuses == [200] * 6

    def test_missing_url(self, authenticated_client, test_user_id):
        response = authenticated_client.post(
            "/links/share", json=rpc_body(title="t"), headers=auth_headers(test_user_id)
        )

        assert response.status_code == 400
