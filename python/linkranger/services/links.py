"""Links saved from the share sheet.

The per-day ceiling uses counters on the user row (today_links_added,
last_link_added_date), reset when the UTC day changes. The user row is locked
for the check-and-increment so concurrent shares cannot both pass at the
ceiling.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from linkranger.db.models import Link, LinkStatus, Plan, User, utcnow
from linkranger.db.session import transaction
from linkranger.errors import ApiError, ApiErrorCode, NotFoundError
from linkranger.logging import get_logger
from linkranger.services.plans import get_plan_policy
from linkranger.services.redact import hash_text
from linkranger.services.url_safety import validate_url
from linkranger.services.usage import day_key

logger = get_logger(__name__)

DEFAULT_SHARED_TITLE = "共有されたリンク"
DEFAULT_SOURCE = "share-extension"
SAVED_MESSAGE = "リンクを保存しました。AIが自動でタグ付けと要約を生成しています。"
LIMIT_MESSAGE = "1日のリンク追加制限に達しました"


def save_shared_link(
    db: Session,
    user_id: UUID,
    plan: Plan | str,
    url: str,
    title: str | None = None,
    source: str | None = None,
) -> dict:
    """Create a pending link for a shared URL.

    Raises:
        ApiError(E_INVALID_URL | E_SSRF_BLOCKED): URL is not a fetchable http(s) URL.
        ApiError(E_LINK_LIMIT_EXCEEDED): Daily share ceiling reached for the plan.
    """
    validate_url(url)
    policy = get_plan_policy(plan)
    today = day_key(utcnow())

    with transaction(db):
        user = db.get(User, user_id, with_for_update=True)
        if user is None:
            raise NotFoundError(message="User not found")

        if user.last_link_added_date != today:
            user.today_links_added = 0
            user.last_link_added_date = today

        if user.today_links_added >= policy.daily_shared_links:
            logger.warning(
                "links.share.limit_reached",
                user_id=str(user_id),
                count=user.today_links_added,
                limit=policy.daily_shared_links,
            )
            raise ApiError(ApiErrorCode.E_LINK_LIMIT_EXCEEDED, LIMIT_MESSAGE)

        link = Link(
            user_id=user_id,
            url=url.strip(),
            title=(title or "").strip() or DEFAULT_SHARED_TITLE,
            description="",
            status=LinkStatus.pending.value,
            tag_ids=[],
            source=source or DEFAULT_SOURCE,
        )
        db.add(link)
        user.today_links_added += 1
        db.flush()
        link_id = link.id

    logger.info(
        "links.share.saved",
        user_id=str(user_id),
        link_id=str(link_id),
        source=link.source,
        url_sha256=hash_text(link.url),
    )
    return {"success": True, "linkId": str(link_id), "message": SAVED_MESSAGE}
