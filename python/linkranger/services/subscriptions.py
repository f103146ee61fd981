"""Subscription state changes driven by App Store server notifications.

Functions here run inside the caller's transaction; they mutate ORM rows and
never commit. The webhook service owns the transaction so the idempotency
marker and the side effects land together.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from linkranger.db.models import (
    Link,
    Plan,
    Subscription,
    SubscriptionNotificationLog,
    SubscriptionStatus,
    Tag,
    utcnow,
)
from linkranger.logging import get_logger
from linkranger.services.plans import get_plan_policy, plan_from_product_id

logger = get_logger(__name__)

# Upper bound on rows inspected when the indexed transaction id column is empty.
FALLBACK_SCAN_LIMIT = 1000


@dataclass(frozen=True)
class AppleNotification:
    """A decoded App Store server notification (V2).

    Transaction fields come from data.signedTransactionInfo when present and
    from the flat legacy fields otherwise.
    """

    notification_type: str
    notification_uuid: str
    environment: str
    subtype: str | None = None
    original_transaction_id: str | None = None
    product_id: str | None = None
    expires_date: datetime | None = None
    offer_id: str | None = None
    price: float | None = None
    new_price: float | None = None
    renewal_status: str | None = None
    extension_date: datetime | None = None
    payload: dict | None = None


@dataclass(frozen=True)
class PlanLimitResult:
    deleted_links: int = 0
    deleted_tags: int = 0
    updated_links: int = 0


# =============================================================================
# User lookup
# =============================================================================


def find_user_by_transaction_id(db: Session, original_transaction_id: str) -> UUID | None:
    """Resolve the user owning an App Store original transaction id.

    Uses the indexed column first. Rows written before the column was
    populated only carry the id inside apple_transaction_info; those are found
    by a bounded scan and backfilled so the next lookup is indexed.
    """
    user_id = db.scalar(
        select(Subscription.user_id)
        .where(Subscription.apple_original_transaction_id == original_transaction_id)
        .limit(1)
    )
    if user_id is not None:
        return user_id

    candidates = db.scalars(
        select(Subscription)
        .where(
            Subscription.apple_original_transaction_id.is_(None),
            Subscription.apple_transaction_info.is_not(None),
        )
        .limit(FALLBACK_SCAN_LIMIT)
    )
    for subscription in candidates:
        info = subscription.apple_transaction_info or {}
        if info.get("originalTransactionId") == original_transaction_id:
            subscription.apple_original_transaction_id = original_transaction_id
            logger.info(
                "subscriptions.lookup.fallback_hit",
                user_id=str(subscription.user_id),
            )
            return subscription.user_id

    logger.warning("subscriptions.lookup.not_found")
    return None


# =============================================================================
# Plan limits
# =============================================================================


def apply_plan_limits(db: Session, user_id: UUID, plan: Plan | str) -> PlanLimitResult:
    """Trim stored links and tags down to the plan ceilings.

    Newest links are kept. Tags are kept by link_count, then last_used_at.
    Links referencing deleted tags have those ids removed.
    """
    policy = get_plan_policy(plan)

    excess_link_ids = list(
        db.scalars(
            select(Link.id)
            .where(Link.user_id == user_id)
            .order_by(Link.created_at.desc(), Link.id.desc())
            .offset(policy.max_links)
        )
    )
    if excess_link_ids:
        db.execute(delete(Link).where(Link.id.in_(excess_link_ids)))

    excess_tag_ids = list(
        db.scalars(
            select(Tag.id)
            .where(Tag.user_id == user_id)
            .order_by(
                Tag.link_count.desc(),
                Tag.last_used_at.desc().nulls_last(),
                Tag.created_at.desc(),
            )
            .offset(policy.max_tags)
        )
    )

    updated_links = 0
    if excess_tag_ids:
        db.execute(delete(Tag).where(Tag.id.in_(excess_tag_ids)))
        updated_links = _strip_deleted_tag_ids(db, user_id)

    db.flush()
    result = PlanLimitResult(
        deleted_links=len(excess_link_ids),
        deleted_tags=len(excess_tag_ids),
        updated_links=updated_links,
    )
    logger.info(
        "subscriptions.plan_limits.applied",
        user_id=str(user_id),
        plan=policy.plan.value,
        deleted_links=result.deleted_links,
        deleted_tags=result.deleted_tags,
        updated_links=result.updated_links,
    )
    return result


def _strip_deleted_tag_ids(db: Session, user_id: UUID) -> int:
    existing = {str(tag_id) for tag_id in db.scalars(select(Tag.id).where(Tag.user_id == user_id))}

    updated = 0
    for link in db.scalars(select(Link).where(Link.user_id == user_id)):
        tag_ids = link.tag_ids or []
        valid = [tag_id for tag_id in tag_ids if str(tag_id) in existing]
        if len(valid) != len(tag_ids):
            link.tag_ids = valid
            updated += 1
    return updated


# =============================================================================
# Notification handlers
# =============================================================================


def _merge_details(subscription: Subscription, **values) -> None:
    # JSON columns only detect reassignment
    subscription.details = {**(subscription.details or {}), **values}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def normalize_price(price) -> dict:
    """Normalize a store price into {amount, currency, formatted}."""
    try:
        amount = float(price)
    except (TypeError, ValueError):
        amount = 0.0
    return {"amount": amount, "currency": "JPY", "formatted": f"¥{amount:,.0f}"}


def _handle_renewed(db, subscription, notification, product_plans):
    plan = (
        plan_from_product_id(notification.product_id, product_plans)
        if notification.product_id
        else Plan.plus
    )
    subscription.status = SubscriptionStatus.active.value
    subscription.plan = plan.value
    subscription.expiration_date = notification.expires_date
    if notification.product_id:
        subscription.apple_product_id = notification.product_id
    if notification.price is not None:
        _merge_details(subscription, apple_price=normalize_price(notification.price))


def _handle_expired(db, subscription, notification, product_plans):
    subscription.status = SubscriptionStatus.expired.value
    subscription.plan = Plan.free.value
    if notification.product_id:
        subscription.apple_product_id = notification.product_id
    apply_plan_limits(db, subscription.user_id, Plan.free)


def _handle_offer_redeemed(db, subscription, notification, product_plans):
    _merge_details(subscription, offer_redeemed=True, offer_id=notification.offer_id)


def _handle_price_increase(db, subscription, notification, product_plans):
    _merge_details(subscription, price_increase=True, new_price=notification.new_price)


def _handle_renewal_extension(db, subscription, notification, product_plans):
    _merge_details(
        subscription,
        renewal_extended=True,
        extension_date=_iso(notification.extension_date),
    )


def _handle_renewal_change(db, subscription, notification, product_plans):
    _merge_details(
        subscription,
        renewal_preference_changed=True,
        renewal_status=notification.renewal_status,
    )


def _handle_cancel(db, subscription, notification, product_plans):
    subscription.status = SubscriptionStatus.canceled.value
    subscription.plan = Plan.free.value
    subscription.canceled_at = utcnow()
    if notification.product_id:
        subscription.apple_product_id = notification.product_id
    apply_plan_limits(db, subscription.user_id, Plan.free)


def _handle_refund(db, subscription, notification, product_plans):
    subscription.status = SubscriptionStatus.refunded.value
    subscription.plan = Plan.free.value
    subscription.refunded_at = utcnow()
    subscription.refund_type = notification.notification_type
    if notification.product_id:
        subscription.apple_product_id = notification.product_id
    apply_plan_limits(db, subscription.user_id, Plan.free)


def _handle_logged_only(db, subscription, notification, product_plans):
    logger.info(
        "subscriptions.notification.logged_only",
        user_id=str(subscription.user_id),
        notification_type=notification.notification_type,
        environment=notification.environment,
    )


def write_notification_log(db, subscription, notification, product_plans):
    db.add(
        SubscriptionNotificationLog(
            user_id=subscription.user_id if subscription is not None else None,
            notification_type=notification.notification_type,
            subtype=notification.subtype,
            notification_uuid=notification.notification_uuid,
            environment=notification.environment,
            payload=notification.payload or {},
        )
    )


Handler = Callable[[Session, Subscription, AppleNotification, dict[str, str]], None]

NOTIFICATION_HANDLERS: dict[str, Handler] = {
    "SUBSCRIBED": _handle_renewed,
    "DID_RENEW": _handle_renewed,
    "DID_FAIL_TO_RENEW": _handle_expired,
    "EXPIRED": _handle_expired,
    "GRACE_PERIOD_EXPIRED": _handle_expired,
    "OFFER_REDEEMED": _handle_offer_redeemed,
    "PRICE_INCREASE": _handle_price_increase,
    "RENEWAL_EXTENDED": _handle_renewal_extension,
    "RENEWAL_EXTENSION": _handle_renewal_extension,
    "DID_CHANGE_RENEWAL_PREF": _handle_renewal_change,
    "DID_CHANGE_RENEWAL_STATUS": _handle_renewal_change,
    "CANCEL": _handle_cancel,
    "REFUND": _handle_refund,
    "REFUND_DECLINED": _handle_refund,
    "REFUND_PARTIAL": _handle_refund,
    "TEST": write_notification_log,
    "CONSUMPTION_REQUEST": _handle_logged_only,
    "REFUND_REQUEST": _handle_logged_only,
}


def apply_notification(
    db: Session,
    subscription: Subscription,
    notification: AppleNotification,
    product_plans: dict[str, str],
) -> None:
    """Apply one notification to a subscription row.

    Unknown types are recorded in the notification log so new store
    notification kinds are not silently lost.
    """
    handler = NOTIFICATION_HANDLERS.get(notification.notification_type)
    if handler is None:
        logger.warning(
            "subscriptions.notification.unknown_type",
            notification_type=notification.notification_type,
            user_id=str(subscription.user_id),
        )
        handler = write_notification_log

    handler(db, subscription, notification, product_plans)

    subscription.last_notification_type = notification.notification_type
    subscription.apple_environment = notification.environment
    if notification.original_transaction_id and not subscription.apple_original_transaction_id:
        subscription.apple_original_transaction_id = notification.original_transaction_id

    logger.info(
        "subscriptions.notification.applied",
        user_id=str(subscription.user_id),
        notification_type=notification.notification_type,
        plan=subscription.plan,
        status=subscription.status,
    )
