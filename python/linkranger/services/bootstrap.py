"""User and subscription bootstrap service.

Provides race-safe user and free-subscription creation on first request.
Uses ORM get/add rather than dialect-specific upserts so the same code runs
against PostgreSQL and SQLite.
"""

from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from linkranger.db.models import Plan, Subscription, SubscriptionStatus, User
from linkranger.db.session import transaction
from linkranger.logging import get_logger
from linkranger.services.plans import parse_plan

logger = get_logger(__name__)


def _ensure_rows(db: Session, user_id: UUID, email: str | None) -> Plan:
    with transaction(db):
        user = db.get(User, user_id)
        if user is None:
            user = User(id=user_id, email=email)
            db.add(user)
            db.flush()
            logger.info("bootstrap.user_created", user_id=str(user_id))
        elif email and user.email != email:
            user.email = email

        subscription = db.get(Subscription, user_id)
        if subscription is None:
            subscription = Subscription(
                user_id=user_id,
                plan=Plan.free.value,
                status=SubscriptionStatus.active.value,
                details={},
            )
            db.add(subscription)
            db.flush()

        return parse_plan(subscription.plan)


def ensure_user_and_subscription(db: Session, user_id: UUID, email: str | None = None) -> Plan:
    """Ensure the user and a subscription row exist; return the effective plan.

    Idempotent. A concurrent first request that wins the insert race causes an
    IntegrityError here; the second attempt then finds the rows.
    """
    try:
        return _ensure_rows(db, user_id, email)
    except IntegrityError:
        logger.info("bootstrap.insert_race", user_id=str(user_id))
        return _ensure_rows(db, user_id, email)
