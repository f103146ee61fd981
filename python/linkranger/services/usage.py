"""AI usage metering and plan quotas.

Storage:
- ai_usage: one row per metered AI invocation, bucketed by UTC month (YYYY-MM)
  and day (YYYY-MM-DD)
- ai_usage_summary: per-(user, month) totals, incremented with a single
  UPDATE ... SET x = x + n so concurrent writers never lose an increment

Quota semantics:
- Monthly: summary total_requests (analysis counts only analysis rows)
- Daily: rows for the day (analysis counts only analysis rows)
- count >= ceiling → not allowed, with a user-facing reason

The check and the later increment are separate statements, so two concurrent
requests from the same user can both pass a check at ceiling - 1. Quotas are
best-effort; exact enforcement would need a conditional write against the
summary row.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from linkranger.db.models import AIUsageRecord, AIUsageSummary, Plan, UsageType, utcnow
from linkranger.db.session import transaction
from linkranger.logging import get_logger
from linkranger.services.plans import get_plan_policy

logger = get_logger(__name__)

CHARS_PER_TOKEN = 4

# One retry covers losing the first-insert race on the summary row
_SUMMARY_WRITE_ATTEMPTS = 2


@dataclass(frozen=True)
class UsageCheckResult:
    allowed: bool
    reason: str | None = None
    monthly_count: int = 0
    daily_count: int = 0


def month_key(now: datetime) -> str:
    return now.strftime("%Y-%m")


def day_key(now: datetime) -> str:
    return now.strftime("%Y-%m-%d")


def estimate_tokens(text: str) -> int:
    """chars/4 heuristic, rounded up. Provider-reported counts take precedence."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _usage_type_value(usage_type: UsageType | str) -> str:
    return usage_type.value if isinstance(usage_type, UsageType) else str(usage_type)


def record_usage(
    db: Session,
    user_id: UUID,
    usage_type: UsageType | str,
    tokens_used: int,
    cost: float,
    *,
    now: datetime | None = None,
) -> None:
    """Insert one usage row and increment the monthly summary in one transaction."""
    now = now or utcnow()
    month = month_key(now)
    type_value = _usage_type_value(usage_type)

    for attempt in range(_SUMMARY_WRITE_ATTEMPTS):
        try:
            with transaction(db):
                db.add(
                    AIUsageRecord(
                        user_id=user_id,
                        type=type_value,
                        tokens_used=tokens_used,
                        cost=cost,
                        month=month,
                        day=day_key(now),
                        created_at=now,
                    )
                )
                result = db.execute(
                    update(AIUsageSummary)
                    .where(AIUsageSummary.user_id == user_id, AIUsageSummary.month == month)
                    .values(
                        total_requests=AIUsageSummary.total_requests + 1,
                        total_tokens=AIUsageSummary.total_tokens + tokens_used,
                        total_cost=AIUsageSummary.total_cost + cost,
                        updated_at=now,
                    )
                )
                if result.rowcount == 0:
                    db.add(
                        AIUsageSummary(
                            user_id=user_id,
                            month=month,
                            total_requests=1,
                            total_tokens=tokens_used,
                            total_cost=cost,
                            updated_at=now,
                        )
                    )
                    db.flush()
            break
        except IntegrityError:
            if attempt + 1 >= _SUMMARY_WRITE_ATTEMPTS:
                raise
            logger.info("usage.summary.insert_race", user_id=str(user_id), month=month)

    logger.info(
        "usage.recorded",
        user_id=str(user_id),
        usage_type=type_value,
        tokens_used=tokens_used,
        cost=cost,
    )


def _count_records(db: Session, user_id: UUID, *conditions) -> int:
    return db.scalar(
        select(func.count())
        .select_from(AIUsageRecord)
        .where(AIUsageRecord.user_id == user_id, *conditions)
    ) or 0


def _summary(db: Session, user_id: UUID, month: str) -> AIUsageSummary | None:
    return db.get(AIUsageSummary, (user_id, month), populate_existing=True)


def check_usage_limit(
    db: Session,
    user_id: UUID,
    plan: Plan | str,
    usage_type: UsageType | str,
    *,
    now: datetime | None = None,
) -> UsageCheckResult:
    """Check monthly then daily ceilings for the plan. Never raises for a breach."""
    now = now or utcnow()
    month = month_key(now)
    day = day_key(now)
    policy = get_plan_policy(plan)
    is_analysis = _usage_type_value(usage_type) == UsageType.analysis.value

    if is_analysis:
        monthly_count = _count_records(
            db,
            user_id,
            AIUsageRecord.type == UsageType.analysis.value,
            AIUsageRecord.month == month,
        )
    else:
        summary = _summary(db, user_id, month)
        monthly_count = summary.total_requests if summary else 0

    if monthly_count >= policy.monthly_limit:
        logger.info(
            "usage.check.denied",
            user_id=str(user_id),
            window="month",
            count=monthly_count,
            limit=policy.monthly_limit,
        )
        return UsageCheckResult(
            allowed=False,
            reason=f"月間利用制限に達しました（{policy.monthly_limit}回/月）",
            monthly_count=monthly_count,
        )

    day_conditions = [AIUsageRecord.day == day]
    if is_analysis:
        day_conditions.append(AIUsageRecord.type == UsageType.analysis.value)
    daily_count = _count_records(db, user_id, *day_conditions)

    if daily_count >= policy.daily_limit:
        logger.info(
            "usage.check.denied",
            user_id=str(user_id),
            window="day",
            count=daily_count,
            limit=policy.daily_limit,
        )
        return UsageCheckResult(
            allowed=False,
            reason=f"日間利用制限に達しました（{policy.daily_limit}回/日）",
            monthly_count=monthly_count,
            daily_count=daily_count,
        )

    return UsageCheckResult(allowed=True, monthly_count=monthly_count, daily_count=daily_count)


def get_usage_stats(db: Session, user_id: UUID, *, now: datetime | None = None) -> dict:
    """Current-month totals, today's request count and this month's analysis count."""
    now = now or utcnow()
    month = month_key(now)
    summary = _summary(db, user_id, month)

    return {
        "currentMonth": {
            "totalRequests": summary.total_requests if summary else 0,
            "totalTokens": summary.total_tokens if summary else 0,
            "totalCost": summary.total_cost if summary else 0.0,
        },
        "todayUsage": _count_records(db, user_id, AIUsageRecord.day == day_key(now)),
        "analysisUsage": _count_records(
            db,
            user_id,
            AIUsageRecord.type == UsageType.analysis.value,
            AIUsageRecord.month == month,
        ),
    }
