"""Plan policies and App Store product mapping."""

from dataclasses import dataclass

from linkranger.db.models import Plan


@dataclass(frozen=True)
class PlanPolicy:
    """Per-plan limits.

    Attributes:
        plan: Plan tier.
        max_tags_per_request: Upper bound on tags returned by one tagging call.
        cost_per_request: Flat cost charged for one AI tagging call.
        monthly_limit: AI requests allowed per calendar month.
        daily_limit: AI requests allowed per day.
        max_links: Links kept when the plan is enforced on downgrade.
        max_tags: Tags kept when the plan is enforced on downgrade.
        daily_shared_links: Links that may be saved from the share sheet per day.
    """

    plan: Plan
    max_tags_per_request: int
    cost_per_request: float
    monthly_limit: int
    daily_limit: int
    max_links: int
    max_tags: int
    daily_shared_links: int


PLAN_POLICIES: dict[Plan, PlanPolicy] = {
    Plan.free: PlanPolicy(
        plan=Plan.free,
        max_tags_per_request=5,
        cost_per_request=0.025,
        monthly_limit=5,
        daily_limit=5,
        max_links=3,
        max_tags=15,
        daily_shared_links=5,
    ),
    Plan.plus: PlanPolicy(
        plan=Plan.plus,
        max_tags_per_request=8,
        cost_per_request=0.025,
        monthly_limit=50,
        daily_limit=10,
        max_links=50,
        max_tags=500,
        daily_shared_links=25,
    ),
}


def parse_plan(value: str | Plan | None) -> Plan:
    """Coerce a plan name; anything unknown is free."""
    if isinstance(value, Plan):
        return value
    try:
        return Plan(value)
    except ValueError:
        return Plan.free


def get_plan_policy(plan: str | Plan | None) -> PlanPolicy:
    return PLAN_POLICIES[parse_plan(plan)]


def plan_from_product_id(product_id: str | None, product_map: dict[str, str]) -> Plan:
    """Plan for an App Store product id.

    Configured ids win; otherwise ids mentioning "plus" or "pro" are plus.
    """
    if not product_id:
        return Plan.free
    if product_id in product_map:
        return parse_plan(product_map[product_id])

    lowered = product_id.lower()
    if "plus" in lowered or "pro" in lowered:
        return Plan.plus
    return Plan.free
