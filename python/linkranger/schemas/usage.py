"""AI usage request schemas."""

from pydantic import Field

from linkranger.db.models import UsageType
from linkranger.schemas.common import UserScopedPayload


class CheckUsageRequest(UserScopedPayload):
    """POST /ai-usage/check payload. plan is informational only."""

    plan: str | None = None
    type: UsageType


class RecordUsageRequest(UserScopedPayload):
    type: UsageType
    tokens_used: int = Field(ge=0)
    cost: float = Field(ge=0)
