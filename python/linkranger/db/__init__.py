"""Database module for LinkRanger.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from linkranger.db.engine import create_db_engine, get_engine
from linkranger.db.models import (
    AIUsageRecord,
    AIUsageSummary,
    Base,
    Link,
    LinkStatus,
    Plan,
    ProcessedNotification,
    Subscription,
    SubscriptionNotificationLog,
    SubscriptionStatus,
    Tag,
    TagCacheEntry,
    UsageType,
    User,
)
from linkranger.db.session import get_db, session_scope, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "session_scope",
    "transaction",
    # Base
    "Base",
    # Enums
    "Plan",
    "SubscriptionStatus",
    "LinkStatus",
    "UsageType",
    # Models
    "User",
    "Subscription",
    "Link",
    "Tag",
    "TagCacheEntry",
    "AIUsageRecord",
    "AIUsageSummary",
    "ProcessedNotification",
    "SubscriptionNotificationLog",
]
