"""Initial schema - users, subscriptions, links, tags, tag cache, AI usage, store notifications

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Column types mirror linkranger.db.models. Defaults are applied Python-side;
server defaults here only cover rows written outside the application.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=None if nullable else sa.text("CURRENT_TIMESTAMP"),
        nullable=nullable,
    )


def upgrade() -> None:
    # ==========================================================================
    # users
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("today_links_added", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_link_added_date", sa.String(10), nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )

    # ==========================================================================
    # subscriptions (1:1 with users)
    # ==========================================================================
    op.create_table(
        "subscriptions",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("plan", sa.String(16), server_default="free", nullable=False),
        sa.Column("status", sa.String(32), server_default="active", nullable=False),
        _timestamp("expiration_date", nullable=True),
        sa.Column("apple_original_transaction_id", sa.Text(), nullable=True),
        sa.Column("apple_transaction_info", sa.JSON(), nullable=True),
        sa.Column("apple_product_id", sa.Text(), nullable=True),
        sa.Column("apple_environment", sa.String(16), nullable=True),
        sa.Column("stripe_subscription_id", sa.Text(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("last_notification_type", sa.Text(), nullable=True),
        _timestamp("canceled_at", nullable=True),
        _timestamp("refunded_at", nullable=True),
        sa.Column("refund_type", sa.Text(), nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("user_id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("plan IN ('free', 'plus')", name="ck_subscriptions_plan"),
    )
    op.create_index(
        "ix_subscriptions_apple_original_transaction_id",
        "subscriptions",
        ["apple_original_transaction_id"],
    )

    # ==========================================================================
    # links
    # ==========================================================================
    op.create_table(
        "links",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), server_default="", nullable=False),
        sa.Column("tag_ids", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(16), server_default="pending", nullable=False),
        sa.Column("is_read", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_archived", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_bookmarked", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("is_pinned", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("priority", sa.String(8), server_default="medium", nullable=False),
        sa.Column("source", sa.Text(), nullable=True),
        sa.Column("notifications_sent", sa.JSON(), nullable=False),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.CheckConstraint("priority IN ('low', 'medium', 'high')", name="ck_links_priority"),
    )
    op.create_index("ix_links_user_id", "links", ["user_id"])

    # ==========================================================================
    # tags
    # ==========================================================================
    op.create_table(
        "tags",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("link_count", sa.Integer(), server_default="0", nullable=False),
        _timestamp("last_used_at", nullable=True),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "name", name="uq_tags_user_name"),
    )
    op.create_index("ix_tags_user_id", "tags", ["user_id"])

    # ==========================================================================
    # tag_cache
    # ==========================================================================
    op.create_table(
        "tag_cache",
        sa.Column("content_hash", sa.String(16), nullable=False),
        sa.Column("tags", sa.JSON(), nullable=False),
        _timestamp("created_at"),
        sa.Column("usage_count", sa.Integer(), server_default="0", nullable=False),
        _timestamp("last_used_at", nullable=True),
        sa.PrimaryKeyConstraint("content_hash"),
    )

    # ==========================================================================
    # ai_usage / ai_usage_summary
    # ==========================================================================
    op.create_table(
        "ai_usage",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("tokens_used", sa.Integer(), server_default="0", nullable=False),
        sa.Column("cost", sa.Float(), server_default="0", nullable=False),
        sa.Column("month", sa.String(7), nullable=False),
        sa.Column("day", sa.String(10), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ai_usage_user_month", "ai_usage", ["user_id", "month"])
    op.create_index("ix_ai_usage_user_day", "ai_usage", ["user_id", "day"])

    op.create_table(
        "ai_usage_summary",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("month", sa.String(7), nullable=False),
        sa.Column("total_requests", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_tokens", sa.Integer(), server_default="0", nullable=False),
        sa.Column("total_cost", sa.Float(), server_default="0", nullable=False),
        _timestamp("updated_at"),
        sa.PrimaryKeyConstraint("user_id", "month"),
    )

    # ==========================================================================
    # store notifications
    # ==========================================================================
    op.create_table(
        "processed_notifications",
        sa.Column("notification_uuid", sa.String(64), nullable=False),
        sa.Column("notification_type", sa.Text(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        _timestamp("processed_at"),
        sa.PrimaryKeyConstraint("notification_uuid"),
    )

    op.create_table(
        "subscription_notification_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("notification_type", sa.Text(), nullable=False),
        sa.Column("subtype", sa.Text(), nullable=True),
        sa.Column("notification_uuid", sa.String(64), nullable=True),
        sa.Column("environment", sa.String(16), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        _timestamp("created_at"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_subscription_notification_log_user_id",
        "subscription_notification_log",
        ["user_id"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_subscription_notification_log_user_id", table_name="subscription_notification_log"
    )
    op.drop_table("subscription_notification_log")
    op.drop_table("processed_notifications")
    op.drop_table("ai_usage_summary")
    op.drop_index("ix_ai_usage_user_day", table_name="ai_usage")
    op.drop_index("ix_ai_usage_user_month", table_name="ai_usage")
    op.drop_table("ai_usage")
    op.drop_table("tag_cache")
    op.drop_index("ix_tags_user_id", table_name="tags")
    op.drop_table("tags")
    op.drop_index("ix_links_user_id", table_name="links")
    op.drop_table("links")
    op.drop_index("ix_subscriptions_apple_original_transaction_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("users")
