"""create instagram_analytics table

Revision ID: 0003_instagram_analytics
Revises: 0002_access_tokens
Create Date: 2026-10-18 12:20:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0003_instagram_analytics"
down_revision = "0002_access_tokens"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "instagram_analytics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "account_id",
            sa.Integer(),
            sa.ForeignKey("social_accounts.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("metric_type", sa.String(length=16), nullable=False),
        sa.Column("metric_name", sa.String(length=64), nullable=False),
        sa.Column("metric_value", sa.JSON(), nullable=False),
        sa.Column("period", sa.String(length=32), nullable=True),
        sa.Column("media_id", sa.String(length=64), server_default="", nullable=False),
        sa.Column("date_collected", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            "account_id",
            "metric_type",
            "metric_name",
            "date_collected",
            "media_id",
            name="uq_instagram_analytics_sample",
        ),
    )
    op.create_index("ix_instagram_analytics_account_id", "instagram_analytics", ["account_id"])
    op.create_index("ix_instagram_analytics_date_collected", "instagram_analytics", ["date_collected"])


def downgrade() -> None:
    op.drop_index("ix_instagram_analytics_date_collected", table_name="instagram_analytics")
    op.drop_index("ix_instagram_analytics_account_id", table_name="instagram_analytics")
    op.drop_table("instagram_analytics")
