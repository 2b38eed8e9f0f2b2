from __future__ import annotations

from datetime import date, datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship as sa_relationship

from .db import Base


def relationship(*args, **kwargs):
    """Wrap SQLAlchemy relationship to forbid lazy loading by default."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


class SocialPlatform(str, Enum):
    instagram = "instagram"
    tiktok = "tiktok"
    youtube = "youtube"
    twitter = "twitter"


class MetricType(str, Enum):
    profile = "profile"
    media = "media"


class SocialAccount(Base):
    __tablename__ = "social_accounts"
    __table_args__ = (
        # at most one active account per (user, platform)
        sa.Index(
            "uq_social_accounts_active_platform",
            "user_id",
            "platform",
            unique=True,
            postgresql_where=sa.text("is_active"),
            sqlite_where=sa.text("is_active = 1"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    platform: Mapped[SocialPlatform] = mapped_column(sa.String(32), nullable=False)
    platform_user_id: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    username: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    display_name: Mapped[str | None] = mapped_column(sa.String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    account_type: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, server_default=sa.true())
    metadata_json: Mapped[dict] = mapped_column("metadata", sa.JSON(), nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    access_token: Mapped["AccessToken | None"] = relationship(
        back_populates="account", uselist=False, passive_deletes=True
    )
    samples: Mapped[list["AnalyticsSample"]] = relationship(
        back_populates="account", passive_deletes=True
    )


class AccessToken(Base):
    __tablename__ = "access_tokens"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        sa.ForeignKey("social_accounts.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    # ciphertext only, see services.token_cipher
    access_token: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    token_type: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="bearer")
    expires_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True, index=True)
    scopes: Mapped[list] = mapped_column(sa.JSON(), nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    account: Mapped[SocialAccount] = relationship(back_populates="access_token")


class AnalyticsSample(Base):
    __tablename__ = "instagram_analytics"
    __table_args__ = (
        sa.UniqueConstraint(
            "account_id",
            "metric_type",
            "metric_name",
            "date_collected",
            "media_id",
            name="uq_instagram_analytics_sample",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        sa.ForeignKey("social_accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    metric_type: Mapped[MetricType] = mapped_column(sa.String(16), nullable=False)
    metric_name: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    metric_value: Mapped[dict] = mapped_column(sa.JSON(), nullable=False, default=dict)
    period: Mapped[str | None] = mapped_column(sa.String(32), nullable=True)
    # '' for profile-level samples so the unique key never contains NULL
    media_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, server_default="", default="")
    date_collected: Mapped[date] = mapped_column(sa.Date(), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    account: Mapped[SocialAccount] = relationship(back_populates="samples")
