from __future__ import annotations

from datetime import date, datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .models import MetricType, SocialPlatform


class AccountMetadata(BaseModel):
    """Known profile counters; provider-defined extras are kept as-is."""

    model_config = ConfigDict(extra="allow")

    followers_count: int | None = None
    follows_count: int | None = None
    media_count: int | None = None
    biography: str | None = None
    website: str | None = None


class MetricValue(BaseModel):
    """Numeric payload of a sample. ``value`` wins over ``count`` when reading."""

    model_config = ConfigDict(extra="allow")

    value: float | None = None
    count: float | None = None


class SocialAccountCreate(BaseModel):
    user_id: str
    platform: SocialPlatform
    platform_user_id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    account_type: str | None = None
    metadata: AccountMetadata = Field(default_factory=AccountMetadata)

    @field_validator("username")
    @classmethod
    def normalize_username(cls, value: str) -> str:
        return value.strip().removeprefix("@")


class SocialAccountRead(BaseModel):
    id: int
    user_id: str
    platform: SocialPlatform
    platform_user_id: str
    username: str
    display_name: str | None = None
    avatar_url: str | None = None
    account_type: str | None = None
    is_active: bool
    metadata: dict = Field(default_factory=dict, validation_alias=AliasChoices("metadata_json", "metadata"))
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class SocialAccountUpdate(BaseModel):
    """Fields a user may edit. Anything else in the payload is rejected."""

    display_name: str | None = None
    avatar_url: str | None = None
    account_type: str | None = None
    is_active: bool | None = None
    metadata: AccountMetadata | None = None

    class Config:
        extra = "forbid"


class AccessTokenCreate(BaseModel):
    account_id: int
    access_token: str = Field(min_length=1)
    refresh_token: str | None = None
    token_type: str = "bearer"
    expires_at: datetime | None = None
    scopes: list[str] = Field(default_factory=list)


class AnalyticsSampleCreate(BaseModel):
    account_id: int
    metric_type: MetricType
    metric_name: str
    metric_value: MetricValue
    period: str | None = None
    media_id: str | None = None
    date_collected: date | None = None


class AnalyticsSampleRead(BaseModel):
    id: int
    account_id: int
    metric_type: MetricType
    metric_name: str
    metric_value: dict
    period: str | None = None
    media_id: str | None = None
    date_collected: date
    created_at: datetime | None = None

    class Config:
        from_attributes = True

    @field_validator("media_id")
    @classmethod
    def empty_media_id(cls, value: str | None) -> str | None:
        return value or None


class InitiateAuthRequest(BaseModel):
    platform: str
    action: str


class AccountUpdateRequest(BaseModel):
    account_id: int
    updates: dict
