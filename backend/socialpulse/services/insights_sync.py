"""
Pull profile counters, profile insights and per-media insights from the
Graph API into the analytics store for the current day.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any

from socialpulse.errors import DataAccessError, InsightsFetchError, ProfileFetchError, ProviderError
from socialpulse.integrations.instagram_api import InstagramClient
from socialpulse.models import MetricType, SocialAccount, SocialPlatform
from socialpulse.schemas import AccountMetadata, AnalyticsSampleCreate, MetricValue, SocialAccountUpdate
from socialpulse.services.account_store import AccountStore
from socialpulse.services.analytics_store import AnalyticsStore

logger = logging.getLogger(__name__)

PROFILE_INSIGHTS = ("reach", "views", "profile_views")
MEDIA_INSIGHTS = ("views", "likes", "comments", "shares", "saved")

# Graph metric name -> stored metric name
MEDIA_METRIC_NAMES = {"saved": "saves"}

# profile field -> stored metric name
PROFILE_COUNTERS = {
    "followers_count": "follower_count",
    "follows_count": "follows_count",
    "media_count": "media_count",
}


class SyncError(Exception):
    """The account cannot be synced (no usable token, wrong platform)."""


def _value(entry: dict[str, Any]) -> MetricValue:
    raw = entry.get("value")
    if isinstance(raw, dict):
        # breakdown metrics come back as {key: count}
        return MetricValue(value=sum(v for v in raw.values() if isinstance(v, (int, float))), breakdown=raw)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return MetricValue(value=raw)
    return MetricValue(value=0)


async def sync_account_insights(
    client: InstagramClient,
    accounts: AccountStore,
    analytics: AnalyticsStore,
    account: SocialAccount,
    media_limit: int = 25,
    today: date | None = None,
) -> dict:
    if account.platform != SocialPlatform.instagram.value:
        raise SyncError(f"Account {account.id} is not an Instagram account")
    token = await accounts.get_valid_token(account.id)
    if token is None:
        raise SyncError(f"Account {account.id} has no valid access token")

    today = today or datetime.now(timezone.utc).date()
    stored = 0
    errors: list[str] = []

    async def store(metric_type: MetricType, name: str, value: MetricValue, period: str | None = None, media_id: str | None = None):
        nonlocal stored
        await analytics.store_sample(
            AnalyticsSampleCreate(
                account_id=account.id,
                metric_type=metric_type,
                metric_name=name,
                metric_value=value,
                period=period,
                media_id=media_id,
                date_collected=today,
            )
        )
        stored += 1

    # profile counters also refresh the account's display fields
    try:
        profile = await client.get_user_profile(token)
    except ProfileFetchError as exc:
        logger.warning(f"[analytics] Profile fetch failed for account {account.id}: {exc.message}")
        errors.append(exc.message)
    else:
        for field, name in PROFILE_COUNTERS.items():
            count = getattr(profile, field)
            if count is not None:
                await store(MetricType.profile, name, MetricValue(value=count), period="lifetime")
        await accounts.update_account(
            account.id,
            SocialAccountUpdate(
                display_name=profile.name or profile.username,
                avatar_url=profile.profile_picture_url,
                account_type=profile.account_type,
                metadata=AccountMetadata(**profile.counters()),
            ),
        )

    try:
        insights = await client.get_user_insights(token, PROFILE_INSIGHTS, period="day")
    except InsightsFetchError as exc:
        logger.warning(f"[analytics] Profile insights failed for account {account.id}: {exc.message}")
        errors.append(exc.message)
    else:
        for name, entry in insights.items():
            await store(MetricType.profile, name, _value(entry), period=entry.get("period") or "day")

    try:
        media = await client.get_user_media(token, limit=media_limit)
    except InsightsFetchError as exc:
        logger.warning(f"[analytics] Media listing failed for account {account.id}: {exc.message}")
        errors.append(exc.message)
        media = []

    for item in media:
        media_id = str(item["id"])
        try:
            insights = await client.get_media_insights(token, media_id, MEDIA_INSIGHTS)
        except ProviderError as exc:
            # some media types (stories, old posts) reject individual metrics
            logger.debug(f"[analytics] Media {media_id} insights skipped: {exc.message}")
            continue
        for name, entry in insights.items():
            await store(
                MetricType.media,
                MEDIA_METRIC_NAMES.get(name, name),
                _value(entry),
                period=entry.get("period") or "lifetime",
                media_id=media_id,
            )

    logger.info(
        f"[analytics] Synced account {account.id}: {stored} samples, "
        f"{len(media)} media, {len(errors)} errors"
    )
    return {"account_id": account.id, "samples": stored, "media": len(media), "errors": errors}


async def sync_all_active_accounts(
    client: InstagramClient,
    accounts: AccountStore,
    analytics: AnalyticsStore,
    media_limit: int = 25,
) -> dict:
    active = await accounts.list_active_accounts(SocialPlatform.instagram)
    synced = 0
    errors: list[dict] = []
    for account in active:
        try:
            await sync_account_insights(client, accounts, analytics, account, media_limit=media_limit)
            synced += 1
        except SyncError as exc:
            logger.warning(f"[analytics] {exc}")
            errors.append({"account_id": account.id, "error": str(exc)})
        except DataAccessError as exc:
            logger.error(f"[analytics] Sync of account {account.id} aborted: {exc.message}")
            errors.append({"account_id": account.id, "error": exc.message})
    return {"synced": synced, "errors": errors}
