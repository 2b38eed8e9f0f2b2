from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from fastapi import APIRouter, HTTPException, Query, status

from .deps import AccountStoreDep, AnalyticsStoreDep, InstagramDep, UserIdDep
from .models import MetricType, SocialAccount, SocialPlatform
from .services.account_store import AccountStore
from .services.analytics import build_chart_payload, top_posts
from .services.analytics_store import DateRange
from .services.insights_sync import SyncError, sync_account_insights
from .settings import get_settings

router = APIRouter(prefix="/api/analytics", tags=["analytics"])

DEFAULT_WINDOW_DAYS = 30


async def _target_account(store: AccountStore, user_id: str, account_id: int | None) -> SocialAccount:
    if account_id is not None:
        account = await store.get_account(account_id)
        if account and account.user_id != user_id:
            account = None
    else:
        account = await store.get_active_account(user_id, SocialPlatform.instagram)
    if not account or account.platform != SocialPlatform.instagram.value:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Instagram account not found")
    return account


def _date_range(start_date: date | None, end_date: date | None) -> DateRange:
    """A missing end is today; a missing start is DEFAULT_WINDOW_DAYS before the end."""
    end = end_date or datetime.now(timezone.utc).date()
    start = start_date or end - timedelta(days=DEFAULT_WINDOW_DAYS)
    if start > end:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="start_date is after end_date")
    return DateRange(start, end)


def _account_payload(account: SocialAccount) -> dict:
    return {
        "id": account.id,
        "username": account.username,
        "display_name": account.display_name,
        "platform": account.platform,
        "account_type": account.account_type,
        "avatar_url": account.avatar_url,
        "metadata": account.metadata_json or {},
    }


@router.get("/instagram")
async def instagram_analytics(
    user_id: UserIdDep,
    accounts: AccountStoreDep,
    analytics: AnalyticsStoreDep,
    account_id: int | None = Query(default=None),
    metric_type: MetricType | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
):
    account = await _target_account(accounts, user_id, account_id)
    window = _date_range(start_date, end_date)
    samples = await analytics.query_samples(account.id, metric_type, window)
    last_updated = max((sample.created_at for sample in samples if sample.created_at), default=None)
    return {
        "data": build_chart_payload(samples, account.metadata_json),
        "account": _account_payload(account),
        "date_range": {"start": window.start.isoformat(), "end": window.end.isoformat()},
        "last_updated": last_updated.isoformat() if last_updated else None,
    }


@router.get("/instagram/top-posts")
async def instagram_top_posts(
    user_id: UserIdDep,
    accounts: AccountStoreDep,
    analytics: AnalyticsStoreDep,
    account_id: int | None = Query(default=None),
    limit: int = Query(10, ge=1, le=100),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
):
    account = await _target_account(accounts, user_id, account_id)
    window = _date_range(start_date, end_date)
    samples = await analytics.query_samples(account.id, MetricType.media, window)
    followers = (account.metadata_json or {}).get("followers_count")
    posts = top_posts(samples, limit=limit, follower_count=followers)
    return {"data": [post.to_dict() for post in posts], "account_id": account.id}


@router.post("/instagram/sync")
async def instagram_sync(
    user_id: UserIdDep,
    accounts: AccountStoreDep,
    analytics: AnalyticsStoreDep,
    client: InstagramDep,
    account_id: int | None = Query(default=None),
):
    account = await _target_account(accounts, user_id, account_id)
    try:
        return await sync_account_insights(
            client,
            accounts,
            analytics,
            account,
            media_limit=get_settings().media_insights_limit,
        )
    except SyncError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
