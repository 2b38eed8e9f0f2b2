"""
Tests for pulling Instagram insights into the analytics store
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from socialpulse.models import MetricType
from socialpulse.schemas import AccessTokenCreate, SocialAccountCreate
from socialpulse.services.insights_sync import SyncError, sync_account_insights, sync_all_active_accounts

from conftest import PROFILE_PAYLOAD

GRAPH = "https://graph.instagram.com"
TODAY = date(2026, 10, 18)


@pytest.fixture
async def account(account_store):
    account = await account_store.create_account(
        SocialAccountCreate(user_id="user-1", platform="instagram", platform_user_id="1", username="alice")
    )
    await account_store.store_token(
        AccessTokenCreate(
            account_id=account.id,
            access_token="long-token",
            expires_at=datetime.now(timezone.utc) + timedelta(days=30),
        )
    )
    return account


@pytest.fixture
def graph(fake_instagram):
    fake_instagram.on("GET", f"{GRAPH}/me", json=PROFILE_PAYLOAD)
    fake_instagram.on(
        "GET",
        f"{GRAPH}/me/insights",
        json={
            "data": [
                {"name": "reach", "period": "day", "values": [{"value": 120, "end_time": "2026-10-18T07:00:00+0000"}]},
                {"name": "views", "period": "day", "values": [{"value": 300}]},
            ]
        },
    )
    fake_instagram.on("GET", f"{GRAPH}/me/media", json={"data": [{"id": "m1"}, {"id": "m2"}]})
    fake_instagram.on(
        "GET",
        f"{GRAPH}/m1/insights",
        json={
            "data": [
                {"name": "likes", "period": "lifetime", "values": [{"value": 40}]},
                {"name": "comments", "period": "lifetime", "values": [{"value": 5}]},
                {"name": "saved", "period": "lifetime", "values": [{"value": 3}]},
            ]
        },
    )
    fake_instagram.on("GET", f"{GRAPH}/m2/insights", status_code=400, json={"error": {"message": "unsupported"}})
    return fake_instagram


class TestSyncAccountInsights:
    async def test_stores_profile_and_media_samples(
        self, instagram_client, graph, account_store, analytics_store, account
    ):
        result = await sync_account_insights(
            instagram_client, account_store, analytics_store, account, today=TODAY
        )

        assert result["media"] == 2
        assert result["errors"] == []

        profile = await analytics_store.query_samples(account.id, MetricType.profile)
        by_name = {s.metric_name: s.metric_value["value"] for s in profile}
        assert by_name == {
            "follower_count": 1500,
            "follows_count": 30,
            "media_count": 12,
            "reach": 120,
            "views": 300,
        }

        media = await analytics_store.query_samples(account.id, MetricType.media)
        assert {(s.media_id, s.metric_name) for s in media} == {("m1", "likes"), ("m1", "comments"), ("m1", "saves")}
        assert all(s.date_collected == TODAY for s in media)

        refreshed = await account_store.get_account(account.id)
        assert refreshed.display_name == "Alice"
        assert refreshed.metadata_json["followers_count"] == 1500

    async def test_resync_same_day_overwrites(self, instagram_client, graph, account_store, analytics_store, account):
        await sync_account_insights(instagram_client, account_store, analytics_store, account, today=TODAY)
        first = len(await analytics_store.query_samples(account.id))
        await sync_account_insights(instagram_client, account_store, analytics_store, account, today=TODAY)
        assert len(await analytics_store.query_samples(account.id)) == first

    async def test_partial_provider_failure_is_reported(
        self, instagram_client, graph, account_store, analytics_store, account
    ):
        graph.on("GET", f"{GRAPH}/me/insights", status_code=400, json={"error": {"message": "insights disabled"}})
        result = await sync_account_insights(instagram_client, account_store, analytics_store, account, today=TODAY)
        assert len(result["errors"]) == 1
        assert "insights disabled" in result["errors"][0]

    async def test_account_without_token(self, instagram_client, graph, account_store, analytics_store):
        bare = await account_store.create_account(
            SocialAccountCreate(user_id="user-2", platform="instagram", platform_user_id="2", username="bob")
        )
        with pytest.raises(SyncError):
            await sync_account_insights(instagram_client, account_store, analytics_store, bare)

    async def test_sync_all_reports_each_account(
        self, instagram_client, graph, account_store, analytics_store, account
    ):
        await account_store.create_account(
            SocialAccountCreate(user_id="user-2", platform="instagram", platform_user_id="2", username="bob")
        )
        result = await sync_all_active_accounts(instagram_client, account_store, analytics_store)
        assert result["synced"] == 1
        assert len(result["errors"]) == 1
