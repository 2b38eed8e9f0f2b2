"""
Tests for the long-lived token refresh job
"""
from datetime import datetime, timedelta, timezone

import httpx

from socialpulse.errors import DataAccessError
from socialpulse.schemas import AccessTokenCreate, SocialAccountCreate
from socialpulse.services.token_refresh import refresh_expiring_tokens

REFRESH_URL = "https://graph.instagram.com/refresh_access_token"


async def connected(store, username: str, expires_in: timedelta, token: str):
    account = await store.create_account(
        SocialAccountCreate(user_id=f"user-{username}", platform="instagram", platform_user_id=username, username=username)
    )
    await store.store_token(
        AccessTokenCreate(
            account_id=account.id,
            access_token=token,
            expires_at=datetime.now(timezone.utc) + expires_in,
        )
    )
    return account


class TestRefreshExpiringTokens:
    async def test_refreshes_only_tokens_inside_window(self, instagram_client, fake_instagram, account_store):
        soon = await connected(account_store, "soon", timedelta(days=3), "old-soon")
        later = await connected(account_store, "later", timedelta(days=40), "old-later")

        def refresh(request):
            assert request.url.params["access_token"] == "old-soon"
            return httpx.Response(200, json={"access_token": "new-soon", "token_type": "bearer", "expires_in": 5184000})

        fake_instagram.on("GET", REFRESH_URL, refresh)

        result = await refresh_expiring_tokens(instagram_client, account_store, window_days=7)

        assert result == {"checked": 1, "refreshed": 1, "errors": []}
        assert await account_store.get_valid_token(soon.id) == "new-soon"
        assert await account_store.get_valid_token(later.id) == "old-later"

    async def test_failures_are_collected_per_account(self, instagram_client, fake_instagram, account_store):
        account = await connected(account_store, "soon", timedelta(days=1), "old")
        fake_instagram.on("GET", REFRESH_URL, status_code=400, json={"error": {"message": "token revoked"}})

        result = await refresh_expiring_tokens(instagram_client, account_store, window_days=7)

        assert result["refreshed"] == 0
        assert result["errors"][0]["account_id"] == account.id
        assert "token revoked" in result["errors"][0]["error"]
        assert await account_store.get_valid_token(account.id) == "old"

    async def test_store_failure_does_not_stop_the_run(
        self, instagram_client, fake_instagram, account_store, monkeypatch
    ):
        broken = await connected(account_store, "broken", timedelta(days=1), "old-broken")
        healthy = await connected(account_store, "healthy", timedelta(days=2), "old-healthy")
        fake_instagram.on(
            "GET",
            REFRESH_URL,
            lambda request: httpx.Response(
                200,
                json={
                    "access_token": request.url.params["access_token"].replace("old", "new"),
                    "token_type": "bearer",
                    "expires_in": 5184000,
                },
            ),
        )
        update = account_store.update_access_token

        async def failing_update(account_id, *args, **kwargs):
            if account_id == broken.id:
                raise DataAccessError(f"update token for account {account_id} failed")
            return await update(account_id, *args, **kwargs)

        monkeypatch.setattr(account_store, "update_access_token", failing_update)

        result = await refresh_expiring_tokens(instagram_client, account_store, window_days=7)

        assert result["checked"] == 2
        assert result["refreshed"] == 1
        assert result["errors"] == [
            {"account_id": broken.id, "error": f"update token for account {broken.id} failed"}
        ]
        assert await account_store.get_valid_token(healthy.id) == "new-healthy"
        assert await account_store.get_valid_token(broken.id) == "old-broken"

    async def test_nothing_to_refresh(self, instagram_client, fake_instagram, account_store):
        result = await refresh_expiring_tokens(instagram_client, account_store)
        assert result == {"checked": 0, "refreshed": 0, "errors": []}
        assert fake_instagram.requests == []
