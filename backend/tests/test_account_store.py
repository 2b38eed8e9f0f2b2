"""
Tests for social accounts and their encrypted tokens
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError

from socialpulse.errors import DataAccessError, ValidationError
from socialpulse.models import AccessToken, AnalyticsSample, SocialAccount, SocialPlatform
from socialpulse.schemas import AccessTokenCreate, AccountMetadata, SocialAccountCreate
from socialpulse.services.account_store import AccountStore
from socialpulse.services.token_cipher import TokenCipher


def account_data(user_id: str = "user-1", platform: str = "instagram", username: str = "alice", **kwargs) -> SocialAccountCreate:
    return SocialAccountCreate(
        user_id=user_id,
        platform=platform,
        platform_user_id=kwargs.pop("platform_user_id", f"pid-{username}"),
        username=username,
        **kwargs,
    )


async def active_count(store: AccountStore, user_id: str, platform: str) -> int:
    return await store.session.scalar(
        select(func.count())
        .select_from(SocialAccount)
        .where(
            SocialAccount.user_id == user_id,
            SocialAccount.platform == platform,
            SocialAccount.is_active.is_(True),
        )
    )


class TestCreateAccount:
    async def test_new_account_is_active(self, account_store: AccountStore):
        account = await account_store.create_account(
            account_data(username="@alice", metadata=AccountMetadata(followers_count=10))
        )
        assert account.id is not None
        assert account.is_active is True
        assert account.username == "alice"
        assert account.metadata_json == {"followers_count": 10}
        assert account.created_at is not None

    async def test_exactly_one_active_per_user_and_platform(self, account_store: AccountStore):
        for name in ("a", "b", "c"):
            await account_store.create_account(account_data(username=name))
        await account_store.create_account(account_data(username="tt", platform="tiktok"))
        await account_store.create_account(account_data(user_id="user-2", username="other"))

        assert await active_count(account_store, "user-1", "instagram") == 1
        assert await active_count(account_store, "user-1", "tiktok") == 1
        assert await active_count(account_store, "user-2", "instagram") == 1

        active = await account_store.get_active_account("user-1", SocialPlatform.instagram)
        assert active.username == "c"

    async def test_partial_index_rejects_second_active_row(self, account_store: AccountStore):
        await account_store.create_account(account_data(username="first"))
        with pytest.raises(IntegrityError):
            await account_store.session.execute(
                text(
                    "INSERT INTO social_accounts (user_id, platform, platform_user_id, username, is_active, metadata) "
                    "VALUES ('user-1', 'instagram', 'pid-x', 'second', 1, '{}')"
                )
            )
        await account_store.session.rollback()

    async def test_concurrent_create_is_retried(self, account_store: AccountStore, monkeypatch):
        await account_store.create_account(account_data(username="winner"))

        real = account_store._deactivate_siblings
        calls = []

        async def racing(*args, **kwargs):
            # first attempt misses the sibling, as a concurrent transaction would
            calls.append(args)
            if len(calls) > 1:
                await real(*args, **kwargs)

        monkeypatch.setattr(account_store, "_deactivate_siblings", racing)
        account = await account_store.create_account(account_data(username="loser"))

        assert len(calls) == 2
        assert account.is_active is True
        assert await active_count(account_store, "user-1", "instagram") == 1

    async def test_persistent_conflict_raises_data_access_error(self, account_store: AccountStore, monkeypatch):
        await account_store.create_account(account_data(username="winner"))

        async def never(*args, **kwargs):
            return None

        monkeypatch.setattr(account_store, "_deactivate_siblings", never)
        with pytest.raises(DataAccessError):
            await account_store.create_account(account_data(username="loser"))


class TestReadAccounts:
    async def test_list_newest_first_and_scoped_to_user(self, account_store: AccountStore):
        first = await account_store.create_account(account_data(username="one", platform="youtube"))
        second = await account_store.create_account(account_data(username="two", platform="twitter"))
        await account_store.create_account(account_data(user_id="user-2", username="foreign"))

        accounts = await account_store.list_accounts("user-1")
        assert [a.id for a in accounts] == [second.id, first.id]

    async def test_get_missing_account(self, account_store: AccountStore):
        assert await account_store.get_account(999) is None

    async def test_list_active_accounts(self, account_store: AccountStore):
        await account_store.create_account(account_data(username="old"))
        await account_store.create_account(account_data(username="new"))
        await account_store.create_account(account_data(user_id="user-2", username="bob"))
        active = await account_store.list_active_accounts(SocialPlatform.instagram)
        assert sorted(a.username for a in active) == ["bob", "new"]


class TestUpdateAccount:
    async def test_whitelisted_fields(self, account_store: AccountStore):
        account = await account_store.create_account(account_data())
        updated = await account_store.update_account(
            account.id,
            {"display_name": "Alice", "account_type": "BUSINESS", "metadata": {"followers_count": 5, "custom": "x"}},
        )
        assert updated.display_name == "Alice"
        assert updated.account_type == "BUSINESS"
        assert updated.metadata_json == {"followers_count": 5, "custom": "x"}

    @pytest.mark.parametrize("field", ["user_id", "platform", "username", "id", "platform_user_id"])
    async def test_rejects_fields_outside_whitelist(self, account_store: AccountStore, field: str):
        account = await account_store.create_account(account_data())
        with pytest.raises(ValidationError):
            await account_store.update_account(account.id, {field: "injected"})
        reloaded = await account_store.get_account(account.id)
        assert reloaded.user_id == "user-1"
        assert reloaded.username == "alice"

    async def test_missing_account_returns_none(self, account_store: AccountStore):
        assert await account_store.update_account(42, {"display_name": "x"}) is None

    async def test_reactivating_keeps_single_active(self, account_store: AccountStore):
        old = await account_store.create_account(account_data(username="old"))
        new = await account_store.create_account(account_data(username="new"))

        await account_store.update_account(old.id, {"is_active": True})

        assert await active_count(account_store, "user-1", "instagram") == 1
        active = await account_store.get_active_account("user-1", SocialPlatform.instagram)
        assert active.id == old.id
        assert (await account_store.get_account(new.id)).is_active is False


class TestDeleteAccount:
    async def test_cascades_to_token_and_samples(self, account_store: AccountStore):
        account = await account_store.create_account(account_data())
        await account_store.store_token(AccessTokenCreate(account_id=account.id, access_token="tok"))
        account_store.session.add(
            AnalyticsSample(
                account_id=account.id,
                metric_type="profile",
                metric_name="follower_count",
                metric_value={"value": 1},
                date_collected=datetime.now(timezone.utc).date(),
            )
        )
        await account_store.session.commit()

        assert await account_store.delete_account(account.id) is True

        session = account_store.session
        assert await session.scalar(select(func.count()).select_from(SocialAccount)) == 0
        assert await session.scalar(select(func.count()).select_from(AccessToken)) == 0
        assert await session.scalar(select(func.count()).select_from(AnalyticsSample)) == 0

    async def test_missing_account(self, account_store: AccountStore):
        assert await account_store.delete_account(7) is False


class TestTokens:
    async def test_store_encrypts_and_upserts(self, account_store: AccountStore, cipher: TokenCipher):
        account = await account_store.create_account(account_data())
        first = await account_store.store_token(
            AccessTokenCreate(account_id=account.id, access_token="plain-1", refresh_token="refresh-1", scopes=["a"])
        )
        assert first.access_token != "plain-1"
        assert cipher.decrypt(first.access_token) == "plain-1"
        assert cipher.decrypt(first.refresh_token) == "refresh-1"

        second = await account_store.store_token(
            AccessTokenCreate(account_id=account.id, access_token="plain-2", scopes=["a", "b"])
        )
        count = await account_store.session.scalar(select(func.count()).select_from(AccessToken))
        assert count == 1
        assert second.id == first.id
        assert second.refresh_token is None
        assert second.scopes == ["a", "b"]
        assert await account_store.get_valid_token(account.id) == "plain-2"

    async def test_no_token_row(self, account_store: AccountStore):
        account = await account_store.create_account(account_data())
        assert await account_store.get_valid_token(account.id) is None

    async def test_expired_token_is_not_returned(self, account_store: AccountStore):
        account = await account_store.create_account(account_data())
        await account_store.store_token(
            AccessTokenCreate(
                account_id=account.id,
                access_token="stale",
                expires_at=datetime.now(timezone.utc) - timedelta(seconds=1),
            )
        )
        assert await account_store.get_valid_token(account.id) is None

    async def test_future_or_missing_expiry_is_valid(self, account_store: AccountStore):
        account = await account_store.create_account(account_data())
        await account_store.store_token(
            AccessTokenCreate(
                account_id=account.id,
                access_token="fresh",
                expires_at=datetime.now(timezone.utc) + timedelta(days=60),
            )
        )
        assert await account_store.get_valid_token(account.id) == "fresh"

        other = await account_store.create_account(account_data(platform="tiktok"))
        await account_store.store_token(AccessTokenCreate(account_id=other.id, access_token="forever"))
        assert await account_store.get_valid_token(other.id) == "forever"

    async def test_undecryptable_token_is_treated_as_absent(self, db_session, cipher: TokenCipher):
        writer = AccountStore(db_session, TokenCipher("old-key"))
        account = await writer.create_account(account_data())
        await writer.store_token(AccessTokenCreate(account_id=account.id, access_token="tok"))

        reader = AccountStore(db_session, cipher)
        assert await reader.get_valid_token(account.id) is None

    async def test_update_access_token(self, account_store: AccountStore):
        account = await account_store.create_account(account_data())
        await account_store.store_token(AccessTokenCreate(account_id=account.id, access_token="old"))
        expires = datetime.now(timezone.utc) + timedelta(days=60)

        assert await account_store.update_access_token(account.id, "new", expires_at=expires) is True
        assert await account_store.get_valid_token(account.id) == "new"
        assert await account_store.update_access_token(999, "x") is False

    async def test_connect_account_stores_both(self, account_store: AccountStore):
        account = await account_store.connect_account(
            account_data(),
            AccessTokenCreate(account_id=0, access_token="long-lived", scopes=["instagram_business_basic"]),
        )
        assert await account_store.get_valid_token(account.id) == "long-lived"

    async def test_list_expiring_tokens(self, account_store: AccountStore):
        now = datetime.now(timezone.utc)
        soon = await account_store.create_account(account_data(username="soon"))
        later = await account_store.create_account(account_data(user_id="user-2", username="later"))
        gone = await account_store.create_account(account_data(user_id="user-3", username="gone"))
        for account, delta in ((soon, timedelta(days=2)), (later, timedelta(days=30)), (gone, timedelta(days=-1))):
            await account_store.store_token(
                AccessTokenCreate(account_id=account.id, access_token=account.username, expires_at=now + delta)
            )

        tokens = await account_store.list_expiring_tokens(timedelta(days=7))
        assert [t.account_id for t in tokens] == [soon.id]
        assert tokens[0].account.username == "soon"
