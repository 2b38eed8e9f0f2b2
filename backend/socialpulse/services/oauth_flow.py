"""
Instagram account connection: code -> short-lived -> long-lived -> profile -> store.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from socialpulse.errors import (
    DataAccessError,
    ProfileFetchError,
    TokenExchangeError,
    TokenUpgradeError,
    ValidationError,
)
from socialpulse.integrations.instagram_api import InstagramClient
from socialpulse.models import SocialAccount, SocialPlatform
from socialpulse.schemas import AccessTokenCreate, AccountMetadata, SocialAccountCreate
from socialpulse.services.account_store import AccountStore

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "instagram_business_basic"


class ConnectError(Exception):
    """Connection failed at ``reason``; the callback turns it into a redirect."""

    def __init__(self, reason: str, cause: Exception | None = None):
        super().__init__(reason)
        self.reason = reason
        self.cause = cause


@dataclass
class ConnectResult:
    account: SocialAccount
    expires_at: datetime
    scopes: list[str]


async def connect_instagram_account(
    client: InstagramClient,
    store: AccountStore,
    user_id: str,
    code: str,
    now: datetime | None = None,
) -> ConnectResult:
    now = now or datetime.now(timezone.utc)

    try:
        short_lived = await client.exchange_code_for_token(code)
    except TokenExchangeError as exc:
        raise ConnectError("token_exchange_failed", exc) from exc

    try:
        long_lived = await client.get_long_lived_token(short_lived.access_token)
    except TokenUpgradeError as exc:
        raise ConnectError("token_upgrade_failed", exc) from exc

    try:
        profile = await client.get_user_profile(long_lived.access_token)
    except ProfileFetchError as exc:
        raise ConnectError("profile_fetch_failed", exc) from exc

    expires_at = long_lived.expires_at(now)
    scopes = short_lived.permissions or [DEFAULT_SCOPE]

    account_data = SocialAccountCreate(
        user_id=user_id,
        platform=SocialPlatform.instagram,
        platform_user_id=profile.id,
        username=profile.username,
        display_name=profile.name or profile.username,
        avatar_url=profile.profile_picture_url,
        account_type=profile.account_type,
        metadata=AccountMetadata(**profile.counters()),
    )
    token_data = AccessTokenCreate(
        account_id=0,
        access_token=long_lived.access_token,
        token_type=long_lived.token_type,
        expires_at=expires_at,
        scopes=scopes,
    )
    try:
        account = await store.connect_account(account_data, token_data)
    except (DataAccessError, ValidationError) as exc:
        raise ConnectError("storage_failed", exc) from exc

    logger.info(
        f"[oauth] Connected Instagram @{account.username} as account {account.id} "
        f"for user {user_id}, token expires {expires_at.date().isoformat()}"
    )
    return ConnectResult(account=account, expires_at=expires_at, scopes=scopes)
