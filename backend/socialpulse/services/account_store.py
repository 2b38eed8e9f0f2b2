"""
Social accounts and their encrypted access tokens.

Invariant: at most one account per (user, platform) is active. Creating an
account deactivates its siblings and inserts the new row in one
transaction; the partial unique index ``uq_social_accounts_active_platform``
rejects the loser of a concurrent create, which is then retried once.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from socialpulse.db import upsert
from socialpulse.errors import DataAccessError, DecryptionError, ValidationError
from socialpulse.models import AccessToken, AnalyticsSample, SocialAccount, SocialPlatform
from socialpulse.schemas import AccessTokenCreate, SocialAccountCreate, SocialAccountUpdate
from socialpulse.services.token_cipher import TokenCipher

logger = logging.getLogger(__name__)

CREATE_ATTEMPTS = 2

# SocialAccountUpdate field -> model attribute
UPDATABLE_FIELDS = {
    "display_name": "display_name",
    "avatar_url": "avatar_url",
    "account_type": "account_type",
    "is_active": "is_active",
    "metadata": "metadata_json",
}


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AccountStore:
    def __init__(self, session: AsyncSession, cipher: TokenCipher):
        self.session = session
        self.cipher = cipher

    # ── accounts ─────────────────────────────────────────────

    async def list_accounts(self, user_id: str) -> list[SocialAccount]:
        stmt = (
            select(SocialAccount)
            .where(SocialAccount.user_id == user_id)
            .order_by(SocialAccount.created_at.desc(), SocialAccount.id.desc())
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            await self._fail(f"list accounts for user {user_id}", exc)
        return list(result.scalars().all())

    async def get_account(self, account_id: int) -> SocialAccount | None:
        try:
            return await self.session.get(SocialAccount, account_id)
        except SQLAlchemyError as exc:
            await self._fail(f"get account {account_id}", exc)

    async def get_active_account(self, user_id: str, platform: SocialPlatform) -> SocialAccount | None:
        platform_value = SocialPlatform(platform).value
        stmt = select(SocialAccount).where(
            SocialAccount.user_id == user_id,
            SocialAccount.platform == platform_value,
            SocialAccount.is_active.is_(True),
        )
        try:
            return await self.session.scalar(stmt)
        except SQLAlchemyError as exc:
            await self._fail(f"get active {platform_value} account for user {user_id}", exc)

    async def list_active_accounts(self, platform: SocialPlatform) -> list[SocialAccount]:
        stmt = (
            select(SocialAccount)
            .where(SocialAccount.platform == SocialPlatform(platform).value, SocialAccount.is_active.is_(True))
            .order_by(SocialAccount.id)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            await self._fail(f"list active {SocialPlatform(platform).value} accounts", exc)
        return list(result.scalars().all())

    async def create_account(self, data: SocialAccountCreate) -> SocialAccount:
        return await self._create(data, None)

    async def connect_account(self, data: SocialAccountCreate, token: AccessTokenCreate) -> SocialAccount:
        """Create the account and store its token in a single transaction.

        ``token.account_id`` is ignored; the new account's id is used.
        """
        return await self._create(data, token)

    async def _create(self, data: SocialAccountCreate, token: AccessTokenCreate | None) -> SocialAccount:
        for attempt in range(1, CREATE_ATTEMPTS + 1):
            try:
                await self._deactivate_siblings(data.user_id, data.platform)
                account = SocialAccount(
                    user_id=data.user_id,
                    platform=data.platform.value,
                    platform_user_id=data.platform_user_id,
                    username=data.username,
                    display_name=data.display_name,
                    avatar_url=data.avatar_url,
                    account_type=data.account_type,
                    is_active=True,
                    metadata_json=data.metadata.model_dump(exclude_none=True),
                )
                self.session.add(account)
                await self.session.flush()
                if token is not None:
                    await self._upsert_token(token.model_copy(update={"account_id": account.id}))
                await self.session.commit()
            except IntegrityError as exc:
                await self.session.rollback()
                if attempt < CREATE_ATTEMPTS:
                    logger.warning(
                        f"[accounts] Concurrent create for user {data.user_id} / {data.platform.value}, retrying"
                    )
                    continue
                await self._fail(f"create {data.platform.value} account for user {data.user_id}", exc)
            except SQLAlchemyError as exc:
                await self._fail(f"create {data.platform.value} account for user {data.user_id}", exc)
            else:
                await self.session.refresh(account)
                logger.info(
                    f"[accounts] Created {account.platform} account {account.id} (@{account.username}) "
                    f"for user {account.user_id}"
                )
                return account

    async def update_account(self, account_id: int, updates: dict[str, Any] | SocialAccountUpdate) -> SocialAccount | None:
        if isinstance(updates, SocialAccountUpdate):
            payload = updates
        else:
            try:
                payload = SocialAccountUpdate.model_validate(updates)
            except PydanticValidationError as exc:
                raise ValidationError(
                    "Invalid account update",
                    details={"errors": exc.errors(include_url=False, include_context=False)},
                ) from exc
        changes = payload.model_dump(exclude_unset=True)
        for key in ("is_active", "metadata"):
            if key in changes and changes[key] is None:
                changes.pop(key)
        if "metadata" in changes:
            changes["metadata"] = {k: v for k, v in changes["metadata"].items() if v is not None}

        try:
            account = await self.session.get(SocialAccount, account_id)
            if account is None:
                return None
            if changes.get("is_active") is True and not account.is_active:
                await self._deactivate_siblings(account.user_id, account.platform, exclude_id=account.id)
            for field, value in changes.items():
                setattr(account, UPDATABLE_FIELDS[field], value)
            await self.session.commit()
            await self.session.refresh(account)
        except SQLAlchemyError as exc:
            await self._fail(f"update account {account_id}", exc)
        logger.info(f"[accounts] Updated account {account_id}: {sorted(changes)}")
        return account

    async def delete_account(self, account_id: int) -> bool:
        """Delete the account together with its token and analytics samples."""
        try:
            exists = await self.session.scalar(select(SocialAccount.id).where(SocialAccount.id == account_id))
            if exists is None:
                return False
            await self.session.execute(delete(AccessToken).where(AccessToken.account_id == account_id))
            await self.session.execute(delete(AnalyticsSample).where(AnalyticsSample.account_id == account_id))
            await self.session.execute(delete(SocialAccount).where(SocialAccount.id == account_id))
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self._fail(f"delete account {account_id}", exc)
        logger.info(f"[accounts] Deleted account {account_id} with its token and samples")
        return True

    async def _deactivate_siblings(self, user_id: str, platform: SocialPlatform | str, exclude_id: int | None = None) -> None:
        platform_value = platform.value if isinstance(platform, SocialPlatform) else platform
        stmt = (
            update(SocialAccount)
            .where(
                SocialAccount.user_id == user_id,
                SocialAccount.platform == platform_value,
                SocialAccount.is_active.is_(True),
            )
            .values(is_active=False)
        )
        if exclude_id is not None:
            stmt = stmt.where(SocialAccount.id != exclude_id)
        await self.session.execute(stmt)

    # ── tokens ───────────────────────────────────────────────

    async def store_token(self, data: AccessTokenCreate) -> AccessToken:
        try:
            token = await self._upsert_token(data)
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self._fail(f"store token for account {data.account_id}", exc)
        logger.info(f"[accounts] Stored access token for account {data.account_id}")
        return token

    async def _upsert_token(self, data: AccessTokenCreate) -> AccessToken:
        values = {
            "account_id": data.account_id,
            "access_token": self.cipher.encrypt(data.access_token),
            "refresh_token": self.cipher.encrypt(data.refresh_token) if data.refresh_token else None,
            "token_type": data.token_type or "bearer",
            "expires_at": data.expires_at,
            "scopes": list(data.scopes),
        }
        stmt = upsert(self.session, AccessToken).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[AccessToken.account_id],
            set_={
                "access_token": stmt.excluded.access_token,
                "refresh_token": stmt.excluded.refresh_token,
                "token_type": stmt.excluded.token_type,
                "expires_at": stmt.excluded.expires_at,
                "scopes": stmt.excluded.scopes,
                "updated_at": datetime.now(timezone.utc),
            },
        )
        await self.session.execute(stmt)
        return await self.session.scalar(
            select(AccessToken)
            .where(AccessToken.account_id == data.account_id)
            .execution_options(populate_existing=True)
        )

    async def update_access_token(
        self,
        account_id: int,
        access_token: str,
        expires_at: datetime | None = None,
        scopes: list[str] | None = None,
    ) -> bool:
        values: dict[str, Any] = {
            "access_token": self.cipher.encrypt(access_token),
            "expires_at": expires_at,
        }
        if scopes is not None:
            values["scopes"] = scopes
        try:
            result = await self.session.execute(
                update(AccessToken).where(AccessToken.account_id == account_id).values(**values)
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self._fail(f"update token for account {account_id}", exc)
        return result.rowcount > 0

    async def get_valid_token(self, account_id: int) -> str | None:
        """Plaintext token, or None when absent, expired or undecryptable."""
        try:
            record = await self.session.scalar(
                select(AccessToken)
                .where(AccessToken.account_id == account_id)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as exc:
            await self._fail(f"get token for account {account_id}", exc)
        if record is None:
            return None

        expires_at = _aware(record.expires_at)
        if expires_at is not None and expires_at < datetime.now(timezone.utc):
            logger.warning(f"[accounts] Access token for account {account_id} expired at {expires_at.isoformat()}")
            return None

        try:
            return self.cipher.decrypt(record.access_token)
        except DecryptionError as exc:
            logger.error(f"[accounts] Unusable access token for account {account_id}: {exc.message}")
            return None

    async def list_expiring_tokens(self, within: timedelta, platform: SocialPlatform = SocialPlatform.instagram) -> list[AccessToken]:
        """Unexpired tokens whose expiry falls inside ``within`` from now."""
        now = datetime.now(timezone.utc)
        stmt = (
            select(AccessToken)
            .join(SocialAccount, SocialAccount.id == AccessToken.account_id)
            .where(
                SocialAccount.platform == platform.value,
                AccessToken.expires_at.isnot(None),
                AccessToken.expires_at > now,
                AccessToken.expires_at <= now + within,
            )
            .options(selectinload(AccessToken.account))
            .order_by(AccessToken.expires_at)
        )
        try:
            result = await self.session.execute(stmt)
        except SQLAlchemyError as exc:
            await self._fail("list expiring tokens", exc)
        return list(result.scalars().all())

    async def _fail(self, action: str, exc: SQLAlchemyError):
        logger.error(f"[accounts] Failed to {action}: {exc}")
        await self.session.rollback()
        raise DataAccessError(f"Failed to {action}") from exc
