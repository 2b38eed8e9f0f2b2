"""
Refresh long-lived Instagram tokens before they lapse.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from socialpulse.errors import DataAccessError, DecryptionError, TokenRefreshError, ValidationError
from socialpulse.integrations.instagram_api import InstagramClient
from socialpulse.services.account_store import AccountStore

logger = logging.getLogger(__name__)


async def refresh_expiring_tokens(
    client: InstagramClient,
    store: AccountStore,
    window_days: int = 7,
) -> dict:
    """Refresh every token expiring within ``window_days``.

    A failure for one account is logged and counted; it does not stop the run.
    """
    tokens = await store.list_expiring_tokens(timedelta(days=window_days))
    refreshed = 0
    errors: list[dict] = []

    for record in tokens:
        account_id = record.account_id
        try:
            current = store.cipher.decrypt(record.access_token)
            fresh = await client.refresh_token(current)
        except (DecryptionError, TokenRefreshError) as exc:
            logger.error(f"[token_refresh] Account {account_id}: {exc.message}")
            errors.append({"account_id": account_id, "error": exc.message})
            continue
        try:
            await store.update_access_token(
                account_id,
                fresh.access_token,
                expires_at=fresh.expires_at(datetime.now(timezone.utc)),
            )
        except (DataAccessError, ValidationError) as exc:
            logger.error(f"[token_refresh] Account {account_id}: {exc.message}")
            errors.append({"account_id": account_id, "error": exc.message})
            continue
        refreshed += 1

    logger.info(f"[token_refresh] Completed: {refreshed} refreshed, {len(errors)} errors")
    return {"checked": len(tokens), "refreshed": refreshed, "errors": errors}
