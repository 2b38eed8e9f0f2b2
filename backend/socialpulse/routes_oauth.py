"""
Instagram OAuth callback. Never raises to the browser: every outcome is a
redirect back to the frontend.
"""
from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Query
from fastapi.responses import RedirectResponse

from .deps import AccountStoreDep, InstagramDep, StatesDep
from .models import SocialPlatform
from .services.oauth_flow import ConnectError, connect_instagram_account
from .settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["oauth"])


def _redirect(**params: str) -> RedirectResponse:
    base = get_settings().frontend_url.rstrip("/")
    return RedirectResponse(f"{base}/?{urlencode(params)}", status_code=307)


def _failure(reason: str) -> RedirectResponse:
    return _redirect(error="instagram_auth_failed", reason=reason)


@router.get("/instagram")
async def instagram_callback(
    client: InstagramDep,
    store: AccountStoreDep,
    states: StatesDep,
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
    error_reason: str | None = Query(default=None),
):
    if error:
        logger.warning(f"[oauth] Instagram returned error: {error} ({error_reason})")
        return _failure(error_reason or error)
    if not code:
        return _failure("no_code")

    user_id = states.consume(state, SocialPlatform.instagram.value)
    if user_id is None:
        logger.warning("[oauth] Callback with unknown or expired state")
        return _failure("invalid_state")

    try:
        await connect_instagram_account(client, store, user_id, code)
    except ConnectError as exc:
        logger.error(f"[oauth] Connect failed for user {user_id}: {exc.reason} ({exc.cause})")
        return _failure(exc.reason)
    return _redirect(instagram_connected="true")
