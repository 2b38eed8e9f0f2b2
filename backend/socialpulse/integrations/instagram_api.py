"""
Instagram Login / Graph API client.

Covers the authorization-code flow (authorize URL, code exchange,
long-lived upgrade, refresh) plus the profile, insights and media reads the
dashboard needs. Each call is a single request; failures surface as typed
errors carrying the provider's message and are never retried here.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx

from socialpulse.errors import (
    ConfigurationError,
    InsightsFetchError,
    ProfileFetchError,
    ProviderError,
    TokenExchangeError,
    TokenRefreshError,
    TokenUpgradeError,
)
from socialpulse.settings import get_settings

logger = logging.getLogger(__name__)

IG_AUTHORIZE_URL = "https://www.instagram.com/oauth/authorize"
IG_TOKEN_URL = "https://api.instagram.com/oauth/access_token"
IG_GRAPH_URL = "https://graph.instagram.com"
IG_LONG_LIVED_URL = f"{IG_GRAPH_URL}/access_token"
IG_REFRESH_URL = f"{IG_GRAPH_URL}/refresh_access_token"

DEFAULT_SCOPES = ("instagram_business_basic", "instagram_business_manage_insights")
PROFILE_FIELDS = (
    "id",
    "username",
    "account_type",
    "media_count",
    "followers_count",
    "follows_count",
    "name",
    "biography",
    "website",
    "profile_picture_url",
)
MEDIA_FIELDS = "id,caption,media_type,media_url,thumbnail_url,permalink,timestamp"


@dataclass
class ShortLivedToken:
    access_token: str
    user_id: str
    permissions: list[str] = field(default_factory=list)


@dataclass
class LongLivedToken:
    access_token: str
    token_type: str
    expires_in: int

    def expires_at(self, now: datetime | None = None) -> datetime:
        return (now or datetime.now(timezone.utc)) + timedelta(seconds=self.expires_in)


@dataclass
class InstagramProfile:
    id: str
    username: str
    account_type: str | None = None
    media_count: int | None = None
    followers_count: int | None = None
    follows_count: int | None = None
    name: str | None = None
    biography: str | None = None
    website: str | None = None
    profile_picture_url: str | None = None

    def counters(self) -> dict[str, Any]:
        return {
            "followers_count": self.followers_count,
            "follows_count": self.follows_count,
            "media_count": self.media_count,
            "biography": self.biography,
            "website": self.website,
        }


def _parse_int(val: Any) -> int | None:
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


def _permissions(value: Any) -> list[str]:
    if isinstance(value, list):
        return [str(item) for item in value if item]
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    return []


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        if body.get("error_message"):
            return str(body["error_message"])
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return body.get("error_description") or error
    return resp.reason_phrase or f"HTTP {resp.status_code}"


def parse_insights(payload: dict[str, Any]) -> dict[str, dict[str, Any]]:
    """Flatten an insights response to ``{metric: {value, period, end_time}}``.

    Uses the latest entry of ``values`` when present, else ``total_value``.
    """
    parsed: dict[str, dict[str, Any]] = {}
    for item in payload.get("data") or []:
        if not isinstance(item, dict) or not item.get("name"):
            continue
        value = None
        end_time = None
        values = item.get("values") or []
        if values and isinstance(values[-1], dict):
            value = values[-1].get("value")
            end_time = values[-1].get("end_time")
        elif isinstance(item.get("total_value"), dict):
            value = item["total_value"].get("value")
        parsed[item["name"]] = {"value": value, "period": item.get("period"), "end_time": end_time}
    return parsed


class InstagramClient:
    def __init__(
        self,
        client_id: str | None,
        client_secret: str | None,
        redirect_uri: str | None,
        *,
        scopes: tuple[str, ...] = DEFAULT_SCOPES,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        if not client_id or not client_secret or not redirect_uri:
            raise ConfigurationError(
                "Instagram API configuration missing (INSTAGRAM_APP_ID, INSTAGRAM_APP_SECRET, INSTAGRAM_REDIRECT_URI)",
                config_key="INSTAGRAM_APP_ID" if not client_id else (
                    "INSTAGRAM_APP_SECRET" if not client_secret else "INSTAGRAM_REDIRECT_URI"
                ),
            )
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes
        self._timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _request(
        self,
        error_cls: type[ProviderError],
        what: str,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        async with self._client() as client:
            try:
                resp = await client.request(method, url, **kwargs)
            except httpx.HTTPError as exc:
                logger.error(f"[instagram] {what} request failed: {exc}")
                raise error_cls(f"Instagram {what} failed: {exc}") from exc
        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.warning(f"[instagram] {what} rejected ({resp.status_code}): {message}")
            raise error_cls(f"Instagram {what} failed: {message}", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as exc:
            raise error_cls(f"Instagram {what} returned invalid JSON", status_code=resp.status_code) from exc
        if not isinstance(data, dict):
            raise error_cls(f"Instagram {what} returned an unexpected payload", status_code=resp.status_code)
        return data

    # ── OAuth ────────────────────────────────────────────────

    def get_authorization_url(self, state: str) -> str:
        """Provider URL to redirect the user to. ``state`` is verified by the caller."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": ",".join(self.scopes),
            "response_type": "code",
            "state": state,
        }
        return f"{IG_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str) -> ShortLivedToken:
        data = await self._request(
            TokenExchangeError,
            "token exchange",
            "POST",
            IG_TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
                "code": code,
            },
        )
        # newer responses wrap the token in a one-element "data" list
        if isinstance(data.get("data"), list) and data["data"]:
            data = data["data"][0]
        if not data.get("access_token"):
            raise TokenExchangeError("Instagram token exchange failed: no access_token in response")
        return ShortLivedToken(
            access_token=data["access_token"],
            user_id=str(data.get("user_id") or ""),
            permissions=_permissions(data.get("permissions")),
        )

    async def get_long_lived_token(self, short_lived_token: str) -> LongLivedToken:
        data = await self._request(
            TokenUpgradeError,
            "long-lived token exchange",
            "GET",
            IG_LONG_LIVED_URL,
            params={
                "grant_type": "ig_exchange_token",
                "client_secret": self.client_secret,
                "access_token": short_lived_token,
            },
        )
        expires_in = _parse_int(data.get("expires_in"))
        if not data.get("access_token") or expires_in is None:
            raise TokenUpgradeError("Long-lived token exchange failed: incomplete response")
        return LongLivedToken(
            access_token=data["access_token"],
            token_type=data.get("token_type") or "bearer",
            expires_in=expires_in,
        )

    async def refresh_token(self, access_token: str) -> LongLivedToken:
        data = await self._request(
            TokenRefreshError,
            "token refresh",
            "GET",
            IG_REFRESH_URL,
            params={"grant_type": "ig_refresh_token", "access_token": access_token},
        )
        expires_in = _parse_int(data.get("expires_in"))
        if not data.get("access_token") or expires_in is None:
            raise TokenRefreshError("Token refresh failed: incomplete response")
        return LongLivedToken(
            access_token=data["access_token"],
            token_type=data.get("token_type") or "bearer",
            expires_in=expires_in,
        )

    # ── Graph reads ──────────────────────────────────────────

    async def get_user_profile(self, access_token: str) -> InstagramProfile:
        data = await self._request(
            ProfileFetchError,
            "profile fetch",
            "GET",
            f"{IG_GRAPH_URL}/me",
            params={"fields": ",".join(PROFILE_FIELDS), "access_token": access_token},
        )
        if not data.get("id") or not data.get("username"):
            raise ProfileFetchError("Failed to fetch Instagram profile: id or username missing")
        return InstagramProfile(
            id=str(data["id"]),
            username=data["username"],
            account_type=data.get("account_type"),
            media_count=_parse_int(data.get("media_count")),
            followers_count=_parse_int(data.get("followers_count")),
            follows_count=_parse_int(data.get("follows_count")),
            name=data.get("name"),
            biography=data.get("biography"),
            website=data.get("website"),
            profile_picture_url=data.get("profile_picture_url"),
        )

    async def get_user_insights(
        self,
        access_token: str,
        metrics: list[str] | tuple[str, ...] = ("reach", "views", "profile_views"),
        period: str = "day",
    ) -> dict[str, dict[str, Any]]:
        data = await self._request(
            InsightsFetchError,
            "insights fetch",
            "GET",
            f"{IG_GRAPH_URL}/me/insights",
            params={"metric": ",".join(metrics), "period": period, "access_token": access_token},
        )
        return parse_insights(data)

    async def get_media_insights(
        self,
        access_token: str,
        media_id: str,
        metrics: list[str] | tuple[str, ...] = ("views", "likes", "comments", "shares", "saved"),
    ) -> dict[str, dict[str, Any]]:
        data = await self._request(
            InsightsFetchError,
            "media insights fetch",
            "GET",
            f"{IG_GRAPH_URL}/{media_id}/insights",
            params={"metric": ",".join(metrics), "access_token": access_token},
        )
        return parse_insights(data)

    async def get_user_media(self, access_token: str, limit: int = 25) -> list[dict[str, Any]]:
        data = await self._request(
            InsightsFetchError,
            "media fetch",
            "GET",
            f"{IG_GRAPH_URL}/me/media",
            params={"fields": MEDIA_FIELDS, "limit": str(limit), "access_token": access_token},
        )
        return [item for item in data.get("data") or [] if isinstance(item, dict) and item.get("id")]


def get_instagram_client() -> InstagramClient:
    settings = get_settings()
    return InstagramClient(
        settings.instagram_app_id,
        settings.instagram_app_secret,
        settings.instagram_redirect_uri,
    )
