"""
Pytest configuration and fixtures for socialpulse tests
"""
import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["INSTAGRAM_APP_ID"] = "test-app-id"
os.environ["INSTAGRAM_APP_SECRET"] = "test-app-secret"
os.environ["INSTAGRAM_REDIRECT_URI"] = "http://testserver/api/auth/instagram"
os.environ["ENCRYPTION_KEY"] = "test-encryption-key"
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["SCHEDULER_ENABLED"] = "false"

from typing import AsyncGenerator, Callable

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from socialpulse import models  # noqa: F401
from socialpulse.auth import OAuthStateStore, get_oauth_states
from socialpulse.db import Base, get_session
from socialpulse.integrations.instagram_api import InstagramClient, get_instagram_client
from socialpulse.main import app
from socialpulse.services.account_store import AccountStore
from socialpulse.services.analytics_store import AnalyticsStore
from socialpulse.services.token_cipher import TokenCipher, get_token_cipher


@pytest.fixture
async def engine():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def sessionmaker(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with sessionmaker() as session:
        yield session


@pytest.fixture
def cipher() -> TokenCipher:
    return TokenCipher("unit-test-key")


@pytest.fixture
def account_store(db_session, cipher) -> AccountStore:
    return AccountStore(db_session, cipher)


@pytest.fixture
def analytics_store(db_session) -> AnalyticsStore:
    return AnalyticsStore(db_session)


class FakeInstagram:
    """Routes MockTransport requests to per-path handlers registered by a test."""

    def __init__(self):
        self.routes: dict[tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}
        self.requests: list[httpx.Request] = []

    def on(self, method: str, url: str, handler=None, *, json=None, status_code: int = 200):
        if handler is None:
            def handler(request, _json=json, _status=status_code):
                return httpx.Response(_status, json=_json)
        self.routes[(method, url)] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = f"{request.url.scheme}://{request.url.host}{request.url.path}"
        handler = self.routes.get((request.method, url))
        if handler is None:
            return httpx.Response(404, json={"error": {"message": f"no route for {request.method} {url}"}})
        return handler(request)


@pytest.fixture
def fake_instagram() -> FakeInstagram:
    return FakeInstagram()


@pytest.fixture
def instagram_client(fake_instagram) -> InstagramClient:
    return InstagramClient(
        "test-app-id",
        "test-app-secret",
        "http://testserver/api/auth/instagram",
        transport=httpx.MockTransport(fake_instagram),
    )


@pytest.fixture
def oauth_states() -> OAuthStateStore:
    return OAuthStateStore()


@pytest.fixture
async def client(sessionmaker, cipher, instagram_client, oauth_states) -> AsyncGenerator[AsyncClient, None]:
    """API client wired to the test database, cipher and fake Instagram."""

    async def _session():
        async with sessionmaker() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_token_cipher] = lambda: cipher
    app.dependency_overrides[get_instagram_client] = lambda: instagram_client
    app.dependency_overrides[get_oauth_states] = lambda: oauth_states

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


PROFILE_PAYLOAD = {
    "id": "17841400000000001",
    "username": "alice",
    "account_type": "BUSINESS",
    "media_count": 12,
    "followers_count": 1500,
    "follows_count": 30,
    "name": "Alice",
    "biography": "hello",
    "profile_picture_url": "https://cdn.test/alice.jpg",
}


@pytest.fixture
def instagram_oauth_ok(fake_instagram) -> FakeInstagram:
    """Successful code exchange, long-lived upgrade and profile fetch."""
    fake_instagram.on(
        "POST",
        "https://api.instagram.com/oauth/access_token",
        json={"access_token": "short-token", "user_id": 17841400000000001, "permissions": ["instagram_business_basic"]},
    )
    fake_instagram.on(
        "GET",
        "https://graph.instagram.com/access_token",
        json={"access_token": "long-token", "token_type": "bearer", "expires_in": 5184000},
    )
    fake_instagram.on("GET", "https://graph.instagram.com/me", json=PROFILE_PAYLOAD)
    return fake_instagram
