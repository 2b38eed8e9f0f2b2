"""
Scheduler Service

Background jobs for connected Instagram accounts:
- Daily refresh of long-lived tokens nearing expiry
- Periodic insights sync for every active account

Single-leader election via Postgres advisory locks:
- Only the instance that acquires the lock executes the tick
- Other instances silently skip
- Controlled by SCHEDULER_ENABLED env (default: true)
"""
from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, AsyncSession, async_sessionmaker

from socialpulse.db import get_sessionmaker
from socialpulse.integrations.instagram_api import get_instagram_client
from socialpulse.services.account_store import AccountStore
from socialpulse.services.analytics_store import AnalyticsStore
from socialpulse.services.insights_sync import sync_all_active_accounts
from socialpulse.services.token_cipher import get_token_cipher
from socialpulse.services.token_refresh import refresh_expiring_tokens
from socialpulse.settings import get_settings

logger = logging.getLogger(__name__)

# Advisory lock keys (arbitrary int64, unique per job type)
LOCK_TOKEN_REFRESH = 910_001
LOCK_INSIGHTS_SYNC = 910_002


class SchedulerService:
    """Runs token refresh and insights sync on an AsyncIOScheduler.

    On PostgreSQL each tick takes pg_try_advisory_lock so that only one
    backend instance executes the job while the others skip.
    """

    _instance: "SchedulerService | None" = None

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self._session_factory: async_sessionmaker | None = None
        self._running = False

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def configure(self, session_factory: async_sessionmaker | None = None):
        self._session_factory = session_factory or get_sessionmaker()

    def _get_session(self) -> AsyncSession:
        if not self._session_factory:
            self.configure()
        return self._session_factory()

    def _get_engine(self) -> AsyncEngine:
        if not self._session_factory:
            self.configure()
        return self._session_factory.kw["bind"]

    @staticmethod
    def _uses_advisory_locks(conn: AsyncConnection) -> bool:
        return conn.dialect.name == "postgresql"

    async def _try_advisory_lock(self, conn: AsyncConnection, lock_key: int) -> bool:
        """Non-blocking session-level lock, owned by ``conn`` until unlocked or closed."""
        if not self._uses_advisory_locks(conn):
            return True
        result = await conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": lock_key})
        acquired = bool(result.scalar())
        await conn.commit()
        return acquired

    async def _release_advisory_lock(self, conn: AsyncConnection, lock_key: int):
        if self._uses_advisory_locks(conn):
            await conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": lock_key})
            await conn.commit()

    def start(self):
        """Start the scheduler (respects SCHEDULER_ENABLED env)."""
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled by SCHEDULER_ENABLED=false, skipping start")
            return
        if self._running:
            return

        self.scheduler.add_job(
            self.run_token_refresh,
            IntervalTrigger(hours=24),
            id="token_refresh",
            name="Refresh expiring Instagram tokens",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run_insights_sync,
            IntervalTrigger(hours=settings.insights_sync_interval_hours),
            id="insights_sync",
            name="Sync Instagram insights",
            replace_existing=True,
        )

        self.scheduler.start()
        self._running = True
        logger.info("[scheduler] Started (single-leader mode via advisory locks)")

    def stop(self):
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("[scheduler] Stopped")

    def is_running(self) -> bool:
        return self._running

    async def run_token_refresh(self) -> dict | None:
        settings = get_settings()
        # lock and unlock share one connection; the job session commits mid-run
        async with self._get_engine().connect() as lock_conn:
            if not await self._try_advisory_lock(lock_conn, LOCK_TOKEN_REFRESH):
                logger.debug("[token_refresh] Advisory lock not acquired, skipping tick")
                return None
            try:
                async with self._get_session() as session:
                    return await refresh_expiring_tokens(
                        get_instagram_client(),
                        AccountStore(session, get_token_cipher()),
                        window_days=settings.token_refresh_window_days,
                    )
            finally:
                await self._release_advisory_lock(lock_conn, LOCK_TOKEN_REFRESH)

    async def run_insights_sync(self) -> dict | None:
        settings = get_settings()
        async with self._get_engine().connect() as lock_conn:
            if not await self._try_advisory_lock(lock_conn, LOCK_INSIGHTS_SYNC):
                logger.debug("[insights_sync] Advisory lock not acquired, skipping tick")
                return None
            try:
                async with self._get_session() as session:
                    result = await sync_all_active_accounts(
                        get_instagram_client(),
                        AccountStore(session, get_token_cipher()),
                        AnalyticsStore(session),
                        media_limit=settings.media_insights_limit,
                    )
                logger.info(
                    f"[insights_sync] Completed: {result['synced']} synced, {len(result['errors'])} errors"
                )
                return result
            finally:
                await self._release_advisory_lock(lock_conn, LOCK_INSIGHTS_SYNC)


# Global instance
scheduler_service = SchedulerService.get_instance()
