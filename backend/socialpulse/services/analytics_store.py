"""
Persistence for Instagram metric samples.

A sample is identified by (account, metric_type, metric_name,
date_collected, media_id); re-collecting the same day's value overwrites
the row instead of adding another one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from socialpulse.db import upsert
from socialpulse.errors import DataAccessError
from socialpulse.models import AnalyticsSample, MetricType
from socialpulse.schemas import AnalyticsSampleCreate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DateRange:
    """Inclusive calendar-day window."""

    start: date
    end: date

    def __contains__(self, day: date) -> bool:
        return self.start <= day <= self.end


class AnalyticsStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def store_sample(self, data: AnalyticsSampleCreate) -> AnalyticsSample:
        date_collected = data.date_collected or datetime.now(timezone.utc).date()
        media_id = data.media_id or ""
        metric_value = data.metric_value.model_dump(exclude_none=True)

        stmt = upsert(self.session, AnalyticsSample).values(
            account_id=data.account_id,
            metric_type=data.metric_type.value,
            metric_name=data.metric_name,
            metric_value=metric_value,
            period=data.period,
            media_id=media_id,
            date_collected=date_collected,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[
                AnalyticsSample.account_id,
                AnalyticsSample.metric_type,
                AnalyticsSample.metric_name,
                AnalyticsSample.date_collected,
                AnalyticsSample.media_id,
            ],
            set_={
                "metric_value": stmt.excluded.metric_value,
                "period": stmt.excluded.period,
                "created_at": datetime.now(timezone.utc),
            },
        )
        try:
            await self.session.execute(stmt)
            await self.session.commit()
            sample = await self.session.scalar(
                select(AnalyticsSample)
                .where(
                    AnalyticsSample.account_id == data.account_id,
                    AnalyticsSample.metric_type == data.metric_type.value,
                    AnalyticsSample.metric_name == data.metric_name,
                    AnalyticsSample.date_collected == date_collected,
                    AnalyticsSample.media_id == media_id,
                )
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as exc:
            logger.error(
                f"[analytics] Failed to store {data.metric_name} for account {data.account_id}: {exc}"
            )
            await self.session.rollback()
            raise DataAccessError("Failed to store analytics data") from exc
        return sample

    async def query_samples(
        self,
        account_id: int,
        metric_type: MetricType | None = None,
        date_range: DateRange | None = None,
    ) -> list[AnalyticsSample]:
        """Samples for an account, newest first."""
        stmt = select(AnalyticsSample).where(AnalyticsSample.account_id == account_id)
        if metric_type is not None:
            stmt = stmt.where(AnalyticsSample.metric_type == MetricType(metric_type).value)
        if date_range is not None:
            stmt = stmt.where(
                AnalyticsSample.date_collected >= date_range.start,
                AnalyticsSample.date_collected <= date_range.end,
            )
        stmt = stmt.order_by(AnalyticsSample.date_collected.desc(), AnalyticsSample.id.desc())
        try:
            result = await self.session.execute(stmt.execution_options(populate_existing=True))
        except SQLAlchemyError as exc:
            logger.error(f"[analytics] Failed to query samples for account {account_id}: {exc}")
            await self.session.rollback()
            raise DataAccessError("Failed to fetch analytics data") from exc
        return list(result.scalars().all())
