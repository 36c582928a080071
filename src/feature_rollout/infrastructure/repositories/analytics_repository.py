from datetime import datetime
from typing import List

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.analytics import AnalyticsEvent, DailyCount
from ..db import models


class SqlAlchemyAnalyticsRepository:
    def __init__(self, db_session: AsyncSession):
        """Initialize analytics repository with a database session.

        Args:
            db_session: SQLAlchemy async session instance
        """
        self.db_session = db_session

    async def record_event(self, event: AnalyticsEvent) -> None:
        row = models.FeatureAnalyticsModel(
            feature_flag_id=event.feature_flag_id,
            user_id=event.user_id,
            event_type=str(event.event_type),
            event_data=event.event_data,
        )
        if event.timestamp is not None:
            row.timestamp = event.timestamp
        self.db_session.add(row)
        await self.db_session.commit()

    async def daily_counts(self, feature_flag_id: int, since: datetime) -> List[DailyCount]:
        m = models.FeatureAnalyticsModel
        day = func.date(m.timestamp)
        q = await self.db_session.execute(
            select(m.event_type, func.count().label("count"), day.label("date"))
            .where(m.feature_flag_id == feature_flag_id)
            .where(m.timestamp >= since)
            .group_by(m.event_type, day)
            .order_by(day.desc(), m.event_type)
        )
        return [
            DailyCount(date=str(r.date), event_type=r.event_type, count=int(r.count))
            for r in q.all()
        ]

    async def distinct_users(self, feature_flag_id: int, since: datetime) -> int:
        m = models.FeatureAnalyticsModel
        q = await self.db_session.execute(
            select(func.count(func.distinct(m.user_id)))
            .where(m.feature_flag_id == feature_flag_id)
            .where(m.timestamp >= since)
        )
        return int(q.scalar() or 0)
