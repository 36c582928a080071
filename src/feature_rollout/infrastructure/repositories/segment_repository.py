from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.feature import Segment, SegmentCriteria, Targeting, as_utc
from ...exceptions import validate_percentage
from ..db import models


class SqlAlchemySegmentRepository:
    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    @staticmethod
    def _segment(row: models.UserSegmentModel) -> Segment:
        return Segment(
            id=int(row.id),
            name=row.name,
            description=row.description,
            criteria=SegmentCriteria.from_dict(row.criteria),
            created_at=as_utc(row.created_at),
        )

    @staticmethod
    def _targeting(row: models.FeatureTargetingModel) -> Targeting:
        return Targeting(
            id=int(row.id),
            feature_flag_id=int(row.feature_flag_id),
            segment_id=int(row.segment_id),
            enabled=bool(row.enabled),
            rollout_percentage=int(row.rollout_percentage),
            created_at=as_utc(row.created_at),
        )

    async def list_segments(self) -> List[Segment]:
        q = await self.db_session.execute(
            select(models.UserSegmentModel).order_by(models.UserSegmentModel.name)
        )
        return [self._segment(r) for r in q.scalars().all()]

    async def create_segment(
        self, name: str, criteria: SegmentCriteria, description: str | None = None
    ) -> Segment:
        row = models.UserSegmentModel(
            name=name, description=description, criteria=criteria.to_dict()
        )
        self.db_session.add(row)
        await self.db_session.flush()
        await self.db_session.commit()
        return self._segment(row)

    async def get_targeting(self, feature_flag_id: int) -> List[Targeting]:
        # insertion order is the precedence order for segment evaluation
        q = await self.db_session.execute(
            select(models.FeatureTargetingModel)
            .where(models.FeatureTargetingModel.feature_flag_id == feature_flag_id)
            .order_by(models.FeatureTargetingModel.id)
        )
        return [self._targeting(r) for r in q.scalars().all()]

    async def add_targeting(
        self,
        feature_flag_id: int,
        segment_id: int,
        enabled: bool = True,
        rollout_percentage: int = 100,
    ) -> Targeting:
        validate_percentage(rollout_percentage)
        row = models.FeatureTargetingModel(
            feature_flag_id=feature_flag_id,
            segment_id=segment_id,
            enabled=enabled,
            rollout_percentage=rollout_percentage,
        )
        self.db_session.add(row)
        await self.db_session.flush()
        await self.db_session.commit()
        return self._targeting(row)
