from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.feature import Assignment, as_utc
from ...logging_config import get_logger
from ..db import models

logger = get_logger(__name__)


def _to_domain(row: models.UserFeatureAssignmentModel) -> Assignment:
    return Assignment(
        id=int(row.id),
        user_id=row.user_id,
        feature_flag_id=int(row.feature_flag_id),
        assigned=bool(row.assigned),
        reason=row.assignment_reason,
        assigned_at=as_utc(row.assigned_at),
    )


class SqlAlchemyAssignmentRepository:
    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    async def get(self, user_id: str, feature_flag_id: int) -> Optional[Assignment]:
        q = await self.db_session.execute(
            select(models.UserFeatureAssignmentModel)
            .where(models.UserFeatureAssignmentModel.user_id == user_id)
            .where(models.UserFeatureAssignmentModel.feature_flag_id == feature_flag_id)
        )
        row = q.scalars().first()
        return _to_domain(row) if row is not None else None

    async def create_if_absent(
        self, user_id: str, feature_flag_id: int, assigned: bool, reason: str
    ) -> Tuple[Assignment, bool]:
        existing = await self.get(user_id, feature_flag_id)
        if existing is not None:
            return existing, False
        row = models.UserFeatureAssignmentModel(
            user_id=user_id,
            feature_flag_id=feature_flag_id,
            assigned=assigned,
            assignment_reason=reason,
        )
        self.db_session.add(row)
        try:
            await self.db_session.commit()
        except IntegrityError:
            # a concurrent evaluation stored its assignment first; that one stands
            await self.db_session.rollback()
            logger.debug(
                "assignment_insert_conflict", user_id=user_id, feature_flag_id=feature_flag_id
            )
            winner = await self.get(user_id, feature_flag_id)
            if winner is None:
                raise
            return winner, False
        return _to_domain(row), True
