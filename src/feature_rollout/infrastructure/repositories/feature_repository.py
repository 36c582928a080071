from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.feature import FeatureFlag, as_utc
from ...exceptions import NotFoundError, validate_percentage
from ...logging_config import get_logger
from ..db import models

logger = get_logger(__name__)


def _to_domain(row: models.FeatureFlagModel) -> FeatureFlag:
    return FeatureFlag(
        id=int(row.id),
        name=row.name,
        description=row.description,
        enabled=bool(row.enabled),
        rollout_percentage=int(row.rollout_percentage),
        rollout_strategy=row.rollout_strategy,
        environment=row.environment,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
        created_by=row.created_by,
    )


class SqlAlchemyFeatureFlagRepository:
    def __init__(self, db_session: AsyncSession):
        self.db_session = db_session

    async def _get_row(self, name: str, environment: str) -> Optional[models.FeatureFlagModel]:
        q = await self.db_session.execute(
            select(models.FeatureFlagModel)
            .where(models.FeatureFlagModel.name == name)
            .where(models.FeatureFlagModel.environment == environment)
        )
        return q.scalars().first()

    def _history(
        self,
        flag_id: int,
        action: str,
        old_values: Optional[Dict[str, Any]],
        new_values: Optional[Dict[str, Any]],
        changed_by: Optional[str],
    ) -> None:
        self.db_session.add(
            models.FeatureFlagHistoryModel(
                feature_flag_id=flag_id,
                action=action,
                old_values=old_values,
                new_values=new_values,
                changed_by=changed_by,
            )
        )

    async def _commit(self, operation: str) -> None:
        try:
            await self.db_session.commit()
        except Exception as e:
            logger.debug("feature_commit_failed", operation=operation, error=str(e))
            await self.db_session.rollback()
            raise

    async def get_by_name(self, name: str, environment: str) -> Optional[FeatureFlag]:
        row = await self._get_row(name, environment)
        return _to_domain(row) if row is not None else None

    async def list(self, environment: str) -> List[FeatureFlag]:
        q = await self.db_session.execute(
            select(models.FeatureFlagModel)
            .where(models.FeatureFlagModel.environment == environment)
            .order_by(models.FeatureFlagModel.name)
        )
        return [_to_domain(r) for r in q.scalars().all()]

    async def upsert(
        self,
        name: str,
        environment: str,
        *,
        description: str | None = None,
        enabled: bool = False,
        rollout_percentage: int = 0,
        rollout_strategy: str = "percentage",
        created_by: str | None = None,
    ) -> FeatureFlag:
        validate_percentage(rollout_percentage)
        row = await self._get_row(name, environment)
        new_values = {
            "description": description,
            "enabled": bool(enabled),
            "rollout_percentage": rollout_percentage,
            "rollout_strategy": rollout_strategy,
        }
        if row is None:
            row = models.FeatureFlagModel(
                name=name, environment=environment, created_by=created_by, **new_values
            )
            self.db_session.add(row)
            await self.db_session.flush()
            self._history(int(row.id), "created", None, new_values, created_by)
        else:
            old_values = {k: getattr(row, k) for k in new_values}
            for k, v in new_values.items():
                setattr(row, k, v)
            row.updated_at = datetime.now(timezone.utc)
            self._history(int(row.id), "updated", old_values, new_values, created_by)
        await self._commit("upsert")
        return _to_domain(row)

    async def update_rollout_percentage(
        self, name: str, percentage: int, environment: str, changed_by: str | None = None
    ) -> FeatureFlag:
        validate_percentage(percentage)
        row = await self._get_row(name, environment)
        if row is None:
            raise NotFoundError(f"Feature flag '{name}' not found in {environment}")
        old = int(row.rollout_percentage)
        row.rollout_percentage = percentage
        row.updated_at = datetime.now(timezone.utc)
        self._history(
            int(row.id),
            "rollout_updated",
            {"rollout_percentage": old},
            {"rollout_percentage": percentage},
            changed_by,
        )
        await self._commit("update_rollout_percentage")
        return _to_domain(row)

    async def set_enabled(
        self, name: str, enabled: bool, environment: str, changed_by: str | None = None
    ) -> FeatureFlag:
        row = await self._get_row(name, environment)
        if row is None:
            raise NotFoundError(f"Feature flag '{name}' not found in {environment}")
        old = bool(row.enabled)
        row.enabled = bool(enabled)
        row.updated_at = datetime.now(timezone.utc)
        self._history(
            int(row.id), "toggled", {"enabled": old}, {"enabled": bool(enabled)}, changed_by
        )
        await self._commit("set_enabled")
        return _to_domain(row)

    async def disable_all(self, changed_by: str | None = None) -> int:
        """Disable every flag in every environment in a single transaction."""
        q = await self.db_session.execute(
            select(models.FeatureFlagModel.id).where(models.FeatureFlagModel.enabled.is_(True))
        )
        ids = [int(i) for i in q.scalars().all()]
        await self.db_session.execute(
            update(models.FeatureFlagModel)
            .where(models.FeatureFlagModel.enabled.is_(True))
            .values(enabled=False, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        for flag_id in ids:
            self._history(flag_id, "kill_switch", {"enabled": True}, {"enabled": False}, changed_by)
        await self._commit("disable_all")
        # bulk UPDATE bypasses the identity map
        self.db_session.expire_all()
        return len(ids)
