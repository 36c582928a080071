from typing import List, Optional, Protocol

from ...domain.feature import FeatureFlag


class FeatureFlagRepository(Protocol):
    """Protocol for feature flag repository operations."""

    async def get_by_name(self, name: str, environment: str) -> Optional[FeatureFlag]: ...
    async def list(self, environment: str) -> List[FeatureFlag]: ...

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
    ) -> FeatureFlag: ...

    async def update_rollout_percentage(
        self, name: str, percentage: int, environment: str, changed_by: str | None = None
    ) -> FeatureFlag: ...

    async def set_enabled(
        self, name: str, enabled: bool, environment: str, changed_by: str | None = None
    ) -> FeatureFlag: ...

    async def disable_all(self, changed_by: str | None = None) -> int: ...
