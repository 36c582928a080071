from typing import List, Protocol

from ...domain.feature import Segment, SegmentCriteria, Targeting


class SegmentRepository(Protocol):
    """Protocol for user segments and the targeting rules binding them to flags."""

    async def list_segments(self) -> List[Segment]: ...
    async def create_segment(
        self, name: str, criteria: SegmentCriteria, description: str | None = None
    ) -> Segment: ...

    async def get_targeting(self, feature_flag_id: int) -> List[Targeting]: ...
    async def add_targeting(
        self,
        feature_flag_id: int,
        segment_id: int,
        enabled: bool = True,
        rollout_percentage: int = 100,
    ) -> Targeting: ...
