from datetime import datetime
from typing import List, Protocol

from ...domain.analytics import AnalyticsEvent, DailyCount


class AnalyticsRepository(Protocol):
    async def record_event(self, event: AnalyticsEvent) -> None: ...
    async def daily_counts(self, feature_flag_id: int, since: datetime) -> List[DailyCount]: ...
    async def distinct_users(self, feature_flag_id: int, since: datetime) -> int: ...
