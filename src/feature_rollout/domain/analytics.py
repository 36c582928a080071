"""Analytics events and their daily roll-up."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Dict, Iterable, Optional


class EventType(StrEnum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    USED = "used"


@dataclass(slots=True)
class AnalyticsEvent:
    feature_flag_id: int
    user_id: str
    event_type: EventType
    event_data: Optional[Dict[str, Any]] = None
    timestamp: Optional[datetime] = None


@dataclass(slots=True)
class DailyCount:
    date: str  # ISO date
    event_type: str
    count: int


@dataclass
class AnalyticsSummary:
    total_users: int = 0
    enabled_count: int = 0
    disabled_count: int = 0
    usage_count: int = 0
    daily_breakdown: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_users": self.total_users,
            "enabled_count": self.enabled_count,
            "disabled_count": self.disabled_count,
            "usage_count": self.usage_count,
            "daily_breakdown": self.daily_breakdown,
        }


def summarize(rows: Iterable[DailyCount], total_users: int) -> AnalyticsSummary:
    summary = AnalyticsSummary(total_users=total_users)
    for row in rows:
        day = summary.daily_breakdown.setdefault(
            row.date, {e.value: 0 for e in EventType}
        )
        day[row.event_type] = day.get(row.event_type, 0) + row.count
        if row.event_type == EventType.ENABLED:
            summary.enabled_count += row.count
        elif row.event_type == EventType.DISABLED:
            summary.disabled_count += row.count
        elif row.event_type == EventType.USED:
            summary.usage_count += row.count
    return summary
