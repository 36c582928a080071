"""Repository protocols for data access layer abstraction."""

from .analytics import AnalyticsRepository
from .assignment import AssignmentRepository
from .feature_flag import FeatureFlagRepository
from .segment import SegmentRepository

__all__ = [
    "FeatureFlagRepository",
    "SegmentRepository",
    "AssignmentRepository",
    "AnalyticsRepository",
]
