"""Ports package - defines interfaces for external dependencies.

Exports repository protocols and the cache/clock seams for dependency inversion.
"""

from .cache import CacheClient
from .clock import Clock, utcnow
from .repositories import (
    AnalyticsRepository,
    AssignmentRepository,
    FeatureFlagRepository,
    SegmentRepository,
)

__all__ = [
    # Repository protocols
    "FeatureFlagRepository",
    "SegmentRepository",
    "AssignmentRepository",
    "AnalyticsRepository",
    "CacheClient",
    "Clock",
    "utcnow",
]
