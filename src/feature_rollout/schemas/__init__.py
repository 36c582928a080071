"""Schema exports for API request/response models."""

from .feature_flag import (
    FeatureFlagActionResponse,
    FeatureFlagCheckRequest,
    FeatureFlagCheckResponse,
    FeatureFlagListResponse,
    FeatureFlagResponse,
    FeatureFlagUpsertRequest,
    FeatureUsageRequest,
    KillSwitchRequest,
    RolloutPercentageRequest,
    RolloutStageRequest,
    SegmentCreateRequest,
    SegmentResponse,
    StagedRolloutRequest,
    TargetingCreateRequest,
    TargetingResponse,
    ToggleRequest,
    UserContext,
    flag_to_response,
    segment_to_response,
    targeting_to_response,
)

__all__ = [
    "UserContext",
    "FeatureFlagCheckRequest",
    "FeatureFlagCheckResponse",
    "FeatureUsageRequest",
    "FeatureFlagUpsertRequest",
    "RolloutPercentageRequest",
    "ToggleRequest",
    "FeatureFlagResponse",
    "FeatureFlagListResponse",
    "RolloutStageRequest",
    "StagedRolloutRequest",
    "SegmentCreateRequest",
    "SegmentResponse",
    "TargetingCreateRequest",
    "TargetingResponse",
    "KillSwitchRequest",
    "FeatureFlagActionResponse",
    "flag_to_response",
    "segment_to_response",
    "targeting_to_response",
]
