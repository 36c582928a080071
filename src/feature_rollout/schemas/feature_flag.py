from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..domain.feature import FeatureFlag, Segment, Targeting


class UserContext(BaseModel):
    """User fields the engine evaluates against."""

    id: str = Field(min_length=1)
    role: str = "user"
    segment: Optional[str] = None
    registration_date: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    email: Optional[str] = None


class FeatureFlagCheckRequest(BaseModel):
    """Request model for checking a flag for an explicit user."""

    user: UserContext
    environment: Optional[str] = None


class FeatureFlagCheckResponse(BaseModel):
    feature: str
    environment: str
    enabled: bool
    reason: str
    user_id: str


class FeatureUsageRequest(BaseModel):
    """Request model for recording feature usage."""

    user: Optional[UserContext] = None
    environment: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class FeatureFlagUpsertRequest(BaseModel):
    """Request model for creating or replacing a feature flag."""

    name: str = Field(min_length=1)
    description: Optional[str] = None
    enabled: bool = False
    rollout_percentage: int = Field(default=0, ge=0, le=100)
    rollout_strategy: str = "percentage"
    environment: Optional[str] = None


class RolloutPercentageRequest(BaseModel):
    percentage: int = Field(ge=0, le=100)
    environment: Optional[str] = None


class ToggleRequest(BaseModel):
    enabled: bool
    environment: Optional[str] = None


class FeatureFlagResponse(BaseModel):
    """Response model for a feature flag."""

    id: Optional[int] = None
    name: str
    description: Optional[str] = None
    enabled: bool
    rollout_percentage: int
    rollout_strategy: str
    environment: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None


class FeatureFlagListResponse(BaseModel):
    """Response model for listing feature flags."""

    flags: List[FeatureFlagResponse]
    total: int


class RolloutStageRequest(BaseModel):
    stage: Optional[int] = None
    percentage: int = Field(ge=0, le=100)
    duration: float = Field(default=0, ge=0)  # seconds
    criteria: Optional[str] = None


class StagedRolloutRequest(BaseModel):
    """Request model for starting a staged rollout."""

    stages: List[RolloutStageRequest] = Field(min_length=1)
    environment: Optional[str] = None


class SegmentCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    criteria: Dict[str, Any] = Field(default_factory=dict)


class SegmentResponse(BaseModel):
    id: Optional[int] = None
    name: str
    description: Optional[str] = None
    criteria: Dict[str, Any]
    created_at: Optional[datetime] = None


class TargetingCreateRequest(BaseModel):
    segment_id: int
    enabled: bool = True
    rollout_percentage: int = Field(default=100, ge=0, le=100)
    environment: Optional[str] = None


class TargetingResponse(BaseModel):
    id: Optional[int] = None
    feature_flag_id: Optional[int] = None
    segment_id: int
    enabled: bool
    rollout_percentage: int


class KillSwitchRequest(BaseModel):
    changed_by: Optional[str] = None


class FeatureFlagActionResponse(BaseModel):
    """Generic response for feature flag actions."""

    status: str


def flag_to_response(flag: FeatureFlag) -> FeatureFlagResponse:
    return FeatureFlagResponse(
        id=flag.id,
        name=flag.name,
        description=flag.description,
        enabled=flag.enabled,
        rollout_percentage=flag.rollout_percentage,
        rollout_strategy=flag.rollout_strategy,
        environment=flag.environment,
        created_at=flag.created_at,
        updated_at=flag.updated_at,
        created_by=flag.created_by,
    )


def segment_to_response(segment: Segment) -> SegmentResponse:
    return SegmentResponse(
        id=segment.id,
        name=segment.name,
        description=segment.description,
        criteria=segment.criteria.to_dict(),
        created_at=segment.created_at,
    )


def targeting_to_response(targeting: Targeting) -> TargetingResponse:
    return TargetingResponse(
        id=targeting.id,
        feature_flag_id=targeting.feature_flag_id,
        segment_id=targeting.segment_id,
        enabled=targeting.enabled,
        rollout_percentage=targeting.rollout_percentage,
    )
