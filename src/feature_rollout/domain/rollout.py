"""Staged rollout plans."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, Dict, List, Optional, Sequence

from ..exceptions import InvalidArgumentError, validate_percentage


class RolloutStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class RolloutStage:
    stage: int
    percentage: int
    duration: float  # seconds
    criteria: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


@dataclass
class RolloutPlan:
    feature_name: str
    environment: str
    stages: List[RolloutStage]
    current_stage: int = 0
    total_duration: float = 0.0
    created_at: Optional[datetime] = None

    @property
    def estimated_completion(self) -> Optional[datetime]:
        if self.created_at is None:
            return None
        return self.created_at + timedelta(seconds=self.total_duration)


def build_plan(
    feature_name: str,
    stages: Sequence[RolloutStage],
    environment: str,
    now: datetime,
) -> RolloutPlan:
    """Validate ``stages`` and lay them out back to back starting at ``now``."""
    if not stages:
        raise InvalidArgumentError("a rollout plan needs at least one stage")
    laid_out: List[RolloutStage] = []
    cursor = now
    for s in stages:
        validate_percentage(s.percentage, "stage.percentage")
        if s.duration < 0:
            raise InvalidArgumentError(f"stage {s.stage} has a negative duration")
        end = cursor + timedelta(seconds=s.duration)
        laid_out.append(
            RolloutStage(
                stage=s.stage,
                percentage=s.percentage,
                duration=s.duration,
                criteria=s.criteria,
                start_time=cursor,
                end_time=end,
            )
        )
        cursor = end
    return RolloutPlan(
        feature_name=feature_name,
        environment=environment,
        stages=laid_out,
        current_stage=0,
        total_duration=sum(s.duration for s in laid_out),
        created_at=now,
    )


@dataclass
class RolloutState:
    """Observable progress of a running plan."""

    plan: RolloutPlan
    status: RolloutStatus = RolloutStatus.PENDING
    current_stage: int = 0
    current_percentage: Optional[int] = None
    next_transition_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "feature": self.plan.feature_name,
            "environment": self.plan.environment,
            "status": str(self.status),
            "current_stage": self.current_stage,
            "stages": len(self.plan.stages),
            "current_percentage": self.current_percentage,
            "next_transition_at": (
                self.next_transition_at.isoformat() if self.next_transition_at else None
            ),
            "total_duration": self.plan.total_duration,
            "estimated_completion": (
                self.plan.estimated_completion.isoformat()
                if self.plan.estimated_completion
                else None
            ),
            "error": self.error,
        }
