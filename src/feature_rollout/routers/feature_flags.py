from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..config import Settings
from ..deps import get_feature_service, get_scheduler, get_settings, get_user_context
from ..domain.feature import User
from ..exceptions import InvalidArgumentError
from ..logging_config import get_logger
from ..schemas.feature_flag import (
    FeatureFlagActionResponse,
    FeatureFlagCheckRequest,
    FeatureFlagCheckResponse,
    FeatureFlagListResponse,
    FeatureFlagResponse,
    FeatureFlagUpsertRequest,
    FeatureUsageRequest,
    KillSwitchRequest,
    RolloutPercentageRequest,
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
from ..services.feature_service import FeatureFlagService
from ..services.rollout_service import RolloutScheduler

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/features", tags=["features"])


def _to_user(ctx: UserContext) -> User:
    return User(
        id=ctx.id,
        role=ctx.role,
        segment=ctx.segment,
        registration_date=ctx.registration_date,
        metadata=dict(ctx.metadata),
        email=ctx.email,
    )


def _actor(user: Optional[User]) -> Optional[str]:
    return user.id if user is not None else None


@router.get("", response_model=FeatureFlagListResponse)
async def list_features(
    environment: Optional[str] = None,
    svc: FeatureFlagService = Depends(get_feature_service),
):
    """List feature flags of one environment."""
    flags = await svc.list_feature_flags(environment)
    logger.debug("feature_flags_listed", extra={"environment": environment, "count": len(flags)})
    return FeatureFlagListResponse(flags=[flag_to_response(f) for f in flags], total=len(flags))


@router.post("", response_model=FeatureFlagResponse)
async def upsert_feature(
    req: FeatureFlagUpsertRequest,
    actor: Optional[User] = Depends(get_user_context),
    svc: FeatureFlagService = Depends(get_feature_service),
):
    """Create a feature flag, or replace the definition of an existing one."""
    logger.info("upserting_feature_flag", extra={"key": req.name, "environment": req.environment})
    flag = await svc.upsert_feature_flag(
        req.name,
        req.environment,
        description=req.description,
        enabled=req.enabled,
        rollout_percentage=req.rollout_percentage,
        rollout_strategy=req.rollout_strategy,
        created_by=_actor(actor),
    )
    return flag_to_response(flag)


@router.get("/segments", response_model=list[SegmentResponse])
async def list_segments(svc: FeatureFlagService = Depends(get_feature_service)):
    segments = await svc.list_segments()
    return [segment_to_response(s) for s in segments]


@router.post("/segments", response_model=SegmentResponse)
async def create_segment(
    req: SegmentCreateRequest,
    svc: FeatureFlagService = Depends(get_feature_service),
):
    segment = await svc.create_segment(req.name, req.criteria, req.description)
    return segment_to_response(segment)


@router.post("/kill-switch")
async def kill_switch(
    req: Optional[KillSwitchRequest] = None,
    actor: Optional[User] = Depends(get_user_context),
    svc: FeatureFlagService = Depends(get_feature_service),
):
    """Disable every feature flag in every environment."""
    changed_by = (req.changed_by if req else None) or _actor(actor) or "system"
    logger.warning("kill_switch_requested", extra={"changed_by": changed_by})
    return await svc.kill_switch(changed_by)


@router.get("/rollouts")
async def list_active_rollouts(scheduler: RolloutScheduler = Depends(get_scheduler)):
    return [s.to_dict() for s in scheduler.list_active()]


@router.get("/{name}", response_model=FeatureFlagResponse)
async def get_feature(
    name: str,
    environment: Optional[str] = None,
    svc: FeatureFlagService = Depends(get_feature_service),
):
    return flag_to_response(await svc.get_feature_flag(name, environment))


@router.get("/{name}/check", response_model=FeatureFlagCheckResponse)
async def check_feature(
    name: str,
    environment: Optional[str] = None,
    user: Optional[User] = Depends(get_user_context),
    svc: FeatureFlagService = Depends(get_feature_service),
    settings: Settings = Depends(get_settings),
):
    """Check a flag for the user described by the ``X-User-*`` headers."""
    if user is None:
        raise InvalidArgumentError("X-User-Id header is required")
    decision = await svc.evaluate(name, user, environment)
    return FeatureFlagCheckResponse(
        feature=name,
        environment=environment or settings.default_environment,
        enabled=decision.assigned,
        reason=decision.reason,
        user_id=user.id,
    )


@router.post("/{name}/check", response_model=FeatureFlagCheckResponse)
async def check_feature_for_user(
    name: str,
    req: FeatureFlagCheckRequest,
    svc: FeatureFlagService = Depends(get_feature_service),
    settings: Settings = Depends(get_settings),
):
    """Check a flag for the user given in the request body."""
    user = _to_user(req.user)
    decision = await svc.evaluate(name, user, req.environment)
    return FeatureFlagCheckResponse(
        feature=name,
        environment=req.environment or settings.default_environment,
        enabled=decision.assigned,
        reason=decision.reason,
        user_id=user.id,
    )


@router.post("/{name}/usage", response_model=FeatureFlagActionResponse)
async def record_usage(
    name: str,
    req: FeatureUsageRequest,
    header_user: Optional[User] = Depends(get_user_context),
    svc: FeatureFlagService = Depends(get_feature_service),
):
    user = _to_user(req.user) if req.user is not None else header_user
    if user is None:
        raise InvalidArgumentError("a user is required, in the body or the X-User-Id header")
    await svc.record_usage(name, user, req.environment, req.data)
    return FeatureFlagActionResponse(status="recorded")


@router.put("/{name}/rollout", response_model=FeatureFlagResponse)
async def set_rollout_percentage(
    name: str,
    req: RolloutPercentageRequest,
    actor: Optional[User] = Depends(get_user_context),
    svc: FeatureFlagService = Depends(get_feature_service),
):
    logger.info(
        "updating_rollout_percentage", extra={"key": name, "percentage": req.percentage}
    )
    flag = await svc.set_rollout_percentage(name, req.percentage, req.environment, _actor(actor))
    return flag_to_response(flag)


@router.put("/{name}/toggle", response_model=FeatureFlagResponse)
async def toggle_feature(
    name: str,
    req: ToggleRequest,
    actor: Optional[User] = Depends(get_user_context),
    svc: FeatureFlagService = Depends(get_feature_service),
):
    logger.info("toggling_feature_flag", extra={"key": name, "enabled": req.enabled})
    flag = await svc.set_enabled(name, req.enabled, req.environment, _actor(actor))
    return flag_to_response(flag)


@router.post("/{name}/rollouts")
async def start_staged_rollout(
    name: str,
    req: StagedRolloutRequest,
    scheduler: RolloutScheduler = Depends(get_scheduler),
):
    """Start a staged rollout; stages are applied in order by a background task."""
    plan = scheduler.create_plan(name, [s.model_dump() for s in req.stages], req.environment)
    state = await scheduler.start(plan)
    return state.to_dict()


@router.get("/{name}/rollouts")
async def staged_rollout_status(
    name: str,
    environment: Optional[str] = None,
    scheduler: RolloutScheduler = Depends(get_scheduler),
):
    return scheduler.status(name, environment).to_dict()


@router.delete("/{name}/rollouts")
async def cancel_staged_rollout(
    name: str,
    environment: Optional[str] = None,
    scheduler: RolloutScheduler = Depends(get_scheduler),
):
    state = await scheduler.cancel(name, environment)
    return state.to_dict()


@router.get("/{name}/analytics")
async def feature_analytics(
    name: str,
    environment: Optional[str] = None,
    days: Optional[int] = Query(default=None, ge=1, le=365),
    svc: FeatureFlagService = Depends(get_feature_service),
    settings: Settings = Depends(get_settings),
):
    summary = await svc.get_feature_analytics(
        name, environment, days or settings.analytics_default_days
    )
    return summary.to_dict()


@router.post("/{name}/targeting", response_model=TargetingResponse)
async def add_targeting(
    name: str,
    req: TargetingCreateRequest,
    svc: FeatureFlagService = Depends(get_feature_service),
):
    targeting = await svc.add_targeting(
        name,
        req.segment_id,
        req.environment,
        enabled=req.enabled,
        rollout_percentage=req.rollout_percentage,
    )
    return targeting_to_response(targeting)
