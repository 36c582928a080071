from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

from ..domain.analytics import AnalyticsEvent, AnalyticsSummary, EventType, summarize
from ..domain.feature import (
    GRADUAL_ROLLOUT_WINDOW,
    Assignment,
    Decision,
    FeatureFlag,
    RolloutStrategy,
    Segment,
    SegmentCriteria,
    Targeting,
    User,
    decide,
)
from ..exceptions import DuplicateError, InvalidArgumentError, NotFoundError, validate_percentage
from ..logging_config import get_logger
from ..metrics import ASSIGNMENTS_CREATED, KILL_SWITCH_ACTIVATIONS, record_evaluation
from ..ports.clock import Clock, utcnow
from ..ports.repositories import (
    AnalyticsRepository,
    AssignmentRepository,
    FeatureFlagRepository,
    SegmentRepository,
)

logger = get_logger(__name__)

NOT_FOUND = "not_found"
UPSTREAM_UNAVAILABLE = "upstream_unavailable"


class FeatureFlagService:
    """Evaluation pipeline plus the admin operations around it.

    ``evaluate`` is deny-by-default: a missing flag or a failed storage read
    becomes a negative decision, never an exception. Only caller mistakes
    (empty user id, invalid percentages) raise.
    """

    def __init__(
        self,
        flags: FeatureFlagRepository,
        segments: SegmentRepository,
        assignments: AssignmentRepository,
        analytics: Optional[AnalyticsRepository] = None,
        *,
        rollouts: Any = None,
        clock: Clock = utcnow,
        enable_analytics: bool = True,
        gradual_window: timedelta = GRADUAL_ROLLOUT_WINDOW,
        default_environment: str = "production",
    ):
        self.flags = flags
        self.segments = segments
        self.assignments = assignments
        self.analytics = analytics
        # staged rollout scheduler; only the kill switch talks to it
        self.rollouts = rollouts
        self.clock = clock
        self.enable_analytics = enable_analytics
        self.gradual_window = gradual_window
        self.default_environment = default_environment

    def _env(self, environment: Optional[str]) -> str:
        return environment or self.default_environment

    async def _require_flag(self, name: str, environment: str) -> FeatureFlag:
        flag = await self.flags.get_by_name(name, environment)
        if flag is None:
            raise NotFoundError(f"Feature flag '{name}' not found in {environment}")
        return flag

    # evaluation

    async def evaluate(self, name: str, user: User, environment: Optional[str] = None) -> Decision:
        env = self._env(environment)
        if not user.id:
            raise InvalidArgumentError("user id must be a non-empty string")

        try:
            flag = await self.flags.get_by_name(name, env)
        except Exception as e:
            logger.error("feature_flag_lookup_failed", key=name, environment=env, error=str(e))
            return self._finish(name, env, user, Decision(False, UPSTREAM_UNAVAILABLE))
        if flag is None:
            return self._finish(name, env, user, Decision(False, NOT_FOUND))

        existing: Optional[Assignment] = None
        targeting: List[Targeting] = []
        segments: List[Segment] = []
        if flag.enabled:
            try:
                existing = await self.assignments.get(user.id, flag.id)
                if existing is None and flag.rollout_strategy == RolloutStrategy.SEGMENT:
                    targeting = await self.segments.get_targeting(flag.id)
                    segments = await self.segments.list_segments()
            except Exception as e:
                logger.error(
                    "feature_flag_inputs_unavailable",
                    key=name,
                    environment=env,
                    user_id=user.id,
                    error=str(e),
                )
                return self._finish(name, env, user, Decision(False, UPSTREAM_UNAVAILABLE))

        decision = decide(
            flag,
            user,
            existing,
            targeting=targeting,
            segments=segments,
            now=self.clock(),
            window=self.gradual_window,
        )

        if flag.enabled and existing is None:
            decision = await self._store_assignment(flag, user, decision)

        await self._record_event(
            flag,
            user.id,
            EventType.ENABLED if decision.assigned else EventType.DISABLED,
            {
                "strategy": flag.rollout_strategy,
                "percentage": flag.rollout_percentage,
                "reason": decision.reason,
            },
        )
        return self._finish(name, env, user, decision)

    async def _store_assignment(self, flag: FeatureFlag, user: User, decision: Decision) -> Decision:
        try:
            stored, created = await self.assignments.create_if_absent(
                user.id, flag.id, decision.assigned, decision.reason
            )
        except Exception as e:
            logger.error(
                "assignment_store_failed", key=flag.name, user_id=user.id, error=str(e)
            )
            return decision
        if created and ASSIGNMENTS_CREATED is not None:
            ASSIGNMENTS_CREATED.labels(key=flag.name, strategy=flag.rollout_strategy).inc()
        # a concurrent writer may have won; its record is the one that sticks
        return stored.as_decision()

    def _finish(self, name: str, env: str, user: User, decision: Decision) -> Decision:
        record_evaluation(name, decision.assigned)
        logger.info(
            "feature_flag_evaluated",
            key=name,
            environment=env,
            user_id=user.id,
            assigned=decision.assigned,
            reason=decision.reason,
        )
        return decision

    async def is_feature_enabled(
        self, name: str, user: User, environment: Optional[str] = None
    ) -> bool:
        decision = await self.evaluate(name, user, environment)
        return decision.assigned

    async def _record_event(
        self,
        flag: FeatureFlag,
        user_id: str,
        event_type: EventType,
        event_data: Optional[Dict[str, Any]] = None,
    ) -> None:
        if not self.enable_analytics or self.analytics is None:
            return
        try:
            await self.analytics.record_event(
                AnalyticsEvent(
                    feature_flag_id=flag.id,
                    user_id=user_id,
                    event_type=event_type,
                    event_data=event_data,
                    timestamp=self.clock(),
                )
            )
        except Exception as e:
            logger.warning(
                "analytics_record_failed",
                key=flag.name,
                user_id=user_id,
                event_type=str(event_type),
                error=str(e),
            )

    async def record_usage(
        self,
        name: str,
        user: User,
        environment: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record that ``user`` exercised the feature behind ``name``."""
        if not user.id:
            raise InvalidArgumentError("user id must be a non-empty string")
        flag = await self._require_flag(name, self._env(environment))
        await self._record_event(flag, user.id, EventType.USED, payload or {})

    # administration

    async def get_feature_flag(self, name: str, environment: Optional[str] = None) -> FeatureFlag:
        return await self._require_flag(name, self._env(environment))

    async def list_feature_flags(self, environment: Optional[str] = None) -> List[FeatureFlag]:
        return await self.flags.list(self._env(environment))

    async def upsert_feature_flag(
        self,
        name: str,
        environment: Optional[str] = None,
        *,
        description: Optional[str] = None,
        enabled: bool = False,
        rollout_percentage: int = 0,
        rollout_strategy: str = RolloutStrategy.PERCENTAGE.value,
        created_by: Optional[str] = None,
    ) -> FeatureFlag:
        if not name:
            raise InvalidArgumentError("feature flag name must be a non-empty string")
        validate_percentage(rollout_percentage)
        env = self._env(environment)
        flag = await self.flags.upsert(
            name,
            env,
            description=description,
            enabled=enabled,
            rollout_percentage=rollout_percentage,
            rollout_strategy=str(rollout_strategy),
            created_by=created_by,
        )
        logger.info(
            "feature_flag_upserted",
            key=name,
            environment=env,
            enabled=flag.enabled,
            rollout_percentage=flag.rollout_percentage,
            rollout_strategy=flag.rollout_strategy,
        )
        return flag

    async def set_rollout_percentage(
        self,
        name: str,
        percentage: int,
        environment: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> FeatureFlag:
        validate_percentage(percentage)
        env = self._env(environment)
        flag = await self.flags.update_rollout_percentage(name, percentage, env, changed_by)
        logger.info(
            "rollout_percentage_updated",
            key=name,
            environment=env,
            rollout_percentage=percentage,
            changed_by=changed_by,
        )
        return flag

    async def set_enabled(
        self,
        name: str,
        enabled: bool,
        environment: Optional[str] = None,
        changed_by: Optional[str] = None,
    ) -> FeatureFlag:
        env = self._env(environment)
        flag = await self.flags.set_enabled(name, enabled, env, changed_by)
        logger.info(
            "feature_flag_toggled", key=name, environment=env, enabled=enabled, changed_by=changed_by
        )
        return flag

    async def list_segments(self) -> List[Segment]:
        return await self.segments.list_segments()

    async def create_segment(
        self,
        name: str,
        criteria: SegmentCriteria | Mapping[str, Any],
        description: Optional[str] = None,
    ) -> Segment:
        if not name:
            raise InvalidArgumentError("segment name must be a non-empty string")
        if not isinstance(criteria, SegmentCriteria):
            try:
                criteria = SegmentCriteria.from_dict(criteria)
            except (TypeError, ValueError) as e:
                raise InvalidArgumentError(f"invalid segment criteria: {e}") from e
        existing = await self.segments.list_segments()
        if any(s.name == name for s in existing):
            raise DuplicateError(f"Segment '{name}' already exists")
        segment = await self.segments.create_segment(name, criteria, description)
        logger.info("segment_created", segment=name, segment_id=segment.id)
        return segment

    async def add_targeting(
        self,
        name: str,
        segment_id: int,
        environment: Optional[str] = None,
        *,
        enabled: bool = True,
        rollout_percentage: int = 100,
    ) -> Targeting:
        validate_percentage(rollout_percentage, "targeting.rollout_percentage")
        flag = await self._require_flag(name, self._env(environment))
        segments = await self.segments.list_segments()
        if not any(s.id == segment_id for s in segments):
            raise NotFoundError(f"Segment {segment_id} not found")
        targeting = await self.segments.add_targeting(
            flag.id, segment_id, enabled=enabled, rollout_percentage=rollout_percentage
        )
        logger.info(
            "targeting_added",
            key=name,
            segment_id=segment_id,
            rollout_percentage=rollout_percentage,
        )
        return targeting

    async def get_feature_analytics(
        self, name: str, environment: Optional[str] = None, days: int = 7
    ) -> AnalyticsSummary:
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise InvalidArgumentError(f"days must be a positive integer, got {days!r}")
        flag = await self._require_flag(name, self._env(environment))
        if self.analytics is None:
            return AnalyticsSummary()
        since = self.clock() - timedelta(days=days)
        rows = await self.analytics.daily_counts(flag.id, since)
        total_users = await self.analytics.distinct_users(flag.id, since)
        return summarize(rows, total_users)

    async def kill_switch(self, changed_by: Optional[str] = "system") -> Dict[str, int]:
        """Disable every flag in every environment.

        Running staged rollouts are cancelled first so none of them can write
        a stage after the switch. Flags stay disabled until re-enabled one by
        one through ``set_enabled``.
        """
        cancelled = 0
        if self.rollouts is not None:
            cancelled = await self.rollouts.cancel_all()
        disabled = await self.flags.disable_all(changed_by)
        if KILL_SWITCH_ACTIVATIONS is not None:
            KILL_SWITCH_ACTIVATIONS.inc()
        logger.warning(
            "kill_switch_activated",
            disabled_flags=disabled,
            cancelled_rollouts=cancelled,
            changed_by=changed_by,
        )
        return {"disabled_flags": disabled, "cancelled_rollouts": cancelled}
