"""Staged rollouts.

A rollout plan is a list of (percentage, duration) stages. The scheduler runs
each plan as an ``asyncio.Task`` that applies a stage's percentage, waits for
the stage's duration and moves on. Progress is kept in a ``RolloutState`` that
callers can poll, and a running plan can be cancelled at any point.
"""

import asyncio
from datetime import timedelta
from typing import (
    Any,
    AsyncContextManager,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
)

from ..domain.rollout import RolloutPlan, RolloutStage, RolloutState, RolloutStatus, build_plan
from ..exceptions import DuplicateError, InvalidArgumentError, NotFoundError
from ..logging_config import get_logger
from ..metrics import ROLLOUT_STAGE_PERCENTAGE
from ..ports.clock import Clock, utcnow

logger = get_logger(__name__)

# changed_by recorded in flag history for stage transitions
ROLLOUT_ACTOR = "gradual_rollout_system"

ServiceFactory = Callable[[], AsyncContextManager[Any]]


class RolloutScheduler:
    def __init__(
        self,
        service_factory: ServiceFactory,
        clock: Clock = utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        default_environment: str = "production",
    ):
        """
        Args:
            service_factory: returns an async context manager yielding a
                ``FeatureFlagService`` bound to a fresh database session. Stages
                outlive the request that started the plan, so every transition
                opens its own session.
            clock: current UTC instant.
            sleep: awaited between stages; tests pass a fake.
        """
        self.service_factory = service_factory
        self.clock = clock
        self.sleep = sleep
        self.default_environment = default_environment
        self._states: Dict[Tuple[str, str], RolloutState] = {}
        self._tasks: Dict[Tuple[str, str], asyncio.Task] = {}

    def create_plan(
        self,
        feature_name: str,
        stages: Sequence[RolloutStage | Mapping[str, Any]],
        environment: Optional[str] = None,
    ) -> RolloutPlan:
        parsed: List[RolloutStage] = []
        for i, s in enumerate(stages, start=1):
            if isinstance(s, RolloutStage):
                parsed.append(s)
                continue
            try:
                parsed.append(
                    RolloutStage(
                        stage=int(s.get("stage") or i),
                        percentage=s["percentage"],
                        duration=float(s.get("duration", 0)),
                        criteria=s.get("criteria"),
                    )
                )
            except (KeyError, TypeError, ValueError) as e:
                raise InvalidArgumentError(f"invalid rollout stage {i}: {e}") from e
        return build_plan(
            feature_name, parsed, environment or self.default_environment, self.clock()
        )

    def _is_active(self, key: Tuple[str, str]) -> bool:
        task = self._tasks.get(key)
        return task is not None and not task.done()

    async def start(self, plan: RolloutPlan) -> RolloutState:
        key = (plan.feature_name, plan.environment)
        # fail fast on unknown flags instead of inside the task
        async with self.service_factory() as service:
            await service.get_feature_flag(plan.feature_name, plan.environment)
        if self._is_active(key):
            raise DuplicateError(
                f"A rollout for '{plan.feature_name}' in {plan.environment} is already running"
            )

        state = RolloutState(plan=plan, status=RolloutStatus.RUNNING)
        self._states[key] = state
        self._tasks[key] = asyncio.create_task(
            self._run(state), name=f"rollout:{plan.feature_name}:{plan.environment}"
        )
        logger.info(
            "rollout_started",
            key=plan.feature_name,
            environment=plan.environment,
            stages=len(plan.stages),
            total_duration=plan.total_duration,
        )
        return state

    async def _run(self, state: RolloutState) -> None:
        plan = state.plan
        try:
            for index, stage in enumerate(plan.stages):
                async with self.service_factory() as service:
                    await service.set_rollout_percentage(
                        plan.feature_name, stage.percentage, plan.environment, ROLLOUT_ACTOR
                    )
                plan.current_stage = index
                state.current_stage = index
                state.current_percentage = stage.percentage
                if ROLLOUT_STAGE_PERCENTAGE is not None:
                    ROLLOUT_STAGE_PERCENTAGE.labels(key=plan.feature_name).set(stage.percentage)
                logger.info(
                    "rollout_stage_applied",
                    key=plan.feature_name,
                    environment=plan.environment,
                    stage=stage.stage,
                    percentage=stage.percentage,
                )
                if index == len(plan.stages) - 1:
                    break
                state.next_transition_at = self.clock() + timedelta(seconds=stage.duration)
                await self.sleep(stage.duration)
            state.status = RolloutStatus.COMPLETED
            state.next_transition_at = None
            logger.info("rollout_completed", key=plan.feature_name, environment=plan.environment)
        except asyncio.CancelledError:
            state.status = RolloutStatus.CANCELLED
            state.next_transition_at = None
            logger.info(
                "rollout_cancelled",
                key=plan.feature_name,
                environment=plan.environment,
                stage=state.current_stage,
            )
            raise
        except Exception as e:
            state.status = RolloutStatus.FAILED
            state.next_transition_at = None
            state.error = str(e)
            logger.error(
                "rollout_failed",
                key=plan.feature_name,
                environment=plan.environment,
                stage=state.current_stage,
                error=str(e),
            )

    def status(self, feature_name: str, environment: Optional[str] = None) -> RolloutState:
        key = (feature_name, environment or self.default_environment)
        state = self._states.get(key)
        if state is None:
            raise NotFoundError(f"No rollout recorded for '{feature_name}' in {key[1]}")
        return state

    def list_active(self) -> List[RolloutState]:
        return [self._states[k] for k in self._tasks if self._is_active(k)]

    async def _cancel_task(self, key: Tuple[str, str]) -> bool:
        task = self._tasks.pop(key, None)
        if task is None or task.done():
            return False
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        # a task cancelled before its first step never reaches its own handler
        state = self._states.get(key)
        if state is not None and state.status == RolloutStatus.RUNNING:
            state.status = RolloutStatus.CANCELLED
            state.next_transition_at = None
        return True

    async def cancel(self, feature_name: str, environment: Optional[str] = None) -> RolloutState:
        key = (feature_name, environment or self.default_environment)
        if not self._is_active(key):
            raise NotFoundError(f"No running rollout for '{feature_name}' in {key[1]}")
        await self._cancel_task(key)
        return self._states[key]

    async def cancel_all(self) -> int:
        """Cancel every running rollout; returns how many were stopped."""
        cancelled = 0
        for key in list(self._tasks):
            if await self._cancel_task(key):
                cancelled += 1
        return cancelled

    async def shutdown(self) -> int:
        return await self.cancel_all()
