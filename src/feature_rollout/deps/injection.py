"""Dependency injection functions for FastAPI.

This module provides FastAPI Depends() functions for the feature service,
database sessions, the rollout scheduler and the per-request user context.
"""

from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any, AsyncGenerator, AsyncIterator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings
from ..domain.feature import User, as_utc
from ..exceptions import InvalidArgumentError, NotFoundError, UpstreamUnavailableError
from ..logging_config import get_logger
from ..services.feature_service import FeatureFlagService
from ..services.rollout_service import RolloutScheduler
from .providers import get_cache_client, get_rollout_scheduler, get_settings

logger = get_logger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session.

    Import the db module at call time so the session factory installed by
    the composition root (or a test) is respected.
    """
    from .. import db as db_mod

    if db_mod.AsyncDbSessionFactory is None:
        raise UpstreamUnavailableError("database is not configured")
    async with db_mod.AsyncDbSessionFactory() as db_session:
        yield db_session


def _repositories(db_session: AsyncSession, settings: Settings, cache: Any = None):
    from ..infrastructure.repositories import get_repositories

    return get_repositories(db_session, cache=cache, ttl=settings.flag_cache_ttl_seconds)


def build_feature_service(
    db_session: AsyncSession,
    settings: Settings,
    cache: Any = None,
    rollouts: Optional[RolloutScheduler] = None,
) -> FeatureFlagService:
    """Wire a FeatureFlagService to repositories sharing ``db_session``."""
    repos = _repositories(db_session, settings, cache)
    return FeatureFlagService(
        repos["feature_flags"],
        repos["segments"],
        repos["assignments"],
        repos["analytics"],
        rollouts=rollouts,
        enable_analytics=settings.enable_feature_analytics,
        gradual_window=timedelta(seconds=settings.gradual_rollout_window_seconds),
        default_environment=settings.default_environment,
    )


def session_service_factory(sessionmaker: Any, settings: Settings, cache: Any = None):
    """Return a factory of services that each own a fresh session.

    Background work (staged rollouts) outlives the request that started it, so
    it cannot borrow the request's session.
    """

    @asynccontextmanager
    async def _scope() -> AsyncIterator[FeatureFlagService]:
        async with sessionmaker() as db_session:
            yield build_feature_service(db_session, settings, cache)

    return _scope


async def get_feature_service(
    db_session: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    cache: Any = Depends(get_cache_client),
    rollouts: Optional[RolloutScheduler] = Depends(get_rollout_scheduler),
) -> FeatureFlagService:
    return build_feature_service(db_session, settings, cache, rollouts)


async def get_scheduler(
    rollouts: Optional[RolloutScheduler] = Depends(get_rollout_scheduler),
) -> RolloutScheduler:
    if rollouts is None:
        raise UpstreamUnavailableError("staged rollouts are not available before startup")
    return rollouts


async def get_user_context(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
    x_user_segment: Optional[str] = Header(default=None),
    x_user_registration_date: Optional[str] = Header(default=None),
    x_user_email: Optional[str] = Header(default=None),
) -> Optional[User]:
    """Build the evaluation user from ``X-User-*`` headers, if present.

    The user is handed to the service explicitly; nothing is attached to the
    request object.
    """
    if not x_user_id:
        return None
    registration_date = None
    if x_user_registration_date:
        try:
            registration_date = as_utc(x_user_registration_date)
        except ValueError as e:
            raise InvalidArgumentError(
                f"X-User-Registration-Date is not an ISO datetime: {x_user_registration_date!r}"
            ) from e
    return User(
        id=x_user_id,
        role=x_user_role or "user",
        segment=x_user_segment,
        registration_date=registration_date,
        email=x_user_email,
    )


def require_feature(feature_name: str, environment: Optional[str] = None):
    """Dependency that refuses the route with 503 while ``feature_name`` is off.

    With an ``X-User-Id`` header the flag is evaluated for that user, so
    percentage and segment rollouts apply. Without one only the flag's master
    switch counts. A missing flag or any failure to check it denies access.
    """

    async def dependency(
        user: Optional[User] = Depends(get_user_context),
        svc: FeatureFlagService = Depends(get_feature_service),
    ) -> bool:
        try:
            if user is not None:
                decision = await svc.evaluate(feature_name, user, environment)
                enabled, reason = decision.assigned, decision.reason
            else:
                flag = await svc.get_feature_flag(feature_name, environment)
                enabled, reason = flag.enabled, "disabled"
        except NotFoundError:
            enabled, reason = False, "not_found"
        except Exception as e:
            logger.error("feature_gate_check_failed", key=feature_name, error=str(e))
            enabled, reason = False, "upstream_unavailable"

        if reason == "upstream_unavailable":
            raise HTTPException(
                status_code=503,
                detail={
                    "error": "Service temporarily unavailable",
                    "message": "Unable to verify feature availability",
                    "code": "SERVICE_ERROR",
                },
            )
        if not enabled:
            logger.info("feature_gate_denied", key=feature_name, reason=reason)
            raise HTTPException(
                status_code=503,
                detail={
                    "error": "Feature temporarily unavailable",
                    "message": f"The {feature_name} feature is currently disabled",
                    "code": "FEATURE_DISABLED",
                },
            )
        return True

    return dependency
