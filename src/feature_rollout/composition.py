from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from fastapi import FastAPI

from . import db as db_mod
from .config import Settings
from .logging_config import get_logger
from .setup_db import create_all


@dataclass
class WireResult:
    app: Any
    engine: Any
    sessionmaker: Any
    cache: Any
    scheduler: Any
    refresher: Any
    teardown: Any


logger = get_logger(__name__)


async def wire_app(app: FastAPI, settings: Settings | None = None) -> WireResult:
    """Run the side-effectful startup wiring.

    Picks the cache client, builds the DB engine and sessionmaker using the
    public factories in `db`, ensures tables exist, then starts the flag cache
    refresher and the staged rollout scheduler. Clients are registered on
    `app.state` and on the `deps.providers` module.

    IMPORTANT: This function creates the DB engine, so it MUST NOT be called
    at module import time. Tests rely on setting DATABASE_URL before any
    engines are created.
    """
    # instantiate Settings at runtime (avoid module-level side-effects)
    if settings is None:
        settings = Settings()

    from .infrastructure.cache.redis_client import AioredisClient, InMemoryCache

    cache_client: Any = InMemoryCache()
    if settings.redis_url:
        cache_client = AioredisClient(settings.redis_url)
        logger.info("initialized redis cache client", redis_url=settings.redis_url)
    else:
        logger.info("initialized in-memory cache client")

    # Build engine and session factory from settings and register them on the db module
    db_engine = db_mod.create_engine(settings)
    sessionmaker = db_mod.create_sessionmaker(db_engine)

    # create tables using the engine we just created
    await create_all(engine=db_engine)

    from .deps import providers as _providers
    from .deps.injection import session_service_factory
    from .services.cache_refresher import CacheRefresher
    from .services.rollout_service import RolloutScheduler

    scheduler = RolloutScheduler(
        session_service_factory(sessionmaker, settings, cache_client),
        default_environment=settings.default_environment,
    )
    refresher = CacheRefresher(cache_client, settings.cache_refresh_interval_seconds)
    refresher.start()

    app.state.cache_client = cache_client
    app.state.rollout_scheduler = scheduler
    _providers._settings = settings
    _providers._app_cache_client = cache_client
    _providers._app_rollout_scheduler = scheduler

    async def _teardown():
        await refresher.stop()
        cancelled = await scheduler.shutdown()
        if cancelled:
            logger.info("staged_rollouts_cancelled_on_shutdown", cancelled=cancelled)
        close = getattr(cache_client, "close", None)
        if close is not None:
            try:
                await close()
            except Exception as e:
                logger.debug("cache_client_close_failed", error=str(e))
        try:
            await db_engine.dispose()
        except Exception as e:
            logger.debug("engine_dispose_failed", error=str(e))
        _providers._app_rollout_scheduler = None

    return WireResult(
        app=app,
        engine=db_engine,
        sessionmaker=sessionmaker,
        cache=cache_client,
        scheduler=scheduler,
        refresher=refresher,
        teardown=_teardown,
    )
