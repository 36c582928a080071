import asyncio
from typing import Any, Awaitable, Callable, Optional

from ..infrastructure.repositories.caching.feature_flag_caching import FLAG_KEY_PREFIX
from ..logging_config import get_logger
from ..ports.cache import CacheClient

logger = get_logger(__name__)


class CacheRefresher:
    """Periodically drops every cached flag snapshot.

    Per-flag invalidation on writes covers changes made through this process;
    the sweep bounds staleness for changes made by other nodes or directly in
    the database.
    """

    def __init__(
        self,
        cache: CacheClient,
        interval_seconds: float = 60,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.cache = cache
        self.interval_seconds = interval_seconds
        self.sleep = sleep
        self._task: Optional[asyncio.Task] = None

    async def refresh(self) -> int:
        removed = await self.cache.delete_prefix(FLAG_KEY_PREFIX)
        logger.debug("flag_cache_refreshed", removed=removed)
        return removed

    async def _loop(self) -> None:
        while True:
            await self.sleep(self.interval_seconds)
            try:
                await self.refresh()
            except Exception as e:
                logger.exception("flag_cache_refresh_failed", error=str(e))

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self._loop(), name="flag-cache-refresher")
        logger.info("flag_cache_refresher_started", interval_seconds=self.interval_seconds)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("flag_cache_refresher_stopped")
