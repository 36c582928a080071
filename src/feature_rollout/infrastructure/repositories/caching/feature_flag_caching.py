"""Caching decorator for feature flag repository."""

import uuid
from typing import List, Optional

from ....domain.feature import FeatureFlag
from ....logging_config import get_logger
from ....ports.cache import CacheClient
from .base import deserialize_flag, flag_cache_key, serialize_flag

logger = get_logger(__name__)

FLAG_KEY_PREFIX = "flag:"
# outside FLAG_KEY_PREFIX so sweeps and invalidations never remove it
FLAG_GENERATION_KEY = "flag_generation"


class CachingFeatureFlagRepository:
    """Cache-aside wrapper for feature flag repository.

    Keys:
      flag:{name}:{environment}
      flag_generation            token replaced on every invalidation

    Only single-flag lookups are cached. Every write drops the entries for the
    written flag in all environments; ``disable_all`` drops every flag entry.
    Cache failures are logged and the call falls through to storage.

    A lookup that was already reading storage when an invalidation ran must
    not put its snapshot back. Lookups note the generation token before the
    storage read and only keep their cache entry while the token is unchanged.
    The token lives in the cache itself, so it is shared by every repository
    instance (and every node, with Redis).
    """

    def __init__(self, inner, cache: Optional[CacheClient], ttl: int = 300):
        self.inner = inner
        self.cache = cache
        self.ttl = ttl

    async def _generation(self) -> Optional[str]:
        """Current generation token; None when it cannot be read."""
        try:
            token = await self.cache.get(FLAG_GENERATION_KEY)
        except Exception as e:
            logger.debug("flag_cache_generation_failed", error=str(e))
            return None
        return str(token) if token is not None else ""

    async def _bump_generation(self) -> None:
        try:
            await self.cache.set(FLAG_GENERATION_KEY, uuid.uuid4().hex)
        except Exception as e:
            logger.debug("flag_cache_generation_bump_failed", error=str(e))

    async def invalidate(self, name: str) -> None:
        if self.cache is None:
            return
        await self._bump_generation()
        try:
            await self.cache.delete_prefix(f"{FLAG_KEY_PREFIX}{name}:")
        except Exception as e:
            logger.debug("flag_cache_invalidate_failed", name=name, error=str(e))

    async def invalidate_all(self) -> int:
        if self.cache is None:
            return 0
        await self._bump_generation()
        try:
            return await self.cache.delete_prefix(FLAG_KEY_PREFIX)
        except Exception as e:
            logger.debug("flag_cache_invalidate_all_failed", error=str(e))
            return 0

    async def _store(self, key: str, flag: FeatureFlag, generation: Optional[str]) -> None:
        if generation is None or await self._generation() != generation:
            return
        try:
            await self.cache.set(key, serialize_flag(flag), ex=self.ttl)
        except Exception as e:
            logger.debug("flag_cache_set_failed", key=key, error=str(e))
            return
        # an invalidation may have landed between the check and the write
        if await self._generation() != generation:
            logger.debug("flag_cache_write_superseded", key=key)
            try:
                await self.cache.delete(key)
            except Exception as e:
                logger.debug("flag_cache_delete_failed", key=key, error=str(e))

    async def get_by_name(self, name: str, environment: str) -> Optional[FeatureFlag]:
        key = flag_cache_key(name, environment)
        generation: Optional[str] = None
        if self.cache is not None:
            try:
                cached = deserialize_flag(await self.cache.get(key))
                if cached is not None:
                    return cached
            except Exception as e:
                logger.debug("flag_cache_get_failed", key=key, error=str(e))
            generation = await self._generation()

        flag = await self.inner.get_by_name(name, environment)

        if flag is not None and self.cache is not None:
            await self._store(key, flag, generation)
        return flag

    async def list(self, environment: str) -> List[FeatureFlag]:
        return await self.inner.list(environment)

    async def upsert(self, name: str, environment: str, **fields) -> FeatureFlag:
        result = await self.inner.upsert(name, environment, **fields)
        await self.invalidate(name)
        return result

    async def update_rollout_percentage(
        self, name: str, percentage: int, environment: str, changed_by: str | None = None
    ) -> FeatureFlag:
        result = await self.inner.update_rollout_percentage(
            name, percentage, environment, changed_by
        )
        await self.invalidate(name)
        return result

    async def set_enabled(
        self, name: str, enabled: bool, environment: str, changed_by: str | None = None
    ) -> FeatureFlag:
        result = await self.inner.set_enabled(name, enabled, environment, changed_by)
        await self.invalidate(name)
        return result

    async def disable_all(self, changed_by: str | None = None) -> int:
        count = await self.inner.disable_all(changed_by)
        await self.invalidate_all()
        return count
