import asyncio
from dataclasses import replace
from unittest.mock import AsyncMock

import pytest

from feature_rollout.domain.feature import Decision, FeatureFlag, User, decide
from feature_rollout.infrastructure.db import models
from feature_rollout.infrastructure.repositories import get_repositories
from feature_rollout.infrastructure.repositories.caching import CachingFeatureFlagRepository
from feature_rollout.services.cache_refresher import CacheRefresher


async def _drop_flag_row(session_factory, name):
    async with session_factory() as s2:
        await s2.execute(
            models.FeatureFlagModel.__table__.delete().where(models.FeatureFlagModel.name == name)
        )
        await s2.commit()


@pytest.mark.asyncio
async def test_flag_cache_hit_and_invalidate(session, session_factory, cache):
    repos = get_repositories(session, cache=cache, ttl=60)
    flags = repos["feature_flags"]
    await flags.upsert("checkout", "production", enabled=True, rollout_percentage=30)

    # first read populates cache
    f1 = await flags.get_by_name("checkout", "production")
    assert f1 is not None
    assert await cache.get("flag:checkout:production") is not None

    # directly remove from DB to simulate staleness, but cache should still return
    await _drop_flag_row(session_factory, "checkout")
    cached = await flags.get_by_name("checkout", "production")
    assert cached is not None
    assert cached.rollout_percentage == 30
    assert cached.created_at == f1.created_at


@pytest.mark.asyncio
async def test_flag_cache_expires_with_clock(session, session_factory, cache, clock):
    flags = get_repositories(session, cache=cache, ttl=60)["feature_flags"]
    await flags.upsert("checkout", "production", enabled=True)
    await flags.get_by_name("checkout", "production")
    await _drop_flag_row(session_factory, "checkout")

    clock.advance(seconds=59)
    assert await flags.get_by_name("checkout", "production") is not None

    clock.advance(seconds=1)
    assert await flags.get_by_name("checkout", "production") is None


@pytest.mark.asyncio
async def test_writes_invalidate_every_environment(session, cache):
    flags = get_repositories(session, cache=cache)["feature_flags"]
    await flags.upsert("checkout", "production", enabled=True, rollout_percentage=10)
    await flags.upsert("checkout", "staging", enabled=True, rollout_percentage=10)
    await flags.upsert("search", "production", enabled=True)
    for env in ("production", "staging"):
        await flags.get_by_name("checkout", env)
    await flags.get_by_name("search", "production")

    updated = await flags.update_rollout_percentage("checkout", 80, "production", "ops")

    assert updated.rollout_percentage == 80
    assert await cache.get("flag:checkout:production") is None
    assert await cache.get("flag:checkout:staging") is None
    assert await cache.get("flag:search:production") is not None
    assert (await flags.get_by_name("checkout", "production")).rollout_percentage == 80


@pytest.mark.asyncio
async def test_disable_all_clears_whole_flag_cache(session, cache):
    flags = get_repositories(session, cache=cache)["feature_flags"]
    await flags.upsert("checkout", "production", enabled=True)
    await flags.upsert("search", "staging", enabled=True)
    await flags.get_by_name("checkout", "production")
    await flags.get_by_name("search", "staging")
    await cache.set("session:abc", "keep")

    assert await flags.disable_all("oncall") == 2

    assert await cache.get("flag:checkout:production") is None
    assert await cache.get("flag:search:staging") is None
    assert await cache.get("session:abc") == "keep"
    assert (await flags.get_by_name("checkout", "production")).enabled is False


@pytest.mark.asyncio
async def test_cache_failures_fall_through_to_storage():
    inner = AsyncMock()
    inner.get_by_name = AsyncMock(return_value=FeatureFlag(name="checkout"))
    broken = AsyncMock()
    broken.get = AsyncMock(side_effect=ConnectionError("redis down"))
    broken.set = AsyncMock(side_effect=ConnectionError("redis down"))

    repo = CachingFeatureFlagRepository(inner, broken, ttl=60)

    assert await repo.get_by_name("checkout", "production") == FeatureFlag(name="checkout")


@pytest.mark.asyncio
async def test_refresher_sweeps_flag_entries(cache):
    await cache.set("flag:checkout:production", {"name": "checkout"}, ex=300)
    await cache.set("other:key", "value", ex=300)
    refresher = CacheRefresher(cache, interval_seconds=60)

    assert await refresher.refresh() == 1
    assert await cache.get("flag:checkout:production") is None
    assert await cache.get("other:key") == "value"


@pytest.mark.asyncio
async def test_refresher_loop_start_and_stop(cache):
    sweeps = []

    async def _sleep(seconds):
        sweeps.append(seconds)
        if len(sweeps) > 2:
            await asyncio.Event().wait()

    refresher = CacheRefresher(cache, interval_seconds=5, sleep=_sleep)
    refresher.start()
    for _ in range(20):
        await asyncio.sleep(0)
    assert refresher.running
    assert sweeps == [5, 5, 5]

    await refresher.stop()
    assert not refresher.running


class _HeldReadFlags:
    """Flag store whose first read is held open until ``release`` is set."""

    def __init__(self, flag: FeatureFlag):
        self.flag = flag
        self.reading = asyncio.Event()
        self.release = asyncio.Event()

    async def get_by_name(self, name, environment):
        snapshot = self.flag
        self.reading.set()
        await self.release.wait()
        return snapshot

    async def disable_all(self, changed_by=None):
        self.flag = replace(self.flag, enabled=False)
        return 1

    async def set_enabled(self, name, enabled, environment, changed_by=None):
        self.flag = replace(self.flag, enabled=enabled)
        return self.flag


@pytest.mark.asyncio
async def test_read_in_flight_during_kill_switch_is_not_cached(cache):
    inner = _HeldReadFlags(FeatureFlag(id=1, name="checkout", enabled=True, rollout_percentage=100))
    repo = CachingFeatureFlagRepository(inner, cache, ttl=300)

    read = asyncio.create_task(repo.get_by_name("checkout", "production"))
    await inner.reading.wait()
    assert await repo.disable_all("ops") == 1
    inner.release.set()
    await read

    assert await cache.get("flag:checkout:production") is None
    flag = await repo.get_by_name("checkout", "production")
    assert decide(flag, User(id="bob")) == Decision(False, "disabled")


@pytest.mark.asyncio
async def test_read_in_flight_during_toggle_is_not_cached(cache):
    inner = _HeldReadFlags(FeatureFlag(id=1, name="checkout", enabled=True, rollout_percentage=100))
    # the toggle goes through a second repository sharing the cache, as another request would
    reader = CachingFeatureFlagRepository(inner, cache, ttl=300)
    writer = CachingFeatureFlagRepository(inner, cache, ttl=300)

    read = asyncio.create_task(reader.get_by_name("checkout", "production"))
    await inner.reading.wait()
    await writer.set_enabled("checkout", False, "production", "ops")
    inner.release.set()
    await read

    assert await cache.get("flag:checkout:production") is None
    assert (await reader.get_by_name("checkout", "production")).enabled is False


@pytest.mark.asyncio
async def test_write_overtaken_by_invalidation_is_dropped(cache):
    inner = AsyncMock()
    inner.get_by_name = AsyncMock(return_value=FeatureFlag(name="checkout", enabled=True))
    repo = CachingFeatureFlagRepository(inner, cache, ttl=300)
    other = CachingFeatureFlagRepository(inner, cache, ttl=300)

    original_set = cache.set

    async def _kill_then_set(key, value, ex=None):
        if key.startswith("flag:"):
            # the kill switch completes after the pre-write check, before the write lands
            cache.set = original_set
            await other.invalidate_all()
        await original_set(key, value, ex=ex)

    cache.set = _kill_then_set

    await repo.get_by_name("checkout", "production")

    assert await cache.get("flag:checkout:production") is None
