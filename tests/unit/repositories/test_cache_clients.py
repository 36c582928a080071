from unittest.mock import AsyncMock

import pytest

from feature_rollout.infrastructure.cache.redis_client import AioredisClient, InMemoryCache


@pytest.mark.asyncio
async def test_in_memory_cache_ttl_follows_clock(cache, clock):
    await cache.set("flag:a:production", {"name": "a"}, ex=10)
    await cache.set("flag:b:production", {"name": "b"})

    clock.advance(seconds=9)
    assert await cache.get("flag:a:production") == {"name": "a"}

    clock.advance(seconds=1)
    assert await cache.get("flag:a:production") is None
    assert "flag:a:production" not in cache.store
    assert await cache.get("flag:b:production") == {"name": "b"}


@pytest.mark.asyncio
async def test_in_memory_delete_prefix(cache):
    for key in ("flag:a:production", "flag:a:staging", "flag:ab:production"):
        await cache.set(key, 1)

    assert await cache.delete_prefix("flag:a:") == 2
    assert await cache.get("flag:ab:production") == 1

    await cache.delete("flag:ab:production")
    assert cache.store == {}


@pytest.fixture
def redis_client():
    client = AioredisClient("redis://localhost:6379/0")
    client.client = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_redis_client_json_round_trip(redis_client):
    redis_client.client.get = AsyncMock(return_value=b'{"name": "checkout"}')

    await redis_client.set("flag:checkout:production", {"name": "checkout"}, ex=30)

    redis_client.client.set.assert_awaited_once_with(
        "flag:checkout:production", '{"name": "checkout"}', ex=30
    )
    assert await redis_client.get("flag:checkout:production") == {"name": "checkout"}


@pytest.mark.asyncio
async def test_redis_client_non_json_value(redis_client):
    redis_client.client.get = AsyncMock(return_value=b"plain")
    assert await redis_client.get("k") == "plain"

    redis_client.client.get = AsyncMock(return_value=None)
    assert await redis_client.get("k") is None


@pytest.mark.asyncio
async def test_redis_client_delete_prefix_scans(redis_client):
    async def _scan_iter(match):
        assert match == "flag:checkout:*"
        for key in (b"flag:checkout:production", b"flag:checkout:staging"):
            yield key

    redis_client.client.scan_iter = _scan_iter
    redis_client.client.delete = AsyncMock(return_value=1)

    assert await redis_client.delete_prefix("flag:checkout:") == 2
    assert redis_client.client.delete.await_count == 2
