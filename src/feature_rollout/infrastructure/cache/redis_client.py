import asyncio
import json
import time
from typing import Any, Callable, Optional

import redis.asyncio as redis_asyncio

from ...logging_config import get_logger

logger = get_logger(__name__)


def _record_cache_operation(
    operation: str,
    cache_type: str,
    duration: float | None = None,
    hit: bool | None = None,
    key: str | None = None,
):
    """Record cache metrics (lazy import to avoid circular dependency)."""
    from ...metrics import CACHE_HITS, CACHE_MISSES, CACHE_OPERATION_DURATION, CACHE_OPERATIONS

    if CACHE_OPERATIONS is not None:
        CACHE_OPERATIONS.labels(operation=operation, cache_type=cache_type).inc()

    if duration is not None and CACHE_OPERATION_DURATION is not None:
        CACHE_OPERATION_DURATION.labels(operation=operation, cache_type=cache_type).observe(duration)

    if hit is not None and key is not None:
        # Extract key pattern (e.g., "flag:checkout:*")
        key_pattern = ":".join(key.split(":")[:2]) + ":*" if ":" in key else "other"
        metric = CACHE_HITS if hit else CACHE_MISSES
        if metric is not None:
            metric.labels(cache_type=cache_type, key_pattern=key_pattern).inc()


class InMemoryCache:
    """Process-local TTL cache.

    Expiry instants are absolute values of ``clock`` (seconds), so tests can
    drive expiry with a fake clock instead of sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        # store: key -> (value: Any, expire_at: Optional[float])
        self.store: dict[str, tuple[Any, Optional[float]]] = {}
        self.lock = asyncio.Lock()
        self.clock = clock

    async def get(self, key: str) -> Optional[Any]:
        start = time.perf_counter()
        async with self.lock:
            entry = self.store.get(key)
            if not entry:
                _record_cache_operation(
                    "get", "in_memory", time.perf_counter() - start, hit=False, key=key
                )
                return None
            value, expire_at = entry
            if expire_at is not None and self.clock() >= expire_at:
                # expired; remove and return None
                self.store.pop(key, None)
                _record_cache_operation(
                    "get", "in_memory", time.perf_counter() - start, hit=False, key=key
                )
                return None
        _record_cache_operation("get", "in_memory", time.perf_counter() - start, hit=True, key=key)
        return value

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> None:
        start = time.perf_counter()
        expire_at = None
        if ex is not None:
            expire_at = self.clock() + int(ex)
        async with self.lock:
            self.store[key] = (value, expire_at)
        _record_cache_operation("set", "in_memory", time.perf_counter() - start)

    async def delete(self, key: str) -> None:
        start = time.perf_counter()
        async with self.lock:
            self.store.pop(key, None)
        _record_cache_operation("delete", "in_memory", time.perf_counter() - start)

    async def delete_prefix(self, prefix: str) -> int:
        start = time.perf_counter()
        async with self.lock:
            doomed = [k for k in self.store if k.startswith(prefix)]
            for k in doomed:
                del self.store[k]
        _record_cache_operation("delete_prefix", "in_memory", time.perf_counter() - start)
        return len(doomed)

    async def close(self) -> None:
        async with self.lock:
            self.store.clear()


class AioredisClient:
    def __init__(self, url: str):
        self.client = redis_asyncio.from_url(url, decode_responses=False)

    async def get(self, key: str) -> Optional[Any]:
        start = time.perf_counter()
        v = await self.client.get(key)
        _record_cache_operation("get", "redis", time.perf_counter() - start, hit=v is not None, key=key)
        if not v:
            return None
        text = v.decode()
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.debug("redis_json_decode_failed", key=key, error=str(e))
            # fallback to raw decoded string
            return text

    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> None:
        start = time.perf_counter()
        # store JSON-serializable objects
        try:
            text = json.dumps(value)
        except TypeError:
            text = str(value)
        await self.client.set(key, text, ex=ex)
        _record_cache_operation("set", "redis", time.perf_counter() - start)

    async def delete(self, key: str) -> None:
        start = time.perf_counter()
        await self.client.delete(key)
        _record_cache_operation("delete", "redis", time.perf_counter() - start)

    async def delete_prefix(self, prefix: str) -> int:
        start = time.perf_counter()
        removed = 0
        async for key in self.client.scan_iter(match=f"{prefix}*"):
            removed += await self.client.delete(key)
        _record_cache_operation("delete_prefix", "redis", time.perf_counter() - start)
        return removed

    async def close(self) -> None:
        await self.client.aclose()
