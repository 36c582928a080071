from typing import Any, Optional, Protocol


class CacheClient(Protocol):
    """Protocol for the key/value cache used in front of flag storage."""

    async def get(self, key: str) -> Optional[Any]: ...
    async def set(self, key: str, value: Any, ex: Optional[int] = None) -> None: ...
    async def delete(self, key: str) -> None: ...
    async def delete_prefix(self, prefix: str) -> int: ...
