"""
Key-value cache used for RAG answers and session state.

This module provides:
- CacheStore: the async contract (get/set-with-expiry, delete, key listing,
  and the list operations used for bounded session history)
- RedisCache: production backend on redis.asyncio
- MemoryCache: in-process backend with lazy TTL expiry, for local
  development and tests

Backend failures surface as CacheUnavailableError. Callers on the RAG path
treat that as a miss; the session store turns it into SessionStoreError.
"""

import fnmatch
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple, Union

import redis.asyncio as redis
from redis.exceptions import RedisError

from logger import get_logger

logger = get_logger(__name__)


class CacheUnavailableError(Exception):
    """The backing store could not be reached or rejected the operation."""
    pass


class CacheStore(ABC):
    """Async key-value store with per-key expiry."""

    async def open(self) -> None:
        """Acquire connections. Default: nothing to do."""

    async def close(self) -> None:
        """Release connections. Default: nothing to do."""

    @abstractmethod
    async def ping(self) -> bool: ...

    @abstractmethod
    async def get(self, key: str) -> Optional[str]: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl: int) -> None: ...

    @abstractmethod
    async def delete(self, *keys: str) -> int: ...

    @abstractmethod
    async def keys(self, pattern: str) -> List[str]: ...

    @abstractmethod
    async def lpush(self, key: str, value: str) -> int: ...

    @abstractmethod
    async def ltrim(self, key: str, start: int, stop: int) -> None: ...

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> List[str]: ...

    @abstractmethod
    async def expire(self, key: str, ttl: int) -> bool: ...


class RedisCache(CacheStore):
    """
    Wrapper around an asyncio Redis client.

    Every redis/socket failure is re-raised as CacheUnavailableError so
    callers never depend on redis exception types.
    """

    def __init__(self, redis_url: str, password: Optional[str] = None, client: Optional[redis.Redis] = None):
        """
        Initialize Redis cache.

        Args:
            redis_url: Redis connection URL
            password: Optional password (overrides the one in the URL)
            client: Pre-built client, mainly for tests
        """
        self.redis_url = redis_url
        self._client = client or redis.from_url(
            redis_url,
            password=password or None,
            decode_responses=True,
        )

    @property
    def display_url(self) -> str:
        """Connection URL with credentials stripped."""
        return self.redis_url.split('@')[-1] if '@' in self.redis_url else self.redis_url

    async def open(self) -> None:
        await self.ping()
        logger.info("Redis connected", url=self.display_url)

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except (RedisError, OSError) as e:
            logger.warning(f"Error closing Redis client: {e}")

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Ping failed for {self.display_url}") from e

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self._client.get(key)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Failed to get key '{key}'") from e

    async def set(self, key: str, value: str, ttl: int) -> None:
        try:
            await self._client.set(key, value, ex=ttl)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Failed to set key '{key}'") from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return await self._client.delete(*keys)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError("Failed to delete keys") from e

    async def keys(self, pattern: str) -> List[str]:
        try:
            return [key async for key in self._client.scan_iter(match=pattern, count=500)]
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Failed to scan '{pattern}'") from e

    async def lpush(self, key: str, value: str) -> int:
        try:
            return await self._client.lpush(key, value)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Failed to lpush to '{key}'") from e

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        try:
            await self._client.ltrim(key, start, stop)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Failed to ltrim '{key}'") from e

    async def lrange(self, key: str, start: int, stop: int) -> List[str]:
        try:
            return await self._client.lrange(key, start, stop)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Failed to lrange '{key}'") from e

    async def expire(self, key: str, ttl: int) -> bool:
        try:
            return bool(await self._client.expire(key, ttl))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Failed to expire '{key}'") from e


def _redis_slice(items: list, start: int, stop: int) -> list:
    """Apply Redis LRANGE/LTRIM index semantics (inclusive stop, negatives from the end)."""
    length = len(items)
    if start < 0:
        start = max(length + start, 0)
    if stop < 0:
        stop = length + stop
    if start > stop or start >= length:
        return []
    return items[start:stop + 1]


class MemoryCache(CacheStore):
    """
    In-process cache with Redis-like semantics.

    Expiry is checked lazily on access against an injectable monotonic
    clock. All coroutines run on one event loop and never await
    mid-mutation, so no locking is needed.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[Union[str, List[str]], Optional[float]]] = {}

    def _live(self, key: str):
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def _expires_at(self, key: str) -> Optional[float]:
        entry = self._data.get(key)
        return entry[1] if entry else None

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> Optional[str]:
        value = self._live(key)
        if isinstance(value, list):
            raise CacheUnavailableError(f"Key '{key}' holds a list")
        return value

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = (value, self._clock() + ttl)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self._live(key) is not None:
                removed += 1
            self._data.pop(key, None)
        return removed

    async def keys(self, pattern: str) -> List[str]:
        return [
            key for key in list(self._data)
            if self._live(key) is not None and fnmatch.fnmatchcase(key, pattern)
        ]

    async def lpush(self, key: str, value: str) -> int:
        items = self._live(key)
        if items is None:
            items = []
            self._data[key] = (items, None)
        elif not isinstance(items, list):
            raise CacheUnavailableError(f"Key '{key}' does not hold a list")
        items.insert(0, value)
        return len(items)

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        items = self._live(key)
        if not isinstance(items, list):
            return
        trimmed = _redis_slice(items, start, stop)
        if trimmed:
            self._data[key] = (trimmed, self._expires_at(key))
        else:
            del self._data[key]

    async def lrange(self, key: str, start: int, stop: int) -> List[str]:
        items = self._live(key)
        if not isinstance(items, list):
            return []
        return list(_redis_slice(items, start, stop))

    async def expire(self, key: str, ttl: int) -> bool:
        value = self._live(key)
        if value is None:
            return False
        self._data[key] = (value, self._clock() + ttl)
        return True
