"""Key-value cache for ephemeral crawl state (checkpoints, ledgers, auto-stop markers)"""

import json
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

from movie_aggregator.utils.config import get_settings

logger = logging.getLogger(__name__)


class Cache(ABC):
    """Async cache. Values are JSON-serializable."""

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Value for key, or None when missing/expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store value, optionally expiring after ttl_seconds."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove key if present."""

    @abstractmethod
    async def delete_by_prefix(self, prefix: str) -> int:
        """Remove every key starting with prefix. Returns count removed."""

    async def close(self) -> None:
        return None


class MemoryCache(Cache):
    """In-process cache with per-key expiry"""

    def __init__(self):
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _alive(self, key: str) -> bool:
        entry = self._data.get(key)
        if entry is None:
            return False
        _, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return False
        return True

    async def get(self, key: str) -> Any:
        if not self._alive(key):
            return None
        # Copy through JSON so callers never mutate stored state
        return json.loads(json.dumps(self._data[key][0], default=str))

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl_seconds if ttl_seconds else None
        self._data[key] = (json.loads(json.dumps(value, default=str)), expires_at)

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def delete_by_prefix(self, prefix: str) -> int:
        keys = [k for k in self._data if k.startswith(prefix)]
        for k in keys:
            del self._data[k]
        return len(keys)

    def keys(self):
        return [k for k in list(self._data) if self._alive(k)]


class RedisCache(Cache):
    """Redis-backed cache (redis.asyncio), JSON-encoded values"""

    def __init__(self, url: Optional[str] = None, client=None):
        self.url = url or get_settings().redis_url
        self._redis = client

    @property
    def redis(self):
        if self._redis is None:
            from redis import asyncio as redis_asyncio

            self._redis = redis_asyncio.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def get(self, key: str) -> Any:
        raw = await self.redis.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            return raw

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        payload = json.dumps(value, ensure_ascii=False, default=str)
        await self.redis.set(key, payload, ex=ttl_seconds or None)

    async def delete(self, key: str) -> None:
        await self.redis.delete(key)

    async def delete_by_prefix(self, prefix: str) -> int:
        removed = 0
        async for key in self.redis.scan_iter(match=f"{prefix}*"):
            removed += await self.redis.delete(key)
        return removed

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def get_cache(mode: str = None) -> Cache:
    """Factory: 'redis' or 'memory'. Defaults to CACHE_MODE env var."""
    if mode is None:
        mode = get_settings().cache_mode

    if mode == "redis":
        return RedisCache()
    return MemoryCache()
