import asyncio
import json
import os
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import redis.asyncio as redis
from loguru import logger

from pipeline import settings


def enrichment_key(domain: str) -> str:
    return f"enrichment:{domain}"


def workspace_key(name: str) -> str:
    return f"workspace:{name}"


class Cache:
    """
    JSON cache over Redis, with an in-process fallback when no Redis is configured.

    Purely an optimization: every read or write failure is logged and reported
    as a miss, so callers always keep a path to the real provider or store.
    Each Redis call is bounded by `timeout`; a server that stops answering
    counts as a miss too. Entries are last-write-wins and bounded by their TTL.
    """

    def __init__(
        self,
        redis_url: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        timeout: float = settings.CACHE_TIMEOUT,
        max_entries: int = settings.CACHE_MAX_ENTRIES,
    ):
        self.r = None
        self._memory: Dict[str, Tuple[str, float]] = {}
        self._clock = clock
        self.timeout = timeout
        self.max_entries = max_entries

        redis_url = redis_url or os.getenv("REDIS_URL")
        if not redis_url:
            logger.warning("No REDIS_URL configured, using in-memory cache")
            return
        try:
            self.r = redis.from_url(
                redis_url,
                decode_responses=True,
                socket_timeout=timeout,
                socket_connect_timeout=timeout,
            )
            logger.info("Redis cache client created")
        except Exception as e:
            logger.error(f"Redis client creation failed: {e}")
            self.r = None

    async def _call(self, operation: Awaitable[Any]) -> Any:
        return await asyncio.wait_for(operation, timeout=self.timeout)

    async def get(self, key: str) -> Optional[Any]:
        """
        Read a cached value.

        Returns:
            The decoded value, or None on a miss, an expired entry, a timeout or any error
        """
        try:
            if self.r:
                raw = await self._call(self.r.get(key))
            else:
                raw = self._memory_get(key)
            return json.loads(raw) if raw is not None else None
        except Exception as e:
            logger.warning(f"Cache read failed for {key}: {str(e) or e.__class__.__name__}")
            return None

    async def set(self, key: str, value: Any, ttl: int) -> None:
        try:
            raw = json.dumps(value)
            if self.r:
                await self._call(self.r.set(key, raw, ex=ttl))
            else:
                self._sweep()
                self._memory[key] = (raw, self._clock() + ttl)
        except Exception as e:
            logger.warning(f"Cache write failed for {key}: {str(e) or e.__class__.__name__}")

    async def delete(self, key: str) -> None:
        try:
            if self.r:
                await self._call(self.r.delete(key))
            else:
                self._memory.pop(key, None)
        except Exception as e:
            logger.warning(f"Cache delete failed for {key}: {str(e) or e.__class__.__name__}")

    async def ping(self) -> bool:
        if not self.r:
            return False
        try:
            return bool(await self._call(self.r.ping()))
        except Exception as e:
            logger.error(f"Redis ping failed: {str(e) or e.__class__.__name__}")
            return False

    def _memory_get(self, key: str) -> Optional[str]:
        entry = self._memory.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if self._clock() >= expires_at:
            self._memory.pop(key, None)
            return None
        return raw

    def _sweep(self) -> None:
        """Drop expired entries, then the soonest-expiring ones until there is room for one more."""
        now = self._clock()
        for key in [k for k, (_, expires_at) in self._memory.items() if now >= expires_at]:
            del self._memory[key]
        overflow = len(self._memory) - self.max_entries + 1
        if overflow > 0:
            for key in sorted(self._memory, key=lambda k: self._memory[k][1])[:overflow]:
                del self._memory[key]


# Global cache instance
cache = Cache()
