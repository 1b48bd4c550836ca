import asyncio
import time
from unittest.mock import AsyncMock, MagicMock

from integrations.cache import Cache, enrichment_key, workspace_key


class TestMemoryCache:
    """In-process cache used when no Redis is configured."""

    async def test_set_then_get(self, memory_cache):
        await memory_cache.set("k", {"employee_count": 400.0}, ttl=60)
        assert await memory_cache.get("k") == {"employee_count": 400.0}

    async def test_miss(self, memory_cache):
        assert await memory_cache.get("missing") is None

    async def test_expiry(self, memory_cache, clock):
        await memory_cache.set("k", "v", ttl=60)
        clock.advance(59)
        assert await memory_cache.get("k") == "v"
        clock.advance(1)
        assert await memory_cache.get("k") is None

    async def test_last_write_wins(self, memory_cache):
        await memory_cache.set("k", 1, ttl=60)
        await memory_cache.set("k", 2, ttl=60)
        assert await memory_cache.get("k") == 2

    async def test_delete(self, memory_cache):
        await memory_cache.set("k", "v", ttl=60)
        await memory_cache.delete("k")
        assert await memory_cache.get("k") is None

    async def test_unserializable_value_is_not_stored(self, memory_cache):
        await memory_cache.set("k", object(), ttl=60)
        assert await memory_cache.get("k") is None

    async def test_ping_without_redis(self, memory_cache):
        assert await memory_cache.ping() is False

    def test_keys(self):
        assert enrichment_key("acme.com") == "enrichment:acme.com"
        assert workspace_key("demo") == "workspace:demo"


class TestRedisCache:
    """Redis-backed cache with failures degrading to misses."""

    def _cache(self, client):
        cache = Cache(redis_url=None)
        cache.r = client
        return cache

    async def test_reads_json(self):
        client = MagicMock()
        client.get = AsyncMock(return_value='{"a": 1}')
        assert await self._cache(client).get("k") == {"a": 1}

    async def test_write_uses_ttl(self):
        client = MagicMock()
        client.set = AsyncMock()
        await self._cache(client).set("k", {"a": 1}, ttl=30)
        client.set.assert_awaited_once_with("k", '{"a": 1}', ex=30)

    async def test_read_error_is_a_miss(self):
        client = MagicMock()
        client.get = AsyncMock(side_effect=ConnectionError("redis down"))
        assert await self._cache(client).get("k") is None

    async def test_write_error_is_swallowed(self):
        client = MagicMock()
        client.set = AsyncMock(side_effect=ConnectionError("redis down"))
        await self._cache(client).set("k", 1, ttl=30)

    async def test_ping(self):
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        assert await self._cache(client).ping() is True
        client.ping = AsyncMock(side_effect=ConnectionError("redis down"))
        assert await self._cache(client).ping() is False

    async def test_slow_call_is_a_miss(self):
        async def never(*args, **kwargs):
            await asyncio.sleep(10)

        client = MagicMock()
        client.get = never
        cache = self._cache(client)
        cache.timeout = 0.05

        assert await cache.get("k") is None


class TestUnresponsiveRedis:
    """A Redis endpoint that accepts connections but never answers."""

    async def test_reads_and_writes_give_up(self):
        writers = []

        async def silent(reader, writer):
            writers.append(writer)
            while await reader.read(1024):
                pass

        server = await asyncio.start_server(silent, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        cache = Cache(redis_url=f"redis://127.0.0.1:{port}", timeout=0.2)

        try:
            started = time.monotonic()
            assert await cache.get("enrichment:acme.com") is None
            await cache.set("enrichment:acme.com", {"employee_count": 1}, ttl=60)
            assert await cache.ping() is False
            assert time.monotonic() - started < 3
        finally:
            await cache.r.aclose()
            for writer in writers:
                writer.close()
            server.close()
            await server.wait_closed()


class TestMemorySweep:
    """Bounded in-memory fallback."""

    async def test_expired_entries_are_swept_on_write(self, memory_cache, clock):
        for i in range(5):
            await memory_cache.set(f"enrichment:d{i}.com", i, ttl=10)
        clock.advance(10)
        await memory_cache.set("enrichment:fresh.com", "v", ttl=10)

        assert list(memory_cache._memory) == ["enrichment:fresh.com"]

    async def test_size_cap_evicts_soonest_expiring(self, clock):
        cache = Cache(redis_url=None, clock=clock, max_entries=2)
        await cache.set("a", 1, ttl=10)
        await cache.set("b", 2, ttl=100)
        await cache.set("c", 3, ttl=50)

        assert set(cache._memory) == {"b", "c"}
        assert await cache.get("a") is None
