import uuid

from app.config import settings
from app.services.cache_service import CacheService, InMemoryCache, RedisCache

from tests.conftest import auth_headers


async def test_in_memory_counter_counts_and_expires():
    cache = InMemoryCache()
    assert await cache.incr("hits", ttl=60) == 1
    assert await cache.incr("hits", ttl=60) == 2

    assert await cache.incr("stale", ttl=0) == 1
    assert await cache.incr("stale", ttl=0) == 1


async def test_in_memory_values_expire():
    cache = InMemoryCache()
    await cache.set("fresh", {"a": 1}, ttl=60)
    await cache.set("gone", {"a": 2}, ttl=0)

    assert await cache.get("fresh") == {"a": 1}
    assert await cache.get("gone") is None
    assert await cache.delete("fresh") is True
    assert await cache.delete("fresh") is False


async def test_windows_are_per_scope_and_actor():
    cache = CacheService(InMemoryCache())
    actor = str(uuid.uuid4())

    assert await cache.incr_window("orders", actor, 60) == 1
    assert await cache.incr_window("orders", actor, 60) == 2
    assert await cache.incr_window("returns", actor, 60) == 1
    assert await cache.incr_window("orders", str(uuid.uuid4()), 60) == 1


async def test_redis_failures_fail_open():
    class Unreachable:
        async def incr(self, key):
            raise ConnectionError("connection refused")

        async def get(self, key):
            raise ConnectionError("connection refused")

    backend = RedisCache("redis://localhost:6379/0")
    backend._client = Unreachable()

    assert await backend.incr("ezgrocer:ratelimit:orders:x:1", 60) == 0
    assert await backend.get("ezgrocer:rider_location:x") is None


async def test_order_mutations_are_rate_limited(client, world, monkeypatch):
    monkeypatch.setattr(settings, "ORDER_RATE_LIMIT_REQUESTS", 2)
    headers = auth_headers(world.customer)
    url = f"/api/v1/orders/{uuid.uuid4()}/cancel"

    for _ in range(2):
        response = await client.post(url, headers=headers)
        assert response.status_code == 404

    limited = await client.post(url, headers=headers)
    assert limited.status_code == 429
    assert limited.headers["Retry-After"] == str(settings.ORDER_RATE_LIMIT_WINDOW_SECONDS)

    # Reads are not limited
    listed = await client.get("/api/v1/orders", headers=headers)
    assert listed.status_code == 200
