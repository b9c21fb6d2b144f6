"""
Unit tests for the Redis-backed cache client.
"""
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from fleet_assistant.core import cache as cache_module
from fleet_assistant.core.cache import CacheClient
from fleet_assistant.core.circuit_breaker import CircuitBreaker


class FakeRedis:
    """In-memory stand-in exposing the async calls CacheClient uses."""

    def __init__(self, fail: bool = False):
        self.store = {}
        self.fail = fail
        self.ttls = {}

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("redis down")
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        if self.fail:
            raise RedisConnectionError("redis down")
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, key):
        if self.fail:
            raise RedisConnectionError("redis down")
        return 1 if self.store.pop(key, None) is not None else 0


def make_client() -> CacheClient:
    return CacheClient("test", circuit_breaker=CircuitBreaker("test_cache"))


@pytest.mark.asyncio
async def test_cache_round_trip(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(cache_module, "get_redis_client", lambda: fake)
    client = make_client()

    assert await client.set("fleet:integrations:t1", ["geotab", "fleetio"], ttl=1800)
    assert await client.get("fleet:integrations:t1") == ["geotab", "fleetio"]
    assert fake.ttls["fleet:integrations:t1"] == 1800

    assert await client.delete("fleet:integrations:t1")
    assert await client.get("fleet:integrations:t1") is None


@pytest.mark.asyncio
async def test_cache_without_redis_is_a_miss(monkeypatch):
    """No Redis connection: reads miss and writes are skipped."""
    monkeypatch.setattr(cache_module, "get_redis_client", lambda: None)
    client = make_client()

    assert await client.get("key") is None
    assert await client.set("key", {"a": 1}, ttl=60) is False
    assert await client.delete("key") is False


@pytest.mark.asyncio
async def test_cache_redis_errors_degrade(monkeypatch):
    """Redis errors are logged and treated as misses, never raised."""
    monkeypatch.setattr(cache_module, "get_redis_client", lambda: FakeRedis(fail=True))
    client = make_client()

    assert await client.get("key") is None
    assert await client.set("key", "value", ttl=60) is False
    assert client.get_circuit_breaker_metrics()["recent_failures"] == 2
