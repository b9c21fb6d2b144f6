"""
Redis connection pool and JSON cache client.

Redis backs two things: the tenant integration-config cache and, when
QUOTA_BACKEND=redis, the shared quota counters. The service runs without
Redis; the cache then always misses and quota falls back to process memory.

Configuration:
- REDIS_URL: connection URL (default: redis://redis:6379)
"""
import json
import os
from typing import Any, Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from fleet_assistant.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState
from fleet_assistant.core.logging import get_logger
from fleet_assistant.core.metrics import record_cache_hit, record_cache_miss

logger = get_logger(__name__)

_redis_client: Optional[redis.Redis] = None
_cache_circuit_breaker = CircuitBreaker(
    name="redis_cache",
    failure_threshold=0.5,
    time_window_seconds=60,
    open_duration_seconds=30,
)


def get_redis_url() -> str:
    return os.getenv("REDIS_URL", "redis://redis:6379")


async def initialize_redis() -> bool:
    """
    Connect to Redis and verify the connection with PING.

    Returns:
        True if Redis is usable, False otherwise
    """
    global _redis_client

    redis_url = get_redis_url()
    logger.info("redis_initializing", url=redis_url)
    client = redis.from_url(
        redis_url,
        max_connections=20,
        socket_connect_timeout=5,
        socket_timeout=5,
        retry_on_timeout=True,
        decode_responses=True,
    )
    try:
        await client.ping()
    except Exception as e:
        logger.error(
            "redis_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
        await client.aclose()
        _redis_client = None
        return False

    _redis_client = client
    logger.info("redis_initialized")
    return True


async def close_redis() -> None:
    global _redis_client

    if _redis_client is None:
        return
    try:
        await _redis_client.aclose()
        logger.info("redis_closed")
    except Exception as e:
        logger.error(
            "redis_close_failed",
            error=str(e),
            error_type=type(e).__name__,
        )
    finally:
        _redis_client = None


def get_redis_client() -> Optional[redis.Redis]:
    return _redis_client


class CacheClient:
    """
    JSON cache over Redis with circuit breaker protection.

    Every operation degrades to a miss (or a no-op) when Redis is absent,
    failing, or the breaker is open.
    """

    def __init__(self, cache_type: str = "default", circuit_breaker: Optional[CircuitBreaker] = None):
        self.cache_type = cache_type
        self.circuit_breaker = circuit_breaker or _cache_circuit_breaker

    def _available(self) -> Optional[redis.Redis]:
        client = get_redis_client()
        if client is None:
            return None
        if self.circuit_breaker.state == CircuitState.OPEN:
            logger.debug("cache_circuit_breaker_open", cache_type=self.cache_type)
            return None
        return client

    async def get(self, key: str) -> Optional[Any]:
        client = self._available()
        if client is None:
            record_cache_miss(self.cache_type)
            return None

        try:
            value = await self.circuit_breaker.call_async(client.get, key)
        except (CircuitBreakerOpenError, RedisError) as e:
            logger.warning(
                "cache_get_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            record_cache_miss(self.cache_type)
            return None

        if value is None:
            record_cache_miss(self.cache_type)
            return None

        record_cache_hit(self.cache_type)
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """Store `value` as JSON for `ttl` seconds; returns False when not stored."""
        client = self._available()
        if client is None:
            return False

        serialized = value if isinstance(value, str) else json.dumps(value)
        try:
            await self.circuit_breaker.call_async(client.setex, key, ttl, serialized)
        except (CircuitBreakerOpenError, RedisError) as e:
            logger.warning(
                "cache_set_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True

    async def delete(self, key: str) -> bool:
        client = self._available()
        if client is None:
            return False
        try:
            deleted = await self.circuit_breaker.call_async(client.delete, key)
        except (CircuitBreakerOpenError, RedisError) as e:
            logger.warning(
                "cache_delete_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return bool(deleted)

    def get_circuit_breaker_metrics(self) -> Dict:
        return self.circuit_breaker.get_metrics()


_cache_clients: Dict[str, CacheClient] = {}


def get_cache_client(cache_type: str = "default") -> CacheClient:
    """Return the shared cache client for a cache type."""
    if cache_type not in _cache_clients:
        _cache_clients[cache_type] = CacheClient(cache_type=cache_type)
    return _cache_clients[cache_type]
