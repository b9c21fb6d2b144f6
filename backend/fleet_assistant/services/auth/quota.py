"""
Per-tenant quota counters.

Each tenant has three counters checked against its tier ceilings:
- requests in the sliding last minute
- requests in the current UTC day
- requests currently in flight

Admission is reserve-then-commit. `try_acquire` atomically checks the
ceilings and reserves an in-flight slot; `release` frees the slot and commits
the request to the minute and day counters, whatever its outcome. In-flight
reservations count against the minute and day ceilings, so concurrent
admissions can never overshoot them.

Two implementations share the same contract:
- InMemoryQuotaStore: one asyncio.Lock per tenant (single process)
- RedisQuotaStore: Lua scripts, atomic across processes (QUOTA_BACKEND=redis)
"""
import asyncio
import math
import os
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, List, Optional, Protocol

from fleet_assistant.core.cache import get_redis_client
from fleet_assistant.core.logging import get_logger
from fleet_assistant.services.auth.tenants import TierLimits

logger = get_logger(__name__)

MINUTE_WINDOW_SECONDS = 60

WINDOW_MINUTE = "minute"
WINDOW_DAY = "day"
WINDOW_CONCURRENT = "concurrent"


def next_utc_midnight(now: float) -> float:
    current = datetime.fromtimestamp(now, tz=timezone.utc)
    midnight = (current + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.timestamp()


def utc_day(now: float) -> str:
    return datetime.fromtimestamp(now, tz=timezone.utc).strftime("%Y%m%d")


@dataclass(frozen=True)
class RateLimitInfo:
    """The window with the fewest remaining requests, as reported in X-RateLimit-* headers."""

    limit: int
    remaining: int
    reset_at: int
    window: str = WINDOW_MINUTE


@dataclass(frozen=True)
class UsageStats:
    total_requests: int = 0
    total_errors: int = 0
    average_response_time_ms: float = 0.0

    @property
    def error_rate(self) -> float:
        return self.total_errors / self.total_requests if self.total_requests else 0.0


@dataclass(frozen=True)
class QuotaSnapshot:
    minute_count: int
    day_count: int
    in_flight: int
    oldest_minute_hit: Optional[float]
    stats: UsageStats = field(default_factory=UsageStats)


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    rate_limit: RateLimitInfo
    exceeded_window: Optional[str] = None
    retry_after: Optional[int] = None


def rate_limit_info(snapshot: QuotaSnapshot, limits: TierLimits, now: float) -> RateLimitInfo:
    """Pick the tightest of the minute and day windows (minute wins ties)."""
    minute_used = snapshot.minute_count + snapshot.in_flight
    day_used = snapshot.day_count + snapshot.in_flight
    minute_remaining = max(0, limits.requests_per_minute - minute_used)
    day_remaining = max(0, limits.requests_per_day - day_used)

    if day_remaining < minute_remaining:
        return RateLimitInfo(
            limit=limits.requests_per_day,
            remaining=day_remaining,
            reset_at=int(next_utc_midnight(now)),
            window=WINDOW_DAY,
        )

    oldest = snapshot.oldest_minute_hit if snapshot.oldest_minute_hit is not None else now
    return RateLimitInfo(
        limit=limits.requests_per_minute,
        remaining=minute_remaining,
        reset_at=int(math.ceil(oldest + MINUTE_WINDOW_SECONDS)),
        window=WINDOW_MINUTE,
    )


def evaluate(snapshot: QuotaSnapshot, limits: TierLimits, now: float) -> QuotaDecision:
    """
    Decide admission against a snapshot taken before reserving.

    The returned rate limit info on an allowed decision already includes the
    slot about to be reserved.
    """
    minute_used = snapshot.minute_count + snapshot.in_flight
    day_used = snapshot.day_count + snapshot.in_flight

    exceeded: Optional[str] = None
    retry_after: Optional[int] = None
    if snapshot.in_flight >= limits.max_concurrent_requests:
        exceeded, retry_after = WINDOW_CONCURRENT, 1
    elif minute_used >= limits.requests_per_minute:
        exceeded = WINDOW_MINUTE
        if snapshot.oldest_minute_hit is None:
            retry_after = 1
        else:
            retry_after = max(1, int(math.ceil(snapshot.oldest_minute_hit + MINUTE_WINDOW_SECONDS - now)))
    elif day_used >= limits.requests_per_day:
        exceeded = WINDOW_DAY
        retry_after = max(1, int(math.ceil(next_utc_midnight(now) - now)))

    if exceeded:
        return QuotaDecision(
            allowed=False,
            rate_limit=rate_limit_info(snapshot, limits, now),
            exceeded_window=exceeded,
            retry_after=retry_after,
        )

    reserved = QuotaSnapshot(
        minute_count=snapshot.minute_count,
        day_count=snapshot.day_count,
        in_flight=snapshot.in_flight + 1,
        oldest_minute_hit=snapshot.oldest_minute_hit,
        stats=snapshot.stats,
    )
    return QuotaDecision(allowed=True, rate_limit=rate_limit_info(reserved, limits, now))


class QuotaStore(Protocol):
    async def try_acquire(self, tenant_id: str, limits: TierLimits, now: Optional[float] = None) -> QuotaDecision:
        ...

    async def release(self, tenant_id: str, elapsed_ms: float, success: bool, now: Optional[float] = None) -> None:
        ...

    async def snapshot(self, tenant_id: str, now: Optional[float] = None) -> QuotaSnapshot:
        ...


@dataclass
class _TenantCounters:
    minute_hits: Deque[float] = field(default_factory=deque)
    day: str = ""
    day_count: int = 0
    in_flight: int = 0
    total_requests: int = 0
    total_errors: int = 0
    total_response_ms: float = 0.0

    def prune(self, now: float) -> None:
        cutoff = now - MINUTE_WINDOW_SECONDS
        while self.minute_hits and self.minute_hits[0] <= cutoff:
            self.minute_hits.popleft()
        today = utc_day(now)
        if self.day != today:
            self.day = today
            self.day_count = 0

    def snapshot(self) -> QuotaSnapshot:
        average = self.total_response_ms / self.total_requests if self.total_requests else 0.0
        return QuotaSnapshot(
            minute_count=len(self.minute_hits),
            day_count=self.day_count,
            in_flight=self.in_flight,
            oldest_minute_hit=self.minute_hits[0] if self.minute_hits else None,
            stats=UsageStats(self.total_requests, self.total_errors, average),
        )


class InMemoryQuotaStore:
    """Counters in process memory, one asyncio.Lock per tenant."""

    def __init__(self) -> None:
        self._counters: Dict[str, _TenantCounters] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        return lock

    def _tenant(self, tenant_id: str) -> _TenantCounters:
        return self._counters.setdefault(tenant_id, _TenantCounters())

    async def try_acquire(self, tenant_id: str, limits: TierLimits, now: Optional[float] = None) -> QuotaDecision:
        now = time.time() if now is None else now
        async with self._lock(tenant_id):
            counters = self._tenant(tenant_id)
            counters.prune(now)
            decision = evaluate(counters.snapshot(), limits, now)
            if decision.allowed:
                counters.in_flight += 1
            return decision

    async def release(self, tenant_id: str, elapsed_ms: float, success: bool, now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        async with self._lock(tenant_id):
            counters = self._tenant(tenant_id)
            counters.prune(now)
            counters.in_flight = max(0, counters.in_flight - 1)
            counters.minute_hits.append(now)
            counters.day_count += 1
            counters.total_requests += 1
            counters.total_response_ms += max(0.0, elapsed_ms)
            if not success:
                counters.total_errors += 1

    async def snapshot(self, tenant_id: str, now: Optional[float] = None) -> QuotaSnapshot:
        now = time.time() if now is None else now
        async with self._lock(tenant_id):
            counters = self._tenant(tenant_id)
            counters.prune(now)
            return counters.snapshot()


_ACQUIRE_SCRIPT = """
local minute_key, day_key, inflight_key = KEYS[1], KEYS[2], KEYS[3]
local now = tonumber(ARGV[1])
local per_minute = tonumber(ARGV[2])
local per_day = tonumber(ARGV[3])
local max_concurrent = tonumber(ARGV[4])
local inflight_ttl = tonumber(ARGV[5])

redis.call('ZREMRANGEBYSCORE', minute_key, '-inf', now - 60)
local minute_count = redis.call('ZCARD', minute_key)
local day_count = tonumber(redis.call('GET', day_key) or '0')
local inflight = tonumber(redis.call('GET', inflight_key) or '0')
local oldest = redis.call('ZRANGE', minute_key, 0, 0, 'WITHSCORES')
local oldest_score = ''
if oldest[2] then oldest_score = oldest[2] end

local allowed = 0
if inflight < max_concurrent
    and minute_count + inflight < per_minute
    and day_count + inflight < per_day then
    redis.call('INCR', inflight_key)
    redis.call('EXPIRE', inflight_key, inflight_ttl)
    allowed = 1
end
return {allowed, minute_count, day_count, inflight, oldest_score}
"""

_RELEASE_SCRIPT = """
local minute_key, day_key, inflight_key, stats_key = KEYS[1], KEYS[2], KEYS[3], KEYS[4]
local now = tonumber(ARGV[1])
local member = ARGV[2]
local day_ttl = tonumber(ARGV[3])
local success = ARGV[4]
local elapsed_ms = ARGV[5]

local inflight = tonumber(redis.call('GET', inflight_key) or '0')
if inflight > 0 then
    redis.call('DECR', inflight_key)
end
redis.call('ZADD', minute_key, now, member)
redis.call('EXPIRE', minute_key, 120)
redis.call('INCR', day_key)
redis.call('EXPIRE', day_key, day_ttl)
redis.call('HINCRBY', stats_key, 'total_requests', 1)
if success == '0' then
    redis.call('HINCRBY', stats_key, 'total_errors', 1)
end
redis.call('HINCRBYFLOAT', stats_key, 'total_response_ms', elapsed_ms)
return 1
"""


class RedisQuotaStore:
    """Counters shared across API processes, mutated only inside Lua scripts."""

    prefix = "fleet:quota"
    inflight_ttl_seconds = 300

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        client = self._client or get_redis_client()
        if client is None:
            raise RuntimeError("Redis is not initialized")
        return client

    def _keys(self, tenant_id: str, now: float) -> List[str]:
        base = f"{self.prefix}:{tenant_id}"
        return [
            f"{base}:minute",
            f"{base}:day:{utc_day(now)}",
            f"{base}:inflight",
            f"{base}:stats",
        ]

    async def try_acquire(self, tenant_id: str, limits: TierLimits, now: Optional[float] = None) -> QuotaDecision:
        now = time.time() if now is None else now
        keys = self._keys(tenant_id, now)[:3]
        allowed, minute_count, day_count, in_flight, oldest = await self.client.eval(
            _ACQUIRE_SCRIPT,
            3,
            *keys,
            now,
            limits.requests_per_minute,
            limits.requests_per_day,
            limits.max_concurrent_requests,
            self.inflight_ttl_seconds,
        )
        snapshot = QuotaSnapshot(
            minute_count=int(minute_count),
            day_count=int(day_count),
            in_flight=int(in_flight),
            oldest_minute_hit=float(oldest) if oldest else None,
        )
        # The script applies the same checks as evaluate() on the same counters.
        decision = evaluate(snapshot, limits, now)
        if not int(allowed) and decision.allowed:
            logger.error("quota_decision_mismatch", tenant_id=tenant_id)
            return QuotaDecision(allowed=False, rate_limit=decision.rate_limit, exceeded_window=WINDOW_CONCURRENT, retry_after=1)
        return decision

    async def release(self, tenant_id: str, elapsed_ms: float, success: bool, now: Optional[float] = None) -> None:
        now = time.time() if now is None else now
        day_ttl = int(next_utc_midnight(now) - now) + 3600
        await self.client.eval(
            _RELEASE_SCRIPT,
            4,
            *self._keys(tenant_id, now),
            now,
            f"{now}:{uuid.uuid4().hex[:8]}",
            day_ttl,
            "1" if success else "0",
            max(0.0, elapsed_ms),
        )

    async def snapshot(self, tenant_id: str, now: Optional[float] = None) -> QuotaSnapshot:
        now = time.time() if now is None else now
        minute_key, day_key, inflight_key, stats_key = self._keys(tenant_id, now)
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(minute_key, "-inf", now - MINUTE_WINDOW_SECONDS)
            pipe.zcard(minute_key)
            pipe.get(day_key)
            pipe.get(inflight_key)
            pipe.zrange(minute_key, 0, 0, withscores=True)
            pipe.hgetall(stats_key)
            _, minute_count, day_count, in_flight, oldest, stats = await pipe.execute()

        total = int(stats.get("total_requests", 0)) if stats else 0
        errors = int(stats.get("total_errors", 0)) if stats else 0
        total_ms = float(stats.get("total_response_ms", 0.0)) if stats else 0.0
        return QuotaSnapshot(
            minute_count=int(minute_count),
            day_count=int(day_count or 0),
            in_flight=int(in_flight or 0),
            oldest_minute_hit=float(oldest[0][1]) if oldest else None,
            stats=UsageStats(total, errors, total_ms / total if total else 0.0),
        )


_quota_store: Optional[QuotaStore] = None


def get_quota_store() -> QuotaStore:
    """Global quota store chosen by QUOTA_BACKEND (memory or redis)."""
    global _quota_store
    if _quota_store is None:
        backend = os.getenv("QUOTA_BACKEND", "memory").lower()
        _quota_store = RedisQuotaStore() if backend == "redis" else InMemoryQuotaStore()
        logger.info("quota_store_initialized", backend=type(_quota_store).__name__)
    return _quota_store
