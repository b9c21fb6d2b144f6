"""
Unit tests for per-tenant quota counters (in-memory backend).
"""
import asyncio
from datetime import datetime, timezone

import pytest

from fleet_assistant.services.auth.quota import (
    WINDOW_CONCURRENT,
    WINDOW_DAY,
    WINDOW_MINUTE,
    InMemoryQuotaStore,
    QuotaSnapshot,
    evaluate,
    next_utc_midnight,
    rate_limit_info,
)
from fleet_assistant.services.auth.tenants import TierLimits

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc).timestamp()


def limits(per_minute=10, per_day=100, concurrent=1) -> TierLimits:
    return TierLimits(per_minute, per_day, concurrent, 1)


def test_next_utc_midnight():
    assert next_utc_midnight(NOW) == datetime(2024, 3, 2, tzinfo=timezone.utc).timestamp()


def test_evaluate_allows_and_counts_reserved_slot():
    snapshot = QuotaSnapshot(minute_count=3, day_count=3, in_flight=0, oldest_minute_hit=NOW - 10)

    decision = evaluate(snapshot, limits(), NOW)

    assert decision.allowed
    assert decision.rate_limit.limit == 10
    assert decision.rate_limit.remaining == 6
    assert decision.rate_limit.reset_at == int(NOW + 50)


def test_evaluate_minute_window_retry_after():
    snapshot = QuotaSnapshot(minute_count=10, day_count=10, in_flight=0, oldest_minute_hit=NOW - 45)

    decision = evaluate(snapshot, limits(), NOW)

    assert not decision.allowed
    assert decision.exceeded_window == WINDOW_MINUTE
    assert decision.retry_after == 15
    assert decision.rate_limit.remaining == 0


def test_evaluate_day_window_retry_after():
    snapshot = QuotaSnapshot(minute_count=0, day_count=100, in_flight=0, oldest_minute_hit=None)

    decision = evaluate(snapshot, limits(), NOW)

    assert not decision.allowed
    assert decision.exceeded_window == WINDOW_DAY
    assert decision.retry_after == 12 * 3600
    assert decision.rate_limit.window == WINDOW_DAY
    assert decision.rate_limit.reset_at == int(next_utc_midnight(NOW))


def test_evaluate_concurrency_ceiling():
    snapshot = QuotaSnapshot(minute_count=0, day_count=0, in_flight=1, oldest_minute_hit=None)

    decision = evaluate(snapshot, limits(concurrent=1), NOW)

    assert not decision.allowed
    assert decision.exceeded_window == WINDOW_CONCURRENT
    assert decision.retry_after == 1


def test_rate_limit_info_reports_tightest_window():
    snapshot = QuotaSnapshot(minute_count=2, day_count=98, in_flight=0, oldest_minute_hit=NOW)

    info = rate_limit_info(snapshot, limits(), NOW)

    assert info.window == WINDOW_DAY
    assert info.remaining == 2


@pytest.mark.asyncio
async def test_quota_monotonic_up_to_ceiling():
    """Usage never decreases inside a window, and request L+1 is denied."""
    store = InMemoryQuotaStore()
    tier = limits(per_minute=10, per_day=100, concurrent=1)
    counts = []

    for i in range(10):
        decision = await store.try_acquire("t1", tier, now=NOW + i)
        assert decision.allowed, f"request {i + 1} should be allowed"
        await store.release("t1", elapsed_ms=50, success=i % 2 == 0, now=NOW + i)
        snapshot = await store.snapshot("t1", now=NOW + i)
        counts.append(snapshot.minute_count)

    assert counts == sorted(counts)
    assert counts[-1] == 10

    denied = await store.try_acquire("t1", tier, now=NOW + 10)
    assert not denied.allowed
    assert denied.exceeded_window == WINDOW_MINUTE
    assert denied.retry_after == 50


@pytest.mark.asyncio
async def test_quota_minute_window_slides():
    store = InMemoryQuotaStore()
    tier = limits(per_minute=2, per_day=100, concurrent=5)
    for _ in range(2):
        assert (await store.try_acquire("t1", tier, now=NOW)).allowed
        await store.release("t1", 10, True, now=NOW)

    assert not (await store.try_acquire("t1", tier, now=NOW + 30)).allowed
    assert (await store.try_acquire("t1", tier, now=NOW + 61)).allowed


@pytest.mark.asyncio
async def test_quota_day_counter_resets_at_midnight():
    store = InMemoryQuotaStore()
    tier = limits(per_minute=100, per_day=1, concurrent=5)
    assert (await store.try_acquire("t1", tier, now=NOW)).allowed
    await store.release("t1", 10, True, now=NOW)

    assert not (await store.try_acquire("t1", tier, now=NOW + 120)).allowed
    assert (await store.try_acquire("t1", tier, now=next_utc_midnight(NOW) + 1)).allowed


@pytest.mark.asyncio
async def test_concurrent_acquires_never_overshoot():
    """Concurrent admissions are serialized per tenant."""
    store = InMemoryQuotaStore()
    tier = limits(per_minute=5, per_day=100, concurrent=50)

    decisions = await asyncio.gather(*(store.try_acquire("t1", tier, now=NOW) for _ in range(20)))

    assert sum(1 for d in decisions if d.allowed) == 5
    snapshot = await store.snapshot("t1", now=NOW)
    assert snapshot.in_flight == 5


@pytest.mark.asyncio
async def test_usage_stats_track_errors_and_latency():
    store = InMemoryQuotaStore()
    tier = limits(concurrent=5)
    await store.try_acquire("t1", tier, now=NOW)
    await store.release("t1", 100, True, now=NOW)
    await store.try_acquire("t1", tier, now=NOW)
    await store.release("t1", 300, False, now=NOW)

    stats = (await store.snapshot("t1", now=NOW)).stats

    assert stats.total_requests == 2
    assert stats.total_errors == 1
    assert stats.error_rate == pytest.approx(0.5)
    assert stats.average_response_time_ms == pytest.approx(200)


@pytest.mark.asyncio
async def test_tenants_are_isolated():
    store = InMemoryQuotaStore()
    tier = limits(per_minute=1, concurrent=1)
    assert (await store.try_acquire("a", tier, now=NOW)).allowed
    assert (await store.try_acquire("b", tier, now=NOW)).allowed
