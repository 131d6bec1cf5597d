"""Test the rule cache, its registry, and the retry policy."""
import asyncio
from decimal import Decimal

import pytest

from core.errors import InvalidInputError, TransientError, ValidationError
from core.resilience.retry import RetryPolicy
from verticals.free_gifts.domain import RuleStatus
from verticals.free_gifts.store import InMemoryRulePersistence, RuleStore
from verticals.free_gifts.sync import RuleCache, RuleCacheRegistry

NO_WAIT = RetryPolicy(attempts=3, backoff_base=0, backoff_max=0)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def wired(ttl_seconds=None, clock=None):
    """Store and cache sharing one persistence, with invalidation wired."""
    persistence = InMemoryRulePersistence()
    cache = RuleCache(
        lambda: RuleStore(persistence, "T1").list(),
        ttl_seconds=ttl_seconds,
        retry=NO_WAIT,
        clock=clock or FakeClock(),
    )
    store = RuleStore(persistence, "T1", on_change=lambda tenant: cache.invalidate())
    return store, cache


def test_get_cached_before_any_fetch_is_empty_and_stale():
    _, cache = wired()
    snapshot = cache.get_cached()
    assert snapshot.rules == ()
    assert snapshot.stale
    assert not snapshot.ever_fetched


@pytest.mark.asyncio
async def test_refresh_publishes_snapshot():
    store, cache = wired()
    rule = await store.create(200, "gift-a")
    snapshot = await cache.refresh()
    assert [r.id for r in snapshot.rules] == [rule.id]
    assert not snapshot.stale
    assert cache.get_cached() is snapshot


@pytest.mark.asyncio
async def test_mutation_invalidates_cache():
    store, cache = wired()
    rule = await store.create(200, "gift-a")
    await cache.refresh()

    await store.update(rule.id, {"status": "Inactive"})
    assert cache.get_cached().stale

    snapshot = await cache.refresh()
    assert not snapshot.stale
    assert [r for r in snapshot.rules if r.status is RuleStatus.ACTIVE] == []
    assert snapshot.active() == []


@pytest.mark.asyncio
async def test_old_snapshot_unaffected_by_refresh():
    store, cache = wired()
    await store.create(200, "gift-a")
    before = await cache.refresh()
    await store.create(500, "gift-b")
    after = await cache.refresh()
    assert len(before.rules) == 1
    assert len(after.rules) == 2


@pytest.mark.asyncio
async def test_ttl_expiry_marks_stale():
    clock = FakeClock()
    store, cache = wired(ttl_seconds=30, clock=clock)
    await store.create(200, "gift-a")
    await cache.refresh()
    clock.now += 29
    assert not cache.get_cached().stale
    clock.now += 1
    assert cache.get_cached().stale


@pytest.mark.asyncio
async def test_get_fresh_refreshes_only_when_stale():
    calls = 0

    async def fetch():
        nonlocal calls
        calls += 1
        return []

    cache = RuleCache(fetch, retry=NO_WAIT)
    await cache.get_fresh()
    await cache.get_fresh()
    assert calls == 1
    cache.invalidate()
    await cache.get_fresh()
    assert calls == 2


@pytest.mark.asyncio
async def test_transient_failure_serves_stale_snapshot():
    store, _ = wired()
    rule = await store.create(200, "gift-a")
    fail = False

    async def fetch():
        if fail:
            raise TransientError("db down")
        return await store.list()

    cache = RuleCache(fetch, retry=NO_WAIT)
    await cache.refresh()
    fail = True
    cache.invalidate()
    snapshot = await cache.refresh()
    assert snapshot.stale
    assert [r.id for r in snapshot.rules] == [rule.id]


@pytest.mark.asyncio
async def test_transient_failure_without_snapshot_raises():
    async def fetch():
        raise TransientError("db down")

    cache = RuleCache(fetch, retry=NO_WAIT)
    with pytest.raises(TransientError):
        await cache.refresh()


@pytest.mark.asyncio
async def test_transient_failure_retried_then_succeeds():
    attempts = 0

    async def fetch():
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise TransientError("blip")
        return []

    cache = RuleCache(fetch, retry=NO_WAIT)
    snapshot = await cache.refresh()
    assert attempts == 3
    assert not snapshot.stale


@pytest.mark.asyncio
async def test_non_transient_errors_propagate():
    async def fetch():
        raise ValidationError("broken row")

    cache = RuleCache(fetch, retry=NO_WAIT)
    with pytest.raises(ValidationError):
        await cache.refresh()


@pytest.mark.asyncio
async def test_invalidation_during_refresh_keeps_result_stale():
    release = asyncio.Event()

    async def fetch():
        await release.wait()
        return []

    cache = RuleCache(fetch, retry=NO_WAIT)
    task = asyncio.create_task(cache.refresh())
    await asyncio.sleep(0)
    cache.invalidate()
    release.set()
    snapshot = await task
    assert snapshot.ever_fetched
    assert snapshot.stale


@pytest.mark.asyncio
async def test_concurrent_refreshes_share_one_fetch():
    calls = 0
    release = asyncio.Event()

    async def fetch():
        nonlocal calls
        calls += 1
        await release.wait()
        return []

    cache = RuleCache(fetch, retry=NO_WAIT)
    tasks = [asyncio.create_task(cache.refresh()) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    snapshots = await asyncio.gather(*tasks)
    assert calls == 1
    assert all(s is snapshots[0] for s in snapshots)


@pytest.mark.asyncio
async def test_resolve_uses_fresh_snapshot():
    store, cache = wired()
    gift_a = await store.create(200, "gift-a")
    gift_b = await store.create(500, "gift-b")
    result = await cache.resolve(600)
    assert result.primary.id == gift_b.id

    await store.update(gift_b.id, {"status": "Inactive"})
    result = await cache.resolve(600)
    assert [r.id for r in result.qualifying] == [gift_a.id]


@pytest.mark.asyncio
async def test_resolve_rejects_bad_subtotal_before_fetching():
    async def fetch():
        raise AssertionError("should not fetch")

    cache = RuleCache(fetch, retry=NO_WAIT)
    with pytest.raises(InvalidInputError):
        await cache.resolve(Decimal("-5"))


@pytest.mark.asyncio
async def test_registry_scopes_by_tenant():
    persistence = InMemoryRulePersistence()
    registry = RuleCacheRegistry(
        lambda tenant: RuleStore(persistence, tenant).list(), retry=NO_WAIT
    )
    t1_store = RuleStore(persistence, "T1", on_change=registry.invalidate)
    await t1_store.create(200, "gift-a")

    assert len((await registry.get("T1").get_fresh()).rules) == 1
    assert (await registry.get("T2").get_fresh()).rules == ()
    assert registry.tenant_count == 2

    await t1_store.create(300, "gift-b")
    assert registry.get("T1").get_cached().stale
    assert not registry.get("T2").get_cached().stale


def test_registry_invalidate_unknown_tenant_is_noop():
    registry = RuleCacheRegistry(lambda tenant: None)
    registry.invalidate("ghost")
    assert registry.tenant_count == 0


@pytest.mark.asyncio
async def test_retry_policy_gives_up():
    attempts = 0

    async def always_down():
        nonlocal attempts
        attempts += 1
        raise TransientError("down")

    with pytest.raises(TransientError):
        await RetryPolicy(attempts=2, backoff_base=0).run(always_down)
    assert attempts == 2


def test_retry_backoff_capped():
    policy = RetryPolicy(backoff_base=0.5, backoff_max=1.5)
    assert [policy.delay_for(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 1.5, 1.5]


def test_registry_evicts_least_recently_used_tenant():
    registry = RuleCacheRegistry(lambda tenant: None, max_tenants=2)
    first = registry.get("north")
    registry.get("south")
    assert registry.get("north") is first
    registry.get("east")

    assert registry.tenant_count == 2
    assert "north" in registry
    assert "south" not in registry
    assert "east" in registry


def test_registry_bounded_under_many_tenants():
    registry = RuleCacheRegistry(lambda tenant: None, max_tenants=64)
    for i in range(10000):
        registry.get(f"t{i}")
    assert registry.tenant_count == 64
    assert "t9999" in registry
    assert "t0" not in registry


@pytest.mark.asyncio
async def test_evicted_tenant_refetches():
    persistence = InMemoryRulePersistence()
    registry = RuleCacheRegistry(
        lambda tenant: RuleStore(persistence, tenant).list(), retry=NO_WAIT, max_tenants=1
    )
    await RuleStore(persistence, "T1").create(200, "gift-a")
    assert len((await registry.get("T1").get_fresh()).rules) == 1
    await registry.get("T2").get_fresh()

    snapshot = registry.get("T1").get_cached()
    assert snapshot.stale
    assert len((await registry.get("T1").get_fresh()).rules) == 1
