"""Rule cache: keeps a read-side copy of the rule store coherent.

Resolution runs against an immutable ``RuleSnapshot`` so the cart can be
re-evaluated on every change without a store round-trip. Coherence rules:

- ``refresh()`` publishes a new snapshot by swapping one reference. Readers
  holding the old snapshot are unaffected; nobody sees a half-built one.
- Every store mutation calls ``invalidate()`` (wired as the store's
  ``on_change`` hook) before the mutation result reaches the caller.
- A refresh that was already running when an invalidation arrived publishes
  its result still flagged stale, so the next reader fetches again.
- Snapshots older than the TTL are reported stale.
- Persistent transient failures serve the previous snapshot flagged stale.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional

from core.errors import TransientError
from core.resilience.retry import RetryPolicy
from verticals.free_gifts.domain import GiftRule, ResolutionResult
from verticals.free_gifts.resolver import active_rules, parse_subtotal, resolve

logger = logging.getLogger(__name__)

FetchRules = Callable[[], Awaitable[list[GiftRule]]]


@dataclass(frozen=True)
class RuleSnapshot:
    """Immutable view of the full rule set at one point in time."""

    rules: tuple[GiftRule, ...] = ()
    stale: bool = True
    fetched_at: Optional[float] = None
    generation: int = 0

    @property
    def ever_fetched(self) -> bool:
        return self.fetched_at is not None

    def active(self) -> list[GiftRule]:
        return active_rules(self.rules)


class RuleCache:
    """Snapshot cache for one tenant's rules."""

    def __init__(
        self,
        fetch: FetchRules,
        ttl_seconds: Optional[float] = None,
        retry: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._fetch = fetch
        self.ttl_seconds = ttl_seconds
        self.retry = retry or RetryPolicy()
        self._clock = clock

        self._snapshot = RuleSnapshot()
        self._generation = 0
        self._published = 0
        self._lock = asyncio.Lock()

    # -- Reads --

    def get_cached(self) -> RuleSnapshot:
        """Latest snapshot; flagged stale when a refresh is due."""
        snapshot = self._snapshot
        if self._is_stale(snapshot):
            return replace(snapshot, stale=True)
        return snapshot

    async def get_fresh(self) -> RuleSnapshot:
        snapshot = self.get_cached()
        if snapshot.stale:
            snapshot = await self.refresh()
        return snapshot

    async def resolve(self, subtotal: Any) -> ResolutionResult:
        """Resolve against a fresh snapshot. Validates the subtotal first."""
        amount = parse_subtotal(subtotal)
        snapshot = await self.get_fresh()
        return resolve(amount, snapshot.rules)

    # -- Writes --

    def invalidate(self) -> None:
        self._generation += 1
        logger.debug("rule cache invalidated (generation=%d)", self._generation)

    async def refresh(self) -> RuleSnapshot:
        """Fetch the full rule set and publish it as the new snapshot."""
        published_before = self._published
        async with self._lock:
            # Another caller published while we waited; reuse it if still valid.
            if self._published != published_before:
                current = self.get_cached()
                if not current.stale:
                    return current

            generation = self._generation
            try:
                rules = await self.retry.run(self._fetch)
            except TransientError:
                if not self._snapshot.ever_fetched:
                    raise
                logger.warning(
                    "rule refresh failed, serving stale snapshot from generation %d",
                    self._snapshot.generation,
                )
                return replace(self._snapshot, stale=True)

            self._snapshot = RuleSnapshot(
                rules=tuple(rules),
                stale=False,
                fetched_at=self._clock(),
                generation=generation,
            )
            self._published += 1
            logger.debug(
                "rule cache refreshed: %d rules (generation=%d)", len(rules), generation
            )
            return self.get_cached()

    # -- Internals --

    def _is_stale(self, snapshot: RuleSnapshot) -> bool:
        if not snapshot.ever_fetched or snapshot.generation != self._generation:
            return True
        if self.ttl_seconds is not None:
            return self._clock() - snapshot.fetched_at >= self.ttl_seconds
        return False


class RuleCacheRegistry:
    """Per-tenant RuleCaches, created lazily and capped at ``max_tenants``.

    Tenants come from request headers, so the registry evicts the least
    recently used cache once the cap is reached. An evicted tenant simply
    starts again from an unfetched cache.

    ``invalidate`` has the store's ``on_change`` signature, so a registry can
    be handed straight to ``RuleStore(on_change=registry.invalidate)``.
    """

    def __init__(
        self,
        fetch_for_tenant: Callable[[str], Awaitable[list[GiftRule]]],
        ttl_seconds: Optional[float] = None,
        retry: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        max_tenants: int = 1024,
    ):
        self._fetch_for_tenant = fetch_for_tenant
        self.ttl_seconds = ttl_seconds
        self.retry = retry
        self._clock = clock
        self.max_tenants = max(1, max_tenants)
        self._caches: OrderedDict[str, RuleCache] = OrderedDict()

    def get(self, tenant_id: str) -> RuleCache:
        cache = self._caches.get(tenant_id)
        if cache is not None:
            self._caches.move_to_end(tenant_id)
            return cache
        cache = RuleCache(
            lambda: self._fetch_for_tenant(tenant_id),
            ttl_seconds=self.ttl_seconds,
            retry=self.retry,
            clock=self._clock,
        )
        self._caches[tenant_id] = cache
        while len(self._caches) > self.max_tenants:
            evicted, _ = self._caches.popitem(last=False)
            logger.debug("evicted rule cache for tenant %s", evicted)
        return cache

    def invalidate(self, tenant_id: str) -> None:
        cache = self._caches.get(tenant_id)
        if cache is not None:
            cache.invalidate()

    def __contains__(self, tenant_id: str) -> bool:
        return tenant_id in self._caches

    @property
    def tenant_count(self) -> int:
        return len(self._caches)
