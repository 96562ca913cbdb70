"""
Unit tests for OwnershipCache.
"""

import pytest

from legacymigrate.ownership import OwnershipCache
from tests.fixtures import CUSTOMER, OTHER_SPACE, SPACE, FakeOwnershipIndex, FakeWorld


class TestOwnershipCache:
    """Tests for the read-through ownership cache."""

    @pytest.fixture
    def cache(self, world: FakeWorld) -> OwnershipCache:
        world.add_space(CUSTOMER, SPACE)
        world.add_space(CUSTOMER, OTHER_SPACE)
        return OwnershipCache(FakeOwnershipIndex(world))

    @pytest.mark.asyncio
    async def test_hits_are_cached(self, world: FakeWorld, cache: OwnershipCache) -> None:
        assert await cache.customer_of(SPACE) == CUSTOMER
        assert await cache.customer_of(SPACE) == CUSTOMER

        assert world.calls["ownership.customer_of"] == 1
        stats = cache.stats()
        assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)
        assert stats.hit_rate == 0.5

    @pytest.mark.asyncio
    async def test_misses_are_cached(self, world: FakeWorld, cache: OwnershipCache) -> None:
        assert await cache.customer_of("did:key:zOrphan") is None
        assert await cache.customer_of("did:key:zOrphan") is None
        assert world.calls["ownership.customer_of"] == 1

    @pytest.mark.asyncio
    async def test_spaces_of_primes_cache(self, world: FakeWorld, cache: OwnershipCache) -> None:
        assert await cache.spaces_of(CUSTOMER) == [SPACE, OTHER_SPACE]
        assert await cache.customer_of(OTHER_SPACE) == CUSTOMER
        assert world.calls["ownership.customer_of"] == 0

    @pytest.mark.asyncio
    async def test_eviction(self, world: FakeWorld) -> None:
        world.add_space(CUSTOMER, SPACE)
        cache = OwnershipCache(FakeOwnershipIndex(world), max_entries=1)
        cache.prime("did:key:zFirst", CUSTOMER)
        await cache.customer_of(SPACE)
        assert cache.stats().size == 1

        await cache.customer_of("did:key:zFirst")
        assert world.calls["ownership.customer_of"] == 2

    def test_clear(self, cache: OwnershipCache) -> None:
        cache.prime(SPACE, CUSTOMER)
        cache.clear()
        assert cache.stats().size == 0

    def test_empty_hit_rate(self, cache: OwnershipCache) -> None:
        assert cache.stats().hit_rate == 0.0
