"""
Read-through cache for space ownership lookups.

Each run creates one OwnershipCache and passes it to the components that
resolve customers. Misses are cached too, so a space without an owner is
only looked up once per cache.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from legacymigrate.protocols import OwnershipIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheStats:
    hits: int
    misses: int
    size: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class OwnershipCache:
    """
    Caches ``customer_of`` answers from an OwnershipIndex.

    Args:
        index: The ownership index to read through to.
        max_entries: Evict the oldest entry beyond this size (None = unbounded).

    Example:
        >>> cache = OwnershipCache(ownership_index)
        >>> customer = await cache.customer_of("did:key:z6Mk...")
        >>> cache.stats().misses
        1
    """

    def __init__(self, index: OwnershipIndex, *, max_entries: int | None = None) -> None:
        self._index = index
        self._max_entries = max_entries
        self._entries: dict[str, str | None] = {}
        self._hits = 0
        self._misses = 0

    async def customer_of(self, space: str) -> str | None:
        if space in self._entries:
            self._hits += 1
            return self._entries[space]

        self._misses += 1
        customer = await self._index.customer_of(space)
        self._store(space, customer)
        if customer is None:
            logger.debug("No customer owns space %s", space)
        return customer

    async def spaces_of(self, customer: str) -> list[str]:
        """Spaces owned by a customer; also primes the cache for each of them."""
        spaces = await self._index.spaces_of(customer)
        for space in spaces:
            self._store(space, customer)
        return spaces

    def prime(self, space: str, customer: str | None) -> None:
        self._store(space, customer)

    def stats(self) -> CacheStats:
        return CacheStats(hits=self._hits, misses=self._misses, size=len(self._entries))

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def _store(self, space: str, customer: str | None) -> None:
        self._entries[space] = customer
        if self._max_entries is not None and len(self._entries) > self._max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]


__all__ = ["CacheStats", "OwnershipCache"]
