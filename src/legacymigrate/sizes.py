"""
Shard size resolution across several backing tables.

Sizes may live in any of three tables depending on when the shard was
stored. Sources are consulted in order and the first one that knows the
shard wins; the default order is blob registry, allocations, then the
legacy store table.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from legacymigrate.exceptions import RetryConfig, SizeNotFoundError, execute_with_retry
from legacymigrate.protocols import SizeSource

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_ORDER = ("blob-registry", "allocations", "store")


class FallbackSizeResolver:
    """
    Resolves shard sizes by falling back across size sources.

    Each lookup is a point query retried on transient errors.

    Args:
        sources: Size sources in precedence order.
        retry_config: Override retry configuration for point queries.

    Example:
        >>> resolver = FallbackSizeResolver([blob_registry, allocations, store])
        >>> await resolver.resolve("did:key:z6Mk...", "bagbaiera...")
        1048576
    """

    def __init__(
        self,
        sources: Sequence[SizeSource],
        *,
        retry_config: RetryConfig | None = None,
    ) -> None:
        if not sources:
            raise ValueError("FallbackSizeResolver needs at least one size source")
        self._sources = list(sources)
        self._retry_config = retry_config

    @property
    def source_names(self) -> list[str]:
        return [source.name for source in self._sources]

    async def resolve(self, space: str, shard: str) -> int:
        """
        Resolve the byte size of a shard.

        Raises:
            SizeNotFoundError: If no source knows the shard.
        """
        for source in self._sources:
            size = await execute_with_retry(
                lambda source=source: source.lookup(space, shard),
                f"size_lookup.{source.name}",
                retry_config=self._retry_config,
            )
            if size is not None:
                logger.debug("Resolved size of %s from %s: %d bytes", shard, source.name, size)
                return size

        raise SizeNotFoundError(space, shard)


__all__ = ["DEFAULT_SOURCE_ORDER", "FallbackSizeResolver"]
