"""
Collaborator interfaces consumed by the migration engine.

The engine never needs to know how an index is built, how a claim is
signed or where a table lives: it talks to these protocols only. Concrete
implementations are supplied by a collaborator factory (see cli.py) and by
the fakes in the test suite.

Space fields coming back from collaborators must already be resolved to a
SpaceIdentifier (see models.parse_space_identifier).
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from legacymigrate.models import (
    BuiltIndex,
    GatewayResult,
    IndexingResult,
    ShardSize,
    UploadRecord,
)


@runtime_checkable
class UploadSource(Protocol):
    """Enumerates legacy upload records."""

    def list_uploads(self, space: str, limit: int | None = None) -> AsyncIterator[UploadRecord]:
        """
        Iterate uploads of one space, following pagination internally.

        Args:
            space: Space DID.
            limit: Stop after this many uploads (None for all).
        """
        ...

    def sample_uploads(self, limit: int) -> AsyncIterator[UploadRecord]:
        """Iterate uploads across all spaces, used when no filter is given."""
        ...

    async def get_upload(self, space: str, root: str) -> UploadRecord | None:
        ...

    async def count_uploads(self, space: str) -> int:
        ...


@runtime_checkable
class IndexingOracle(Protocol):
    """
    Query side of the content-claims/indexing service.

    Implementations raise IndexingServiceUnavailableError for server errors
    so the engine can skip, rather than fail, affected uploads.
    """

    async def query(self, content_id: str) -> IndexingResult:
        ...


@runtime_checkable
class IndexBuilder(Protocol):
    """Builds a sharded index; content-addressed and deterministic."""

    async def build(self, root: str, shards: Sequence[ShardSize]) -> BuiltIndex:
        ...


@runtime_checkable
class IndexPublisher(Protocol):
    """Stores index artifacts and registers them with the indexing service."""

    async def upload_blob(self, migration_space: str, index: BuiltIndex) -> str:
        """
        Store the index bytes in the migration space.

        Returns:
            Location URL of the stored artifact.
        """
        ...

    async def register_index(self, space: str, migration_space: str, index: BuiltIndex) -> None:
        ...


@runtime_checkable
class ClaimPublisher(Protocol):
    """Publishes location claims; publishing twice is harmless."""

    async def publish_location(self, space: str, shard: str, size: int, location: str) -> None:
        ...


@runtime_checkable
class AdvertisementQueue(Protocol):
    """Queues advertisement jobs for the downstream discovery system."""

    async def enqueue(self, space: str, shard: str, location: str) -> None:
        ...


@runtime_checkable
class GatewayAuthorizer(Protocol):
    """
    Grants a content-serving gateway the right to serve a space.

    Expected conditions are returned as result variants, never raised:
    a space without a delegation chain yields
    ``GatewaySkipped(reason=NO_DELEGATION_FOUND)``. Returning None is
    treated as a skipped grant.
    """

    async def grant(self, space: str) -> GatewayResult | None:
        ...


@runtime_checkable
class SizeSource(Protocol):
    """One backing table that may know shard sizes."""

    name: str

    async def lookup(self, space: str, shard: str) -> int | None:
        ...


@runtime_checkable
class SizeResolver(Protocol):
    async def resolve(self, space: str, shard: str) -> int:
        ...


@runtime_checkable
class OwnershipIndex(Protocol):
    """The space -> customer ownership mapping."""

    async def customer_of(self, space: str) -> str | None:
        ...

    async def spaces_of(self, customer: str) -> list[str]:
        ...

    def scan_segment(self, segment: int, total_segments: int) -> AsyncIterator[tuple[str, str]]:
        """
        Iterate ``(space, customer)`` pairs of one scan segment.

        Segments are disjoint and together cover the whole mapping.
        """
        ...


@runtime_checkable
class MigrationSpaces(Protocol):
    """Per-customer spaces that receive migrated index artifacts."""

    async def get_or_create(self, customer: str) -> str:
        ...

    async def record_index(self, customer: str) -> None:
        """Increment the customer's migrated-index counter."""
        ...


@runtime_checkable
class ClaimsStore(Protocol):
    """Direct read of the claims service, bypassing indexing propagation lag."""

    async def has_location_claim_with_space(self, shard: str, space: str) -> bool:
        ...


@dataclass
class Collaborators:
    """Bundle of collaborator implementations wired into one run."""

    uploads: UploadSource
    oracle: IndexingOracle
    index_builder: IndexBuilder
    index_publisher: IndexPublisher
    claims: ClaimPublisher
    advertisements: AdvertisementQueue
    gateway: GatewayAuthorizer
    sizes: SizeResolver
    ownership: OwnershipIndex
    migration_spaces: MigrationSpaces
    claims_store: ClaimsStore | None = None


__all__ = [
    "UploadSource",
    "IndexingOracle",
    "IndexBuilder",
    "IndexPublisher",
    "ClaimPublisher",
    "AdvertisementQueue",
    "GatewayAuthorizer",
    "SizeSource",
    "SizeResolver",
    "OwnershipIndex",
    "MigrationSpaces",
    "ClaimsStore",
    "Collaborators",
]
