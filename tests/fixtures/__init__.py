"""
Shared test fixtures for legacymigrate.

Usage:
    from tests.fixtures import FakeWorld

    world = FakeWorld()
    world.add_upload("did:mailto:example.com:alice", "did:key:zSpace1", "bafyroot1", ["bagshard1"])
    collaborators = world.collaborators()
"""

from tests.fixtures.world import (
    CUSTOMER,
    OTHER_CUSTOMER,
    OTHER_SPACE,
    SPACE,
    DEFAULT_SHARD_SIZE,
    FakeAdvertisementQueue,
    FakeClaimPublisher,
    FakeClaimsStore,
    FakeGatewayAuthorizer,
    FakeIndexBuilder,
    FakeIndexingOracle,
    FakeIndexPublisher,
    FakeMigrationSpaces,
    FakeOwnershipIndex,
    FakeSizeSource,
    FakeUploadSource,
    FakeWorld,
    demo_collaborators,
)

__all__ = [
    "CUSTOMER",
    "OTHER_CUSTOMER",
    "OTHER_SPACE",
    "SPACE",
    "DEFAULT_SHARD_SIZE",
    "FakeAdvertisementQueue",
    "FakeClaimPublisher",
    "FakeClaimsStore",
    "FakeGatewayAuthorizer",
    "FakeIndexBuilder",
    "FakeIndexingOracle",
    "FakeIndexPublisher",
    "FakeMigrationSpaces",
    "FakeOwnershipIndex",
    "FakeSizeSource",
    "FakeUploadSource",
    "FakeWorld",
    "demo_collaborators",
]
