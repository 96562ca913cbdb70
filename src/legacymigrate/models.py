"""
Data models for the legacy migration engine.

Contains:
- SpaceIdentifier: Tagged variant (DidSpace | RawKeySpace) for claim space fields
- Step: Per-upload step machine states
- FailureReason: Closed failure taxonomy
- ProgressStatus: Lifecycle of space and customer progress records
- SingleStepMode: Isolated single-step runs used for debugging one integration
- UploadRecord: Immutable upload read from the upload source
- Claim / IndexingResult: What the indexing oracle reports for a content id
- MigrationStatus: Remote state of one upload, recomputed every run
- GatewayOk / GatewaySkipped / GatewayFailed: Gateway authorization results
- VerificationResult: Outcome of the independent re-query
- UploadOutcome: Per-upload result written to the results file
- SpaceProgress / CustomerProgress: Persistent progress records

Usage:
    >>> from legacymigrate.models import UploadRecord, parse_space_identifier
    >>>
    >>> upload = UploadRecord(space="did:key:z6Mk...", root="bafy...", shards=("bagb...",))
    >>> parse_space_identifier("did:key:z6Mk...").did
    'did:key:z6Mk...'
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any

_B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def _base58btc(data: bytes) -> str:
    """Encode bytes as base58btc without the multibase prefix."""
    number = int.from_bytes(data, "big")
    encoded = ""
    while number > 0:
        number, remainder = divmod(number, 58)
        encoded = _B58_ALPHABET[remainder] + encoded
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "1" * leading_zeros + encoded


@dataclass(frozen=True)
class DidSpace:
    """A space given directly as a DID string."""

    did: str


@dataclass(frozen=True)
class RawKeySpace:
    """
    A space given as raw multicodec-encoded public key bytes.

    The DID is derived as ``did:key:z<base58btc(key)>``.
    """

    key: bytes

    @property
    def did(self) -> str:
        return f"did:key:z{_base58btc(self.key)}"


SpaceIdentifier = DidSpace | RawKeySpace


def parse_space_identifier(value: Any) -> SpaceIdentifier | None:
    """
    Resolve the space field of a claim into a SpaceIdentifier.

    Accepts a DID string, raw key bytes, an existing SpaceIdentifier, or an
    object exposing ``did`` as an attribute or zero-argument method.

    Args:
        value: The raw space field as returned by a collaborator.

    Returns:
        The resolved identifier, or None for missing/unrecognized values.
    """
    if value is None:
        return None
    if isinstance(value, DidSpace | RawKeySpace):
        return value
    if isinstance(value, str):
        return DidSpace(value) if value else None
    if isinstance(value, bytes | bytearray | memoryview):
        return RawKeySpace(bytes(value)) if len(value) else None

    did = getattr(value, "did", None)
    if callable(did):
        did = did()
    if isinstance(did, str) and did:
        return DidSpace(did)
    return None


class Step(Enum):
    """
    States of the per-upload step machine.

    State Machine:
        INIT -> ANALYZE -> INDEX_GENERATION -> LOCATION_CLAIMS
             -> GATEWAY_AUTH -> VERIFY -> COMPLETE
        Any state -> FAILED
    """

    INIT = "init"
    ANALYZE = "analyze"
    INDEX_GENERATION = "index-generation"
    LOCATION_CLAIMS = "location-claims"
    GATEWAY_AUTH = "gateway-auth"
    VERIFY = "verify"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (Step.COMPLETE, Step.FAILED)


class FailureReason(Enum):
    """Closed taxonomy attached to every non-success outcome."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    ANALYSIS_FAILED = "ANALYSIS_FAILED"
    INDEX_GENERATION_FAILED = "INDEX_GENERATION_FAILED"
    LOCATION_CLAIM_FAILED = "LOCATION_CLAIM_FAILED"
    GATEWAY_AUTH_FAILED = "GATEWAY_AUTH_FAILED"
    MISSING_DELEGATION = "MISSING_DELEGATION"
    """Expected for ownerless legacy spaces; low triage priority."""
    INDEX_MISSING = "INDEX_MISSING"
    LOCATION_CLAIMS_MISSING = "LOCATION_CLAIMS_MISSING"
    SPACE_INFO_MISSING = "SPACE_INFO_MISSING"
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    NO_SHARDS_NO_INDEX = "NO_SHARDS_NO_INDEX"
    """Upload record is corrupt; unrecoverable for that upload."""
    INDEXING_SERVICE_500 = "INDEXING_SERVICE_500"
    """Upstream outage; the upload is skipped rather than failed."""

    @property
    def is_expected(self) -> bool:
        """True for reasons that do not indicate an infrastructure problem."""
        return self == FailureReason.MISSING_DELEGATION


class ProgressStatus(Enum):
    """Lifecycle of space and customer progress records."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """COMPLETED records are never reprocessed."""
        return self == ProgressStatus.COMPLETED


VALID_PROGRESS_TRANSITIONS: dict[ProgressStatus, set[ProgressStatus]] = {
    ProgressStatus.PENDING: {
        ProgressStatus.IN_PROGRESS,
        ProgressStatus.COMPLETED,
        ProgressStatus.FAILED,
    },
    ProgressStatus.IN_PROGRESS: {
        ProgressStatus.IN_PROGRESS,
        ProgressStatus.COMPLETED,
        ProgressStatus.FAILED,
    },
    ProgressStatus.FAILED: {
        ProgressStatus.IN_PROGRESS,
        ProgressStatus.COMPLETED,
        ProgressStatus.FAILED,
    },
    ProgressStatus.COMPLETED: set(),
}


class SingleStepMode(Enum):
    """Run only one step of the machine and return early."""

    INDEX = "index"
    LOCATION_CLAIMS = "location-claims"
    GATEWAY_AUTH = "gateway-auth"

    @property
    def step(self) -> Step:
        return {
            SingleStepMode.INDEX: Step.INDEX_GENERATION,
            SingleStepMode.LOCATION_CLAIMS: Step.LOCATION_CLAIMS,
            SingleStepMode.GATEWAY_AUTH: Step.GATEWAY_AUTH,
        }[self]


@dataclass(frozen=True)
class UploadRecord:
    """
    An upload to migrate.

    Attributes:
        space: Owning space DID.
        root: Content address of the DAG root.
        shards: Ordered content-addressed shard identifiers (possibly empty).
    """

    space: str
    root: str
    shards: tuple[str, ...] = ()

    def with_shards(self, shards: tuple[str, ...] | list[str]) -> UploadRecord:
        return replace(self, shards=tuple(shards))


LOCATION_CLAIM = "assert/location"
INDEX_CLAIM = "assert/index"


@dataclass(frozen=True)
class Claim:
    """
    A claim reported by the indexing oracle.

    Attributes:
        type: Claim type, e.g. ``assert/location`` or ``assert/index``.
        content: Identifier of the claimed content, normalized by the oracle
            to the same form as upload shard identifiers.
        space: Space carried by a location claim, if any.
        location: Location URLs of a location claim.
    """

    type: str
    content: str
    space: SpaceIdentifier | None = None
    location: tuple[str, ...] = ()

    @property
    def is_location(self) -> bool:
        return self.type == LOCATION_CLAIM

    def has_space(self, space_did: str) -> bool:
        return self.space is not None and self.space.did == space_did


@dataclass(frozen=True)
class IndexingResult:
    """
    Result of querying the indexing oracle for one content id.

    Attributes:
        has_index_claim: An index claim covers the content.
        has_location_claim: At least one location claim was returned.
        location_has_space: At least one location claim carries a space.
        index_cid: Content id of the index, when an index claim exists.
        claims: All returned claims.
        index_shards: Shard ids recovered from the index, when one exists.
    """

    has_index_claim: bool = False
    has_location_claim: bool = False
    location_has_space: bool = False
    index_cid: str | None = None
    claims: tuple[Claim, ...] = ()
    index_shards: tuple[str, ...] = ()

    @property
    def location_claims(self) -> list[Claim]:
        return [c for c in self.claims if c.is_location]

    @property
    def spaces(self) -> list[str]:
        """Distinct space DIDs carried by location claims."""
        seen: dict[str, None] = {}
        for claim in self.location_claims:
            if claim.space is not None:
                seen.setdefault(claim.space.did)
        return list(seen)

    def claims_for(self, shard: str) -> list[Claim]:
        return [c for c in self.location_claims if c.content == shard]

    def shards_needing_location_claims(self, shards: tuple[str, ...], space_did: str) -> list[str]:
        """
        Shards lacking a location claim that carries the given space.

        Args:
            shards: Shards of the upload, in order.
            space_did: The upload's owning space.

        Returns:
            Subset of shards, in their original order.
        """
        return [
            shard
            for shard in shards
            if not any(claim.has_space(space_did) for claim in self.claims_for(shard))
        ]


@dataclass(frozen=True)
class ShardSize:
    cid: str
    size: int


@dataclass(frozen=True)
class BuiltIndex:
    """Sharded index artifact returned by the index builder."""

    content_id: str
    data: bytes
    shards: tuple[ShardSize, ...] = ()


@dataclass(frozen=True)
class MigrationStatus:
    """
    Remote state of one upload, derived from the indexing oracle.

    Never persisted: recomputing it on every run is what makes each step
    execute only when the remote world says it is still missing.
    """

    has_index_claim: bool
    has_location_claim: bool
    location_has_space: bool
    shards_needing_location_claims: tuple[str, ...]
    needs_index_generation: bool
    needs_location_claims: bool
    needs_gateway_auth: bool
    index_cid: str | None = None

    @property
    def already_migrated(self) -> bool:
        return not (
            self.needs_index_generation or self.needs_location_claims or self.needs_gateway_auth
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "has_index_claim": self.has_index_claim,
            "has_location_claim": self.has_location_claim,
            "location_has_space": self.location_has_space,
            "shards_needing_location_claims": list(self.shards_needing_location_claims),
            "needs_index_generation": self.needs_index_generation,
            "needs_location_claims": self.needs_location_claims,
            "needs_gateway_auth": self.needs_gateway_auth,
            "index_cid": self.index_cid,
        }


NO_DELEGATION_FOUND = "no-delegation-found"
NO_GATEWAY_RESULT = "no-gateway-result"


@dataclass(frozen=True)
class GatewayOk:
    """Gateway authorization was granted."""

    delegation_id: str | None = None

    success = True
    skipped = False
    reason = None

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "skipped": False, "delegation_id": self.delegation_id}


@dataclass(frozen=True)
class GatewaySkipped:
    """
    Gateway authorization was intentionally not granted.

    ``reason`` is NO_DELEGATION_FOUND when the space has no delegation
    chain to an owning account.
    """

    reason: str

    success = False
    skipped = True

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "skipped": True, "reason": self.reason}


@dataclass(frozen=True)
class GatewayFailed:
    reason: str

    success = False
    skipped = False

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "skipped": False, "reason": self.reason}


GatewayResult = GatewayOk | GatewaySkipped | GatewayFailed


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of re-querying remote state after the steps ran."""

    success: bool
    index_verified: bool
    location_claims_verified: bool
    all_shards_have_space: bool
    gateway_auth_verified: bool
    gateway_auth_skipped: bool
    shards_without_space: tuple[str, ...] = ()
    details: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "index_verified": self.index_verified,
            "location_claims_verified": self.location_claims_verified,
            "all_shards_have_space": self.all_shards_have_space,
            "gateway_auth_verified": self.gateway_auth_verified,
            "gateway_auth_skipped": self.gateway_auth_skipped,
            "shards_without_space": list(self.shards_without_space),
            "details": self.details,
        }


@dataclass(frozen=True)
class UploadOutcome:
    """
    Result of driving one upload through the step machine.

    ``skipped`` outcomes (upstream outage) are neither successes nor
    failures: the upload is picked up again by a later run.
    """

    success: bool
    root: str
    space: str
    already_migrated: bool = False
    skipped: bool = False
    verify_only: bool = False
    single_step: SingleStepMode | None = None
    failed_step: Step | None = None
    migration_space: str | None = None
    index_cid: str | None = None
    shards_republished: int = 0
    status: MigrationStatus | None = None
    gateway_result: GatewayResult | None = None
    verification: VerificationResult | None = None
    failure_reason: FailureReason | None = None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return not self.success and not self.skipped

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "root": self.root,
            "space": self.space,
            "already_migrated": self.already_migrated,
            "skipped": self.skipped,
            "verify_only": self.verify_only,
            "single_step": self.single_step.value if self.single_step else None,
            "failed_step": self.failed_step.value if self.failed_step else None,
            "migration_space": self.migration_space,
            "index_cid": self.index_cid,
            "shards_republished": self.shards_republished,
            "status": self.status.to_dict() if self.status else None,
            "gateway_result": self.gateway_result.to_dict() if self.gateway_result else None,
            "verification": self.verification.to_dict() if self.verification else None,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "error": self.error,
        }


@dataclass
class SpaceProgress:
    """
    Progress record for one (customer, space) pair.

    Attributes:
        customer: Owning customer.
        space: Space DID.
        status: Current lifecycle status.
        total_uploads: Upload count at the time the record was created.
        completed_uploads: Uploads processed; never decreases.
        last_processed_upload: Root of the last checkpointed upload.
        instance_id: Instance that created the record.
        worker_id: Worker within the instance.
        error: JSON reason histogram or free text for failed spaces.
        created_at: When the record was created.
        updated_at: When the record was last written.
    """

    customer: str
    space: str
    status: ProgressStatus = ProgressStatus.PENDING
    total_uploads: int = 0
    completed_uploads: int = 0
    last_processed_upload: str | None = None
    instance_id: str | None = None
    worker_id: str | None = None
    error: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "customer": self.customer,
            "space": self.space,
            "status": self.status.value,
            "total_uploads": self.total_uploads,
            "completed_uploads": self.completed_uploads,
            "last_processed_upload": self.last_processed_upload,
            "instance_id": self.instance_id,
            "worker_id": self.worker_id,
            "error": self.error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class CustomerProgress:
    """
    Progress record for one customer.

    Created by the partition planner at assignment time and rolled up by the
    orchestrator once all of the customer's spaces have been processed.
    """

    customer: str
    status: ProgressStatus = ProgressStatus.PENDING
    total_spaces: int = 0
    completed_spaces: int = 0
    total_uploads: int = 0
    completed_uploads: int = 0
    instance_id: str | None = None
    filter: str | None = None
    error: str | None = None
    assigned_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "customer": self.customer,
            "status": self.status.value,
            "total_spaces": self.total_spaces,
            "completed_spaces": self.completed_spaces,
            "total_uploads": self.total_uploads,
            "completed_uploads": self.completed_uploads,
            "instance_id": self.instance_id,
            "filter": self.filter,
            "error": self.error,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass(frozen=True)
class CustomerAssignment:
    """
    One customer as planned by the partition planner.

    Attributes:
        customer: Customer identifier.
        upload_count: Total uploads across the customer's spaces.
        space_count: Spaces holding at least one upload.
        empty_space_count: Spaces with no uploads.
        total_space_count: All spaces owned by the customer.
    """

    customer: str
    upload_count: int
    space_count: int = 0
    empty_space_count: int = 0
    total_space_count: int = 0
