"""
Step executors for the per-upload step machine.

Each method performs one remote operation through the collaborators and
raises on failure; classification happens at the step machine boundary.
Every step is safe to re-run: index bytes are content-addressed, and
publishing a location claim twice leaves at most a duplicate record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from legacymigrate.config import MigrationConfig
from legacymigrate.exceptions import MigrationSpaceUnavailableError, NoShardsNoIndexError
from legacymigrate.models import (
    NO_GATEWAY_RESULT,
    GatewayResult,
    GatewaySkipped,
    MigrationStatus,
    ShardSize,
    UploadRecord,
)
from legacymigrate.observability import (
    ATTR_CUSTOMER,
    ATTR_INDEX_CID,
    ATTR_MIGRATION_SPACE,
    ATTR_SHARD_COUNT,
    ATTR_SPACE,
    ATTR_UPLOAD_ROOT,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from legacymigrate.ownership import OwnershipCache
from legacymigrate.protocols import Collaborators

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexStepResult:
    """
    Outcome of INDEX_GENERATION.

    Attributes:
        index_cid: Content id of the registered index.
        migration_space: Space that received the index artifact.
        shard_sizes: Sizes resolved while building, reused by LOCATION_CLAIMS.
    """

    index_cid: str
    migration_space: str
    shard_sizes: dict[str, int] = field(default_factory=dict)


class StepExecutors:
    """
    Performs the remote operations of each migration step.

    Args:
        collaborators: Collaborator implementations.
        ownership: Ownership cache shared with the rest of the run.
        config: Run configuration.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing (default True).
    """

    def __init__(
        self,
        collaborators: Collaborators,
        ownership: OwnershipCache,
        config: MigrationConfig | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._c = collaborators
        self._ownership = ownership
        self._config = config or MigrationConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def recover_shards(self, upload: UploadRecord) -> UploadRecord:
        """
        Fill in shards for an upload whose record lists none.

        Shards are recovered from the upload's index when an index claim
        exists.

        Raises:
            NoShardsNoIndexError: If there is no index claim to recover from.
        """
        logger.warning("  Upload %s has no shards in the upload table", upload.root)
        result = await self._c.oracle.query(upload.root)
        if not result.has_index_claim:
            raise NoShardsNoIndexError(upload.space, upload.root)

        if not result.index_shards:
            logger.warning("  Index claim for %s returned no shard data", upload.root)
            return upload

        logger.info(
            "  Recovered %d shard(s) for %s from its index", len(result.index_shards), upload.root
        )
        return upload.with_shards(result.index_shards)

    async def analyze(
        self,
        upload: UploadRecord,
        *,
        force_gateway_auth: bool = False,
    ) -> MigrationStatus:
        """
        Derive what is still missing for an upload.

        Gateway authorization is needed alongside any other missing work, or
        when forced by an isolated gateway-auth run, and only when the
        pipeline includes it at all.

        Args:
            upload: Upload with shards resolved.
            force_gateway_auth: Require gateway auth even if nothing else is missing.
        """
        with self._tracer.span_with_kind(
            "legacymigrate.steps.analyze",
            SpanKindEnum.CLIENT,
            {ATTR_SPACE: upload.space, ATTR_UPLOAD_ROOT: upload.root},
        ):
            result = await self._c.oracle.query(upload.root)

        shards_needing = tuple(result.shards_needing_location_claims(upload.shards, upload.space))
        needs_index = not result.has_index_claim
        needs_location = (
            not result.has_location_claim or not result.location_has_space or bool(shards_needing)
        )
        needs_gateway = self._config.gateway_auth_required and (
            needs_index or needs_location or force_gateway_auth
        )

        status = MigrationStatus(
            has_index_claim=result.has_index_claim,
            has_location_claim=result.has_location_claim,
            location_has_space=result.location_has_space,
            shards_needing_location_claims=shards_needing,
            needs_index_generation=needs_index,
            needs_location_claims=needs_location,
            needs_gateway_auth=needs_gateway,
            index_cid=result.index_cid,
        )

        logger.info(
            "  Index claim: %s | Location claims: %s | Space information: %s",
            "exists" if status.has_index_claim else "missing",
            "exists" if status.has_location_claim else "missing",
            "present" if status.location_has_space else "missing",
        )
        return status

    async def migration_space_for(self, space: str) -> tuple[str, str]:
        """
        Resolve the customer of a space and its migration space.

        Returns:
            Tuple of (customer, migration space).

        Raises:
            MigrationSpaceUnavailableError: If no customer owns the space.
        """
        customer = await self._ownership.customer_of(space)
        if customer is None:
            raise MigrationSpaceUnavailableError("No customer found for space", space=space)
        migration_space = await self._c.migration_spaces.get_or_create(customer)
        return customer, migration_space

    async def build_and_register_index(
        self,
        upload: UploadRecord,
        customer: str,
        migration_space: str,
    ) -> IndexStepResult:
        """
        Build, store, claim and register the sharded index of an upload.

        The artifact's own location claim is published before the index is
        registered; the indexing service needs it to fetch the index.
        """
        with self._tracer.span_with_kind(
            "legacymigrate.steps.build_and_register_index",
            SpanKindEnum.CLIENT,
            {
                ATTR_SPACE: upload.space,
                ATTR_UPLOAD_ROOT: upload.root,
                ATTR_CUSTOMER: customer,
                ATTR_MIGRATION_SPACE: migration_space,
                ATTR_SHARD_COUNT: len(upload.shards),
            },
        ) as span:
            shard_sizes: dict[str, int] = {}
            for shard in upload.shards:
                shard_sizes[shard] = await self._c.sizes.resolve(upload.space, shard)
                logger.debug("    %s: %d bytes", shard, shard_sizes[shard])

            index = await self._c.index_builder.build(
                upload.root,
                [ShardSize(cid=cid, size=size) for cid, size in shard_sizes.items()],
            )
            if span is not None:
                span.set_attribute(ATTR_INDEX_CID, index.content_id)

            location = await self._c.index_publisher.upload_blob(migration_space, index)
            await self._c.claims.publish_location(
                migration_space, index.content_id, len(index.data), location
            )
            await self._c.index_publisher.register_index(upload.space, migration_space, index)
            await self._c.migration_spaces.record_index(customer)

        logger.info(
            "  Index %s built (%d bytes) and registered in %s",
            index.content_id,
            len(index.data),
            migration_space,
        )
        return IndexStepResult(
            index_cid=index.content_id,
            migration_space=migration_space,
            shard_sizes=shard_sizes,
        )

    async def republish_location_claims(
        self,
        upload: UploadRecord,
        shards: tuple[str, ...],
        known_sizes: dict[str, int] | None = None,
    ) -> int:
        """
        Publish location claims carrying the upload's space.

        Each published claim is followed by an advertisement job. The first
        failure aborts the step.

        Args:
            upload: The upload being migrated.
            shards: Only the shards that still lack a claim with the space.
            known_sizes: Sizes already resolved by INDEX_GENERATION.

        Returns:
            Number of claims published.
        """
        known_sizes = known_sizes or {}
        with self._tracer.span_with_kind(
            "legacymigrate.steps.republish_location_claims",
            SpanKindEnum.PRODUCER,
            {
                ATTR_SPACE: upload.space,
                ATTR_UPLOAD_ROOT: upload.root,
                ATTR_SHARD_COUNT: len(shards),
            },
        ):
            for shard in shards:
                size = known_sizes.get(shard)
                if size is None:
                    size = await self._c.sizes.resolve(upload.space, shard)
                location = self._config.location_for(shard)
                await self._c.claims.publish_location(upload.space, shard, size, location)
                await self._c.advertisements.enqueue(upload.space, shard, location)

        logger.info("  Publishing claims: complete (%d/%d)", len(shards), len(shards))
        return len(shards)

    async def grant_gateway_auth(self, space: str) -> GatewayResult:
        """
        Ask the gateway to serve content of a space.

        An authorizer that returns nothing is recorded as a skipped grant
        with reason NO_GATEWAY_RESULT.
        """
        with self._tracer.span_with_kind(
            "legacymigrate.steps.grant_gateway_auth",
            SpanKindEnum.CLIENT,
            {ATTR_SPACE: space},
        ):
            result = await self._c.gateway.grant(space)

        if result is None:
            result = GatewaySkipped(reason=NO_GATEWAY_RESULT)
        if result.success:
            logger.info("  Gateway authorization: granted")
        elif result.skipped:
            logger.info("  Gateway authorization: skipped (%s)", result.reason)
        else:
            logger.warning("  Gateway authorization: failed (%s)", result.reason)
        return result


__all__ = ["IndexStepResult", "StepExecutors"]
