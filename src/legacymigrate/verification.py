"""
Independent verification of an upload's migrated state.

VERIFY does not trust what the step executors reported. It re-queries the
indexing oracle and checks that:
1. an index claim exists for the root
2. every shard has at least one location claim
3. every shard has a location claim carrying the upload's space
4. gateway authorization succeeded, or was intentionally skipped

When a shard has location claims but none with the right space, the
claims store is consulted directly, since the indexing service may lag
behind freshly published claims.
"""

from __future__ import annotations

import logging

from legacymigrate.exceptions import IndexingServiceUnavailableError
from legacymigrate.models import (
    GatewayOk,
    GatewayResult,
    GatewaySkipped,
    UploadRecord,
    VerificationResult,
)
from legacymigrate.observability import (
    ATTR_SHARD_COUNT,
    ATTR_SPACE,
    ATTR_UPLOAD_ROOT,
    SpanKindEnum,
    Tracer,
    create_tracer,
)
from legacymigrate.protocols import ClaimsStore, IndexingOracle

logger = logging.getLogger(__name__)

ALL_CHECKS_PASSED = "All verification checks passed"


class MigrationVerifier:
    """
    Re-queries remote state to confirm an upload's terminal condition.

    Args:
        oracle: Indexing oracle to query.
        claims_store: Optional direct claims lookup used as a lag fallback.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing (default True).
    """

    def __init__(
        self,
        oracle: IndexingOracle,
        claims_store: ClaimsStore | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._oracle = oracle
        self._claims_store = claims_store
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def verify(
        self,
        upload: UploadRecord,
        gateway_result: GatewayResult | None,
        *,
        allow_gateway_skip: bool = False,
    ) -> VerificationResult:
        """
        Verify one upload.

        Args:
            upload: The upload, with its shards resolved.
            gateway_result: What GATEWAY_AUTH returned; None means it was not
                attempted in this run and is treated as skipped.
            allow_gateway_skip: Also accept a GatewaySkipped result.

        Returns:
            VerificationResult. Query errors produce an all-false result.

        Raises:
            IndexingServiceUnavailableError: If the oracle reports an outage.
        """
        with self._tracer.span_with_kind(
            "legacymigrate.verification.verify",
            SpanKindEnum.CLIENT,
            {
                ATTR_SPACE: upload.space,
                ATTR_UPLOAD_ROOT: upload.root,
                ATTR_SHARD_COUNT: len(upload.shards),
            },
        ):
            try:
                return await self._verify(upload, gateway_result, allow_gateway_skip)
            except IndexingServiceUnavailableError:
                raise
            except Exception as e:
                logger.error("Verification failed for %s: %s", upload.root, e)
                return VerificationResult(
                    success=False,
                    index_verified=False,
                    location_claims_verified=False,
                    all_shards_have_space=False,
                    gateway_auth_verified=False,
                    gateway_auth_skipped=False,
                    shards_without_space=upload.shards,
                    details=f"Verification error: {e}",
                )

    async def _verify(
        self,
        upload: UploadRecord,
        gateway_result: GatewayResult | None,
        allow_gateway_skip: bool,
    ) -> VerificationResult:
        root_data = await self._oracle.query(upload.root)
        index_verified = root_data.has_index_claim

        shards_without_space: list[str] = []
        all_shards_have_claims = True

        for shard in upload.shards:
            shard_claims = root_data.claims_for(shard)
            if not shard_claims:
                all_shards_have_claims = False
                shards_without_space.append(shard)
                continue

            if any(claim.has_space(upload.space) for claim in shard_claims):
                continue

            if not await self._claims_store_has_space(shard, upload.space):
                shards_without_space.append(shard)

        gateway_verified = isinstance(gateway_result, GatewayOk)
        gateway_skipped = gateway_result is None or (
            allow_gateway_skip and isinstance(gateway_result, GatewaySkipped)
        )
        all_have_space = not shards_without_space

        success = (
            index_verified
            and all_shards_have_claims
            and all_have_space
            and (gateway_verified or gateway_skipped)
        )

        issues: list[str] = []
        if not index_verified:
            issues.append("index claim missing")
        if not all_shards_have_claims:
            issues.append("location claims missing")
        if not all_have_space:
            issues.append(f"{len(shards_without_space)} shards missing space info")
        if not gateway_verified and not gateway_skipped:
            issues.append("gateway authorization failed")

        logger.info(
            "  Verify %s: index=%s locations=%s space=%s gateway=%s",
            upload.root,
            index_verified,
            all_shards_have_claims,
            all_have_space,
            "skipped" if gateway_skipped and not gateway_verified else gateway_verified,
        )

        return VerificationResult(
            success=success,
            index_verified=index_verified,
            location_claims_verified=all_shards_have_claims,
            all_shards_have_space=all_have_space,
            gateway_auth_verified=gateway_verified,
            gateway_auth_skipped=gateway_skipped,
            shards_without_space=tuple(shards_without_space),
            details=", ".join(issues) if issues else ALL_CHECKS_PASSED,
        )

    async def _claims_store_has_space(self, shard: str, space: str) -> bool:
        if self._claims_store is None:
            return False
        try:
            return await self._claims_store.has_location_claim_with_space(shard, space)
        except Exception as e:
            logger.warning("Failed to check claims store for %s: %s", shard, e)
            return False


__all__ = ["ALL_CHECKS_PASSED", "MigrationVerifier"]
