"""
Per-upload migration step machine.

Drives one upload through:

    INIT -> ANALYZE -> INDEX_GENERATION -> LOCATION_CLAIMS -> GATEWAY_AUTH -> VERIFY

Steps whose work the remote world already reflects are skipped, and an
upload with nothing missing short-circuits to COMPLETE after ANALYZE
without touching any other system. Exceptions raised by a step are caught
here, classified by the step that was running, and turned into a failed
UploadOutcome; later steps are not attempted.

Modes:
    - verify_only: skip straight to VERIFY, no remote mutation.
    - single_step: run only one step and return early (isolated debugging
      of one remote integration).

Example:
    >>> machine = MigrationStepMachine(steps, verifier, config)
    >>> outcome = await machine.migrate_upload(upload)
    >>> outcome.success, outcome.failure_reason
    (True, None)
"""

from __future__ import annotations

import logging

from legacymigrate.classifier import classify_step_failure, classify_verification
from legacymigrate.config import MigrationConfig
from legacymigrate.exceptions import IndexingServiceUnavailableError
from legacymigrate.models import (
    FailureReason,
    GatewayResult,
    MigrationStatus,
    SingleStepMode,
    Step,
    UploadOutcome,
    UploadRecord,
)
from legacymigrate.observability import (
    ATTR_ALREADY_MIGRATED,
    ATTR_FAILURE_REASON,
    ATTR_SINGLE_STEP_MODE,
    ATTR_SPACE,
    ATTR_STEP,
    ATTR_UPLOAD_ROOT,
    ATTR_VERIFY_ONLY,
    Tracer,
    create_tracer,
)
from legacymigrate.steps import StepExecutors
from legacymigrate.verification import MigrationVerifier

logger = logging.getLogger(__name__)

_RULE = "━" * 70


class MigrationStepMachine:
    """
    Drives single uploads through the ordered migration steps.

    Args:
        steps: Step executors.
        verifier: Independent verifier used by VERIFY.
        config: Run configuration.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing (default True).
    """

    def __init__(
        self,
        steps: StepExecutors,
        verifier: MigrationVerifier,
        config: MigrationConfig | None = None,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._steps = steps
        self._verifier = verifier
        self._config = config or MigrationConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def migrate_upload(
        self,
        upload: UploadRecord,
        *,
        single_step: SingleStepMode | None = None,
        verify_only: bool = False,
        position: int | None = None,
        total: int | None = None,
    ) -> UploadOutcome:
        """
        Migrate one upload.

        Args:
            upload: The upload to migrate.
            single_step: Run only this step and return early.
            verify_only: Only verify; make no remote changes.
            position: 1-based position in the run, for the step trace.
            total: Total uploads in the run, for the step trace.

        Returns:
            UploadOutcome; never raises for step failures.
        """
        attributes = {
            ATTR_SPACE: upload.space,
            ATTR_UPLOAD_ROOT: upload.root,
            ATTR_VERIFY_ONLY: verify_only,
        }
        if single_step is not None:
            attributes[ATTR_SINGLE_STEP_MODE] = single_step.value

        with self._tracer.span("legacymigrate.machine.migrate_upload", attributes) as span:
            self._log_header(upload, position, total)
            outcome = await self._run(upload, single_step, verify_only)
            if span is not None:
                span.set_attribute(ATTR_ALREADY_MIGRATED, outcome.already_migrated)
                if outcome.failure_reason is not None:
                    span.set_attribute(ATTR_FAILURE_REASON, outcome.failure_reason.value)
            return outcome

    async def _run(
        self,
        upload: UploadRecord,
        single_step: SingleStepMode | None,
        verify_only: bool,
    ) -> UploadOutcome:
        step = Step.INIT
        try:
            if not upload.shards:
                upload = await self._steps.recover_shards(upload)

            if verify_only:
                step = Step.VERIFY
                logger.info("Verify-only mode: checking migration status")
                verification = await self._verifier.verify(upload, None)
                return UploadOutcome(
                    success=verification.success,
                    root=upload.root,
                    space=upload.space,
                    verify_only=True,
                    verification=verification,
                    failure_reason=classify_verification(verification, None),
                    error=None if verification.success else verification.details,
                )

            step = Step.ANALYZE
            logger.info("STEP 1: Analyze migration status")
            status = await self._steps.analyze(
                upload,
                force_gateway_auth=single_step is SingleStepMode.GATEWAY_AUTH,
            )
            self._log_actions(status)

            if status.already_migrated:
                logger.info("Upload already fully migrated")
                return UploadOutcome(
                    success=True,
                    root=upload.root,
                    space=upload.space,
                    already_migrated=True,
                    index_cid=status.index_cid,
                    status=status,
                )

            index_cid = status.index_cid
            migration_space: str | None = None
            shard_sizes: dict[str, int] = {}

            step = Step.INDEX_GENERATION
            logger.info("STEP 2: Generate and register index")
            if status.needs_index_generation and self._runs(single_step, step):
                customer, migration_space = await self._steps.migration_space_for(upload.space)
                index_result = await self._steps.build_and_register_index(
                    upload, customer, migration_space
                )
                index_cid = index_result.index_cid
                shard_sizes = index_result.shard_sizes

                if single_step is SingleStepMode.INDEX:
                    logger.info("Single-step mode: index only")
                    return UploadOutcome(
                        success=True,
                        root=upload.root,
                        space=upload.space,
                        single_step=single_step,
                        migration_space=migration_space,
                        index_cid=index_cid,
                        status=status,
                    )
            else:
                self._log_skip(status.needs_index_generation, single_step, "index already exists")

            step = Step.LOCATION_CLAIMS
            logger.info("STEP 3: Republish location claims")
            shards_republished = 0
            if status.needs_location_claims and self._runs(single_step, step):
                logger.info(
                    "  Shards to republish: %d", len(status.shards_needing_location_claims)
                )
                shards_republished = await self._steps.republish_location_claims(
                    upload, status.shards_needing_location_claims, shard_sizes
                )

                if single_step is SingleStepMode.LOCATION_CLAIMS:
                    logger.info("Single-step mode: location claims only")
                    return UploadOutcome(
                        success=True,
                        root=upload.root,
                        space=upload.space,
                        single_step=single_step,
                        shards_republished=shards_republished,
                        status=status,
                    )
            else:
                self._log_skip(
                    status.needs_location_claims,
                    single_step,
                    "location claims already have space information",
                )

            step = Step.GATEWAY_AUTH
            logger.info("STEP 4: Create gateway authorization")
            gateway_result: GatewayResult | None = None
            if status.needs_gateway_auth and self._runs(single_step, step):
                gateway_result = await self._steps.grant_gateway_auth(upload.space)

                if single_step is SingleStepMode.GATEWAY_AUTH:
                    logger.info("Single-step mode: gateway auth only")
                    return UploadOutcome(
                        success=True,
                        root=upload.root,
                        space=upload.space,
                        single_step=single_step,
                        gateway_result=gateway_result,
                        status=status,
                    )
            else:
                self._log_skip(status.needs_gateway_auth, single_step, "gateway auth not required")

            step = Step.VERIFY
            logger.info("STEP 5: Verify migration")
            verification = await self._verifier.verify(
                upload,
                gateway_result,
                allow_gateway_skip=self._config.accept_missing_delegation,
            )
            reason = classify_verification(verification, gateway_result)
            if reason is None:
                logger.info("Upload migrated: %s", upload.root)
            else:
                logger.warning("Verification failed for %s: %s", upload.root, reason.value)

            return UploadOutcome(
                success=verification.success,
                root=upload.root,
                space=upload.space,
                single_step=single_step,
                migration_space=migration_space,
                index_cid=index_cid,
                shards_republished=shards_republished,
                status=status,
                gateway_result=gateway_result,
                verification=verification,
                failure_reason=reason,
                error=None if verification.success else verification.details,
            )
        except IndexingServiceUnavailableError as e:
            logger.warning("Indexing service unavailable for %s, skipping: %s", upload.root, e)
            return UploadOutcome(
                success=False,
                root=upload.root,
                space=upload.space,
                skipped=True,
                failed_step=step,
                failure_reason=FailureReason.INDEXING_SERVICE_500,
                error=str(e),
            )
        except Exception as e:
            reason = classify_step_failure(step, e)
            logger.exception("Migration failed for %s at %s: %s", upload.root, step.value, e)
            return UploadOutcome(
                success=False,
                root=upload.root,
                space=upload.space,
                failed_step=step,
                failure_reason=reason,
                error=str(e),
            )

    def _runs(self, single_step: SingleStepMode | None, step: Step) -> bool:
        return single_step is None or single_step.step is step

    def _log_skip(self, needed: bool, single_step: SingleStepMode | None, reason: str) -> None:
        if needed and single_step is not None:
            logger.info("  Status: SKIPPED (single-step mode %s)", single_step.value)
        else:
            logger.info("  Status: SKIPPED (%s)", reason)

    def _log_header(self, upload: UploadRecord, position: int | None, total: int | None) -> None:
        logger.info(_RULE)
        if position and total:
            logger.info("[%d/%d] MIGRATING UPLOAD", position, total)
        else:
            logger.info("MIGRATING UPLOAD")
        logger.info(_RULE)
        logger.info("Space:  %s", upload.space)
        logger.info("Root:   %s", upload.root)
        logger.info("Shards: %d", len(upload.shards))

    def _log_actions(self, status: MigrationStatus) -> None:
        logger.info("  Actions needed:")
        logger.info(
            "    [%s] Index generation and registration",
            " " if status.needs_index_generation else "x",
        )
        logger.info(
            "    [%s] Location claims with space information",
            " " if status.needs_location_claims else "x",
        )
        logger.info("    [%s] Gateway authorization", " " if status.needs_gateway_auth else "x")


__all__ = ["MigrationStepMachine"]
