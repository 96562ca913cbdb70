"""
Migration orchestrator.

Wires the step machine, the progress store and the collaborators into a
run over one of several targets:
- a list of customers (from a customers file) or a single customer
- a single space
- a single upload root within a space
- a sample of uploads across all spaces

For customer and space targets, progress is tracked per space and rolled
up per customer. Completed spaces are skipped without querying the upload
source, which makes re-running the same target after a crash cheap.
Progress store errors never stop a run; they are logged and the run
continues, relying on the idempotence of every step.

Example:
    >>> orchestrator = MigrationOrchestrator(collaborators, spaces, customers, config)
    >>> summary = await orchestrator.run(RunTarget(customers=("did:mailto:x",)))
    >>> orchestrator.save_results(summary, RunTarget(customers=("did:mailto:x",)))
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from pathlib import Path
from typing import TypeVar

from legacymigrate.classifier import FailureHistogram, outcome_reason
from legacymigrate.config import MigrationConfig
from legacymigrate.exceptions import UploadNotFoundError
from legacymigrate.machine import MigrationStepMachine
from legacymigrate.models import ProgressStatus, SingleStepMode, UploadRecord
from legacymigrate.observability import (
    ATTR_COMPLETED_UPLOADS,
    ATTR_CUSTOMER,
    ATTR_INSTANCE_ID,
    ATTR_SPACE,
    ATTR_VERIFY_ONLY,
    Tracer,
    create_tracer,
)
from legacymigrate.ownership import OwnershipCache
from legacymigrate.planner import InstanceAssignment
from legacymigrate.protocols import Collaborators
from legacymigrate.report import RunSummary, results_filename, write_results
from legacymigrate.repositories import CustomerProgressRepository, SpaceProgressRepository
from legacymigrate.steps import StepExecutors
from legacymigrate.verification import MigrationVerifier

logger = logging.getLogger(__name__)

T = TypeVar("T")


def load_customers_file(path: Path) -> list[str]:
    """
    Read the customers to migrate from a file.

    Accepts either a JSON array of customer identifiers or an instance
    assignment file written by the partition planner.

    Raises:
        ValueError: If the file holds neither.
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict) and "customers" in data:
        return InstanceAssignment.model_validate(data).customers
    if not isinstance(data, list) or not all(isinstance(c, str) for c in data):
        raise ValueError("Customers file must contain an array of customer DIDs")
    return data


@dataclass(frozen=True)
class RunTarget:
    """
    What a run migrates.

    Attributes:
        customers: Customers to process with customer-level tracking.
        customer: A single customer, processed like a one-entry customer list.
        space: A single space; also scopes ``cid``.
        cid: A single upload root; requires ``space``.
        limit: Maximum uploads for the run. None applies the default: the
            sample limit without a filter, unlimited with one.
    """

    customers: tuple[str, ...] = ()
    customer: str | None = None
    space: str | None = None
    cid: str | None = None
    limit: int | None = None

    def __post_init__(self) -> None:
        if self.cid and not self.space:
            raise ValueError("A space is required when migrating a single upload by CID")
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"limit must be >= 1, got {self.limit}")

    @property
    def has_filter(self) -> bool:
        return bool(self.customers or self.customer or self.space or self.cid)

    def resolve_limit(self, default_sample_limit: int) -> int | None:
        if self.limit is not None:
            return self.limit
        return None if self.has_filter else default_sample_limit

    @property
    def all_customers(self) -> list[str]:
        """Customer list with the single customer first and duplicates removed."""
        ordered = [self.customer] if self.customer else []
        ordered.extend(self.customers)
        return list(dict.fromkeys(ordered))


@dataclass
class _SpaceRun:
    processed: int = 0
    skipped: int = 0
    total_uploads: int = 0
    truncated: bool = False
    last_root: str | None = None
    failures: FailureHistogram = field(default_factory=FailureHistogram)


class _LimitReached(Exception):
    pass


class MigrationOrchestrator:
    """
    Drives customers -> spaces -> uploads through the step machine.

    Args:
        collaborators: Collaborator implementations.
        space_progress: Space progress repository.
        customer_progress: Customer progress repository.
        config: Run configuration.
        ownership: Shared ownership cache; one is created over
            ``collaborators.ownership`` if omitted.
        machine: Step machine; one is built from the collaborators if omitted.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing (default True).
    """

    def __init__(
        self,
        collaborators: Collaborators,
        space_progress: SpaceProgressRepository,
        customer_progress: CustomerProgressRepository,
        config: MigrationConfig | None = None,
        *,
        ownership: OwnershipCache | None = None,
        machine: MigrationStepMachine | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._c = collaborators
        self._spaces = space_progress
        self._customers = customer_progress
        self._config = config or MigrationConfig()
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled
        self._ownership = ownership or OwnershipCache(collaborators.ownership)
        self._machine = machine or self._build_machine()
        self._summary = RunSummary()
        self._verify_only = False
        self._single_step: SingleStepMode | None = None
        self._limit: int | None = None
        self._processed = 0

    def _build_machine(self) -> MigrationStepMachine:
        steps = StepExecutors(
            self._c, self._ownership, self._config, tracer=self._tracer
        )
        verifier = MigrationVerifier(self._c.oracle, self._c.claims_store, tracer=self._tracer)
        return MigrationStepMachine(steps, verifier, self._config, tracer=self._tracer)

    @property
    def ownership(self) -> OwnershipCache:
        return self._ownership

    async def run(
        self,
        target: RunTarget,
        *,
        verify_only: bool = False,
        single_step: SingleStepMode | None = None,
    ) -> RunSummary:
        """
        Migrate (or verify) every upload of a target.

        Verify-only and single-step runs never write progress and do not
        consult it either: they always act on every upload in scope.

        Raises:
            UploadNotFoundError: If a single-upload target does not exist.
        """
        self._summary = RunSummary(verify_only=verify_only, single_step=single_step)
        self._verify_only = verify_only
        self._single_step = single_step
        self._limit = target.resolve_limit(self._config.default_sample_limit)
        self._processed = 0

        with self._tracer.span(
            "legacymigrate.orchestrator.run",
            {ATTR_VERIFY_ONLY: verify_only, ATTR_INSTANCE_ID: self._config.instance_id},
        ):
            logger.info(
                "Limit: %s", "unlimited" if self._limit is None else f"{self._limit} uploads"
            )
            try:
                if target.cid and target.space:
                    await self._run_single_upload(target.space, target.cid)
                elif target.all_customers:
                    for customer in target.all_customers:
                        await self._run_customer(customer)
                elif target.space:
                    customer = await self._ownership.customer_of(target.space)
                    await self._run_space(customer, target.space)
                    if self._limit_reached:
                        raise _LimitReached()
                else:
                    await self._run_sample()
            except _LimitReached:
                logger.info("Upload limit of %d reached", self._limit)

        return self._summary

    def save_results(self, summary: RunSummary, target: RunTarget) -> Path:
        """Write the run's outcomes to a timestamped file in results_dir."""
        filename = results_filename(
            verify_only=summary.verify_only,
            customer=target.customer,
            space=target.space,
            cid=target.cid,
        )
        path = write_results(summary.outcomes, self._config.results_dir / filename)
        logger.info("Results saved to: %s", path)
        return path

    @property
    def _tracking(self) -> bool:
        return not self._verify_only and self._single_step is None

    @property
    def _limit_reached(self) -> bool:
        return self._limit is not None and self._processed >= self._limit

    async def _guard(self, operation: Awaitable[T], description: str) -> T | None:
        try:
            return await operation
        except Exception as e:
            logger.warning("Failed to %s: %s", description, e)
            return None

    async def _migrate(self, upload: UploadRecord) -> None:
        self._processed += 1
        outcome = await self._machine.migrate_upload(
            upload,
            single_step=self._single_step,
            verify_only=self._verify_only,
            position=self._processed,
            total=self._limit,
        )
        self._summary.record(outcome)

    async def _pause(self) -> None:
        if self._config.upload_delay_s > 0:
            await asyncio.sleep(self._config.upload_delay_s)

    async def _run_single_upload(self, space: str, cid: str) -> None:
        upload = await self._c.uploads.get_upload(space, cid)
        if upload is None:
            raise UploadNotFoundError(space, cid)
        await self._migrate(upload)

    async def _run_sample(self) -> None:
        async for upload in self._c.uploads.sample_uploads(self._limit or 0):
            await self._migrate(upload)
            if self._limit_reached:
                raise _LimitReached()
            await self._pause()

    async def _run_customer(self, customer: str) -> None:
        with self._tracer.span(
            "legacymigrate.orchestrator.process_customer", {ATTR_CUSTOMER: customer}
        ):
            if self._tracking:
                completed = await self._guard(
                    self._customers.is_customer_completed(customer),
                    f"check status of customer {customer}",
                )
                if completed:
                    logger.info("Customer %s already completed. Skipping.", customer)
                    self._summary.skipped_customers.add(customer)
                    return
                await self._guard(
                    self._customers.mark_customer_in_progress(customer),
                    f"mark customer {customer} in progress",
                )

            spaces = await self._ownership.spaces_of(customer)
            logger.info("Customer %s: %d spaces", customer, len(spaces))

            completed_spaces = 0
            completed_uploads = 0
            total_uploads = 0
            failures = FailureHistogram()
            incomplete = False
            try:
                for space in spaces:
                    run = await self._run_space(customer, space)
                    total_uploads += run.total_uploads
                    completed_uploads += run.processed
                    failures.merge(run.failures)
                    if self._space_completed(run):
                        completed_spaces += 1
                    else:
                        incomplete = True
                    if self._limit_reached:
                        raise _LimitReached()
            finally:
                if self._tracking:
                    await self._roll_up_customer(
                        customer,
                        total_spaces=len(spaces),
                        completed_spaces=completed_spaces,
                        total_uploads=total_uploads,
                        completed_uploads=completed_uploads,
                        failures=failures,
                        incomplete=incomplete,
                    )

    async def _roll_up_customer(
        self,
        customer: str,
        *,
        total_spaces: int,
        completed_spaces: int,
        total_uploads: int,
        completed_uploads: int,
        failures: FailureHistogram,
        incomplete: bool,
    ) -> None:
        await self._guard(
            self._customers.update_customer_progress(
                customer,
                total_spaces=total_spaces,
                completed_spaces=completed_spaces,
                total_uploads=total_uploads,
                completed_uploads=completed_uploads,
            ),
            f"update progress of customer {customer}",
        )
        if failures:
            await self._guard(
                self._customers.mark_customer_failed(customer, failures.to_json()),
                f"mark customer {customer} failed",
            )
        elif not incomplete and completed_spaces == total_spaces:
            await self._guard(
                self._customers.mark_customer_completed(customer),
                f"mark customer {customer} completed",
            )

    @staticmethod
    def _space_completed(run: _SpaceRun) -> bool:
        return not run.failures and not run.skipped and not run.truncated

    async def _run_space(self, customer: str | None, space: str) -> _SpaceRun:
        """
        Process one space.

        Returns a _SpaceRun whose ``processed`` counts uploads handled in
        this run, or the stored completed count for an already completed
        space. When the upload limit stops the run, one extra upload is
        fetched to tell a truncated space from one that ended exactly at
        the limit.
        """
        run = _SpaceRun()
        track = self._tracking and customer is not None

        with self._tracer.span(
            "legacymigrate.orchestrator.process_space",
            {ATTR_SPACE: space, ATTR_CUSTOMER: customer or ""},
        ) as span:
            if track:
                assert customer is not None
                skip = await self._prepare_space(customer, space, run)
                if skip:
                    return run

            fetch = None if self._limit is None else self._limit - self._processed + 1
            async for upload in self._c.uploads.list_uploads(space, fetch):
                if self._limit_reached:
                    run.truncated = True
                    break
                await self._migrate(upload)
                run.processed += 1
                run.last_root = upload.root

                outcome = self._summary.outcomes[-1]
                if outcome.skipped:
                    run.skipped += 1
                reason = outcome_reason(outcome)
                if reason is not None:
                    run.failures.add(reason)

                if track and run.processed % self._config.checkpoint_interval == 0:
                    await self._checkpoint(customer, space, run)

                if not self._limit_reached:
                    await self._pause()

            if span is not None:
                span.set_attribute(ATTR_COMPLETED_UPLOADS, run.processed)

            if track:
                assert customer is not None
                await self._finish_space(customer, space, run)

        return run

    async def _prepare_space(self, customer: str, space: str, run: _SpaceRun) -> bool:
        """Create or resume the progress record; True if the space is already done."""
        progress = await self._guard(
            self._spaces.get_space_progress(customer, space),
            f"read progress of space {space}",
        )
        if progress is not None and progress.status == ProgressStatus.COMPLETED:
            logger.info("  Space %s already completed. Skipping.", space)
            run.processed = progress.completed_uploads
            run.total_uploads = progress.total_uploads
            self._summary.skipped_spaces.add(space)
            return True

        if progress is not None:
            run.total_uploads = progress.total_uploads
            if progress.status != ProgressStatus.IN_PROGRESS:
                await self._guard(
                    self._spaces.mark_space_in_progress(customer, space),
                    f"resume space {space}",
                )
            return False

        total = await self._guard(
            self._c.uploads.count_uploads(space), f"count uploads of space {space}"
        )
        run.total_uploads = total or 0
        await self._guard(
            self._spaces.create_space_progress(
                customer,
                space,
                run.total_uploads,
                instance_id=self._config.instance_id,
                worker_id=self._config.worker_id,
            ),
            f"create progress for space {space}",
        )
        return False

    async def _checkpoint(self, customer: str, space: str, run: _SpaceRun) -> None:
        await self._guard(
            self._spaces.update_space_progress(customer, space, run.processed, run.last_root),
            f"checkpoint space {space}",
        )

    async def _finish_space(self, customer: str, space: str, run: _SpaceRun) -> None:
        if run.processed:
            await self._checkpoint(customer, space, run)

        if run.failures:
            await self._guard(
                self._spaces.mark_space_failed(customer, space, run.failures.to_json()),
                f"mark space {space} failed",
            )
        elif self._space_completed(run):
            await self._guard(
                self._spaces.mark_space_completed(customer, space),
                f"mark space {space} completed",
            )
        else:
            logger.info(
                "  Space %s left in progress (%d skipped, limit reached: %s)",
                space,
                run.skipped,
                run.truncated,
            )


__all__ = [
    "MigrationOrchestrator",
    "RunTarget",
    "load_customers_file",
]
