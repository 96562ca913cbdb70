"""
Partition planner.

Divides the customer population across N migration instances by estimated
load. Planning runs once, offline:

1. Scan the space->customer ownership mapping in parallel segments,
   dropping skip-listed customers and applying the include filter.
2. Count uploads per owned space for every customer. Counting is
   checkpointed to disk so a crash resumes from the last saved batch.
3. Drop customers below ``min_uploads`` and order by upload count.
4. Assign each customer to the currently least-loaded instance.
5. Write one assignment file per instance and record every customer's
   instance in the progress store.

The greedy assignment is an online approximation of balanced
partitioning: max(load) - min(load) never exceeds the largest single
customer load.

Example:
    >>> planner = PartitionPlanner(ownership, uploads, customer_repo, PlannerConfig())
    >>> plan = await planner.plan(num_instances=5)
    >>> paths = await planner.save(plan)
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from pydantic import BaseModel, Field

from legacymigrate.config import PlannerConfig
from legacymigrate.exceptions import (
    LegacyMigrationError,
    PlanningError,
    RetryConfig,
    execute_with_retry,
)
from legacymigrate.models import CustomerAssignment
from legacymigrate.observability import (
    ATTR_CUSTOMER_COUNT,
    ATTR_INSTANCE_COUNT,
    ATTR_SEGMENT_COUNT,
    Tracer,
    create_tracer,
)
from legacymigrate.protocols import OwnershipIndex, UploadSource
from legacymigrate.repositories import CustomerProgressRepository

logger = logging.getLogger(__name__)

SIZE_BUCKETS: tuple[tuple[str, int, float], ...] = (
    ("1-10", 1, 10),
    ("11-100", 11, 100),
    ("101-1K", 101, 1_000),
    ("1K-10K", 1_001, 10_000),
    ("10K-100K", 10_001, 100_000),
    ("100K+", 100_001, float("inf")),
)

# (instances, workers per instance, label)
DEFAULT_SCENARIOS: tuple[tuple[int, int, str], ...] = (
    (5, 10, "Baseline"),
    (5, 15, "Increased Workers"),
    (5, 20, "Maximum Workers"),
    (10, 10, "Double Instances"),
    (10, 15, "Double Instances + More Workers"),
)


# =============================================================================
# Customer filters
# =============================================================================


def is_skipped(customer: str, skip_list: Iterable[str]) -> bool:
    """
    Check a customer against the skip list.

    A pattern matches the identifier itself or any identifier that extends
    it with a ``:`` segment.

    Example:
        >>> is_skipped("did:mailto:mailslurp.com:bob", ["did:mailto:mailslurp.com"])
        True
    """
    return any(customer == p or customer.startswith(p + ":") for p in skip_list)


def matches_include(customer: str, include: Sequence[str]) -> bool:
    """
    Check a customer against the include filter.

    An empty filter includes everybody. Otherwise a pattern matches exactly,
    as a ``:``-terminated prefix, or as a ``:part:`` segment anywhere in the
    identifier, so ``storacha.network`` selects every mailbox on that domain.
    """
    if not include:
        return True
    return any(
        customer == p or customer.startswith(p + ":") or f":{p}:" in customer for p in include
    )


def parse_include_filter(value: str | None) -> tuple[str, ...]:
    """Split a comma-separated include filter, dropping blanks."""
    if not value:
        return ()
    return tuple(part.strip() for part in value.split(",") if part.strip())


# =============================================================================
# Planning artifacts
# =============================================================================


class CustomerCount(BaseModel):
    """Upload statistics of one customer, as stored in the counting checkpoint."""

    customer: str
    upload_count: int
    space_count: int = 0
    empty_space_count: int = 0
    total_space_count: int = 0

    def to_assignment(self) -> CustomerAssignment:
        return CustomerAssignment(
            customer=self.customer,
            upload_count=self.upload_count,
            space_count=self.space_count,
            empty_space_count=self.empty_space_count,
            total_space_count=self.total_space_count,
        )

    @classmethod
    def from_assignment(cls, assignment: CustomerAssignment) -> CustomerCount:
        return cls(
            customer=assignment.customer,
            upload_count=assignment.upload_count,
            space_count=assignment.space_count,
            empty_space_count=assignment.empty_space_count,
            total_space_count=assignment.total_space_count,
        )


class CountingCheckpoint(BaseModel):
    """
    Resume point of the upload counting phase.

    Counts are matched back to customers by id on resume, so a changed
    customer set reuses only the counts that still apply.
    ``processed_customers`` is informational.
    """

    processed_customers: int = 0
    customers: list[CustomerCount] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class InstanceAssignment(BaseModel):
    """Contents of an ``instance-{id}-customers-{env}.json`` file."""

    instance_id: int
    environment: str
    total_customers: int
    estimated_uploads: int
    estimated_spaces: int
    customers: list[str]
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


def assignment_path(state_dir: Path, instance_id: int, environment: str) -> Path:
    return state_dir / f"instance-{instance_id}-customers-{environment}.json"


def load_instance_assignment(path: Path) -> InstanceAssignment:
    """Read an assignment file written by save_distribution."""
    return InstanceAssignment.model_validate_json(path.read_text(encoding="utf-8"))


# =============================================================================
# Ownership scan
# =============================================================================


@dataclass
class OwnershipScan:
    """
    Merged result of the segmented ownership scan.

    Attributes:
        customer_spaces: customer -> owned spaces.
        scanned: Ownership records read.
        skipped: Records dropped by the skip list or include filter.
    """

    customer_spaces: dict[str, set[str]] = field(default_factory=dict)
    scanned: int = 0
    skipped: int = 0

    def merge(self, other: OwnershipScan) -> None:
        self.scanned += other.scanned
        self.skipped += other.skipped
        for customer, spaces in other.customer_spaces.items():
            self.customer_spaces.setdefault(customer, set()).update(spaces)


async def scan_segment(
    index: OwnershipIndex,
    segment: int,
    total_segments: int,
    *,
    skip_list: Iterable[str] = (),
    include: Sequence[str] = (),
) -> OwnershipScan:
    """Scan one segment of the ownership mapping, applying customer filters."""
    skip_list = tuple(skip_list)
    result = OwnershipScan()
    started = time.monotonic()
    async for space, customer in index.scan_segment(segment, total_segments):
        result.scanned += 1
        if is_skipped(customer, skip_list) or not matches_include(customer, include):
            result.skipped += 1
            continue
        result.customer_spaces.setdefault(customer, set()).add(space)

    logger.info(
        "  [Segment %d] Complete: %d records, %d skipped in %.1fs",
        segment,
        result.scanned,
        result.skipped,
        time.monotonic() - started,
    )
    return result


async def scan_ownership(
    index: OwnershipIndex,
    segments: int,
    *,
    skip_list: Iterable[str] = (),
    include: Sequence[str] = (),
    retry_config: RetryConfig | None = None,
) -> OwnershipScan:
    """
    Scan every segment concurrently and merge the results.

    A segment that fails with a transient error is rescanned from the
    start; any other error propagates and aborts the scan.
    """
    skip_list = tuple(skip_list)

    async def scan(segment: int) -> OwnershipScan:
        return await execute_with_retry(
            lambda: scan_segment(
                index, segment, segments, skip_list=skip_list, include=include
            ),
            f"ownership_scan.segment_{segment}",
            retry_config=retry_config,
        )

    results = await asyncio.gather(*(scan(segment) for segment in range(segments)))
    merged = OwnershipScan()
    for result in results:
        merged.merge(result)
    return merged


# =============================================================================
# Upload counting
# =============================================================================


class UploadCounter:
    """
    Counts uploads per customer with a resumable on-disk checkpoint.

    Customers are processed in concurrent batches; within a customer,
    spaces are counted sequentially to bound query fan-out.

    Args:
        source: Upload source providing count_uploads.
        config: Planner configuration (concurrency, checkpoint cadence).
        retry_config: Override retry configuration for count queries.
    """

    def __init__(
        self,
        source: UploadSource,
        config: PlannerConfig | None = None,
        *,
        retry_config: RetryConfig | None = None,
    ) -> None:
        self._source = source
        self._config = config or PlannerConfig()
        self._retry_config = retry_config

    @property
    def checkpoint_path(self) -> Path:
        return self._config.checkpoint_path

    def load_checkpoint(self) -> CountingCheckpoint | None:
        path = self.checkpoint_path
        if not path.exists():
            return None
        try:
            checkpoint = CountingCheckpoint.model_validate_json(path.read_text(encoding="utf-8"))
        except ValueError as e:
            logger.warning("Ignoring unreadable counting checkpoint %s: %s", path, e)
            return None
        logger.info(
            "Resuming from checkpoint: %d customers already processed",
            checkpoint.processed_customers,
        )
        return checkpoint

    def save_checkpoint(self, processed: int, customers: list[CustomerAssignment]) -> None:
        path = self.checkpoint_path
        path.parent.mkdir(parents=True, exist_ok=True)
        checkpoint = CountingCheckpoint(
            processed_customers=processed,
            customers=[CustomerCount.from_assignment(c) for c in customers],
        )
        path.write_text(checkpoint.model_dump_json(indent=2), encoding="utf-8")

    def clear_checkpoint(self) -> None:
        self.checkpoint_path.unlink(missing_ok=True)

    async def count_space(self, space: str) -> int:
        return await execute_with_retry(
            lambda: self._source.count_uploads(space),
            "count_uploads",
            retry_config=self._retry_config,
        )

    async def count_customer(self, customer: str, spaces: Iterable[str]) -> CustomerAssignment:
        ordered = sorted(spaces)
        total = 0
        with_uploads = 0
        for space in ordered:
            count = await self.count_space(space)
            total += count
            if count:
                with_uploads += 1
        return CustomerAssignment(
            customer=customer,
            upload_count=total,
            space_count=with_uploads,
            empty_space_count=len(ordered) - with_uploads,
            total_space_count=len(ordered),
        )

    async def count_all(self, customer_spaces: dict[str, set[str]]) -> list[CustomerAssignment]:
        """
        Count uploads for every customer.

        On resume, counts from the checkpoint are reused only for customers
        still in ``customer_spaces``; every other customer is counted. The
        checkpoint is written every ``checkpoint_every_batches`` batches
        and removed once counting completes.
        """
        entries = sorted(customer_spaces.items())
        batch_size = self._config.customer_concurrency
        customers: list[CustomerAssignment] = []

        checkpoint = self.load_checkpoint()
        if checkpoint is not None:
            customers = [
                c.to_assignment() for c in checkpoint.customers if c.customer in customer_spaces
            ]
            stale = len(checkpoint.customers) - len(customers)
            if stale:
                logger.warning("Discarding %d checkpointed customers not in this plan", stale)

        done = {c.customer for c in customers}
        pending = [(customer, spaces) for customer, spaces in entries if customer not in done]
        processed = len(customers)

        started = time.monotonic()
        batch_number = 0
        for start in range(0, len(pending), batch_size):
            batch = pending[start : start + batch_size]
            results = await asyncio.gather(
                *(self.count_customer(customer, spaces) for customer, spaces in batch)
            )
            customers.extend(results)
            processed += len(batch)
            batch_number += 1

            logger.info(
                "  %d/%d customers (%.1f%%) | %.1fs",
                processed,
                len(entries),
                processed / len(entries) * 100,
                time.monotonic() - started,
            )
            if batch_number % self._config.checkpoint_every_batches == 0:
                self.save_checkpoint(processed, customers)

        self.clear_checkpoint()
        return customers


def filter_and_sort(
    customers: Iterable[CustomerAssignment],
    min_uploads: int = 0,
) -> list[CustomerAssignment]:
    """Drop customers below min_uploads and order by upload count, largest first."""
    kept = [c for c in customers if c.upload_count >= min_uploads]
    return sorted(kept, key=lambda c: c.upload_count, reverse=True)


# =============================================================================
# Distribution
# =============================================================================


@dataclass
class InstancePlan:
    """Customers assigned to one instance and their cumulative load."""

    instance_id: int
    customers: list[str] = field(default_factory=list)
    total_uploads: int = 0
    total_spaces: int = 0
    total_empty_spaces: int = 0
    total_all_spaces: int = 0

    def add(self, customer: CustomerAssignment) -> None:
        self.customers.append(customer.customer)
        self.total_uploads += customer.upload_count
        self.total_spaces += customer.space_count
        self.total_empty_spaces += customer.empty_space_count
        self.total_all_spaces += customer.total_space_count or customer.space_count


def distribute_customers(
    customers: Sequence[CustomerAssignment],
    num_instances: int,
) -> list[InstancePlan]:
    """
    Assign customers to instances, least-loaded first.

    Each customer goes to the instance with the smallest cumulative upload
    count at that moment; ties go to the lowest instance id. Instance ids
    start at 1.

    Raises:
        ValueError: If num_instances < 1.
    """
    if num_instances < 1:
        raise ValueError(f"num_instances must be >= 1, got {num_instances}")

    instances = [InstancePlan(instance_id=i + 1) for i in range(num_instances)]
    for customer in customers:
        lightest = min(instances, key=lambda inst: inst.total_uploads)
        lightest.add(customer)
    return instances


@dataclass(frozen=True)
class DistributionAnalysis:
    """Population statistics of the counted customers."""

    total_customers: int
    total_uploads: int
    total_spaces: int
    total_empty_spaces: int
    total_all_spaces: int
    avg_uploads_per_customer: float
    avg_spaces_per_customer: float
    top_customers: tuple[CustomerAssignment, ...]
    buckets: tuple[tuple[str, int], ...]

    @property
    def empty_space_percent(self) -> float:
        if not self.total_all_spaces:
            return 0.0
        return self.total_empty_spaces / self.total_all_spaces * 100


def analyze_distribution(
    customers: Sequence[CustomerAssignment],
    top: int = 100,
) -> DistributionAnalysis:
    """Summarize customers by totals, top uploaders and upload-count buckets."""
    total = len(customers)
    total_uploads = sum(c.upload_count for c in customers)
    total_spaces = sum(c.space_count for c in customers)
    buckets = tuple(
        (label, sum(1 for c in customers if low <= c.upload_count <= high))
        for label, low, high in SIZE_BUCKETS
    )
    return DistributionAnalysis(
        total_customers=total,
        total_uploads=total_uploads,
        total_spaces=total_spaces,
        total_empty_spaces=sum(c.empty_space_count for c in customers),
        total_all_spaces=sum(c.total_space_count or c.space_count for c in customers),
        avg_uploads_per_customer=total_uploads / total if total else 0.0,
        avg_spaces_per_customer=total_spaces / total if total else 0.0,
        top_customers=tuple(sorted(customers, key=lambda c: c.upload_count, reverse=True)[:top]),
        buckets=buckets,
    )


@dataclass(frozen=True)
class DistributionSummary:
    """Load balance across instances."""

    min_uploads: int
    max_uploads: int
    avg_uploads: float

    @property
    def variance_percent(self) -> float:
        """Spread between the heaviest and lightest instance relative to the mean."""
        if not self.avg_uploads:
            return 0.0
        return (self.max_uploads - self.min_uploads) / self.avg_uploads * 100


def summarize_distribution(instances: Sequence[InstancePlan]) -> DistributionSummary:
    loads = [inst.total_uploads for inst in instances]
    if not loads:
        return DistributionSummary(min_uploads=0, max_uploads=0, avg_uploads=0.0)
    return DistributionSummary(
        min_uploads=min(loads),
        max_uploads=max(loads),
        avg_uploads=sum(loads) / len(loads),
    )


@dataclass(frozen=True)
class ScenarioEstimate:
    name: str
    instances: int
    workers_per_instance: int
    hours: float

    @property
    def total_workers(self) -> int:
        return self.instances * self.workers_per_instance

    @property
    def days(self) -> float:
        return self.hours / 24


def estimate_hours(uploads: int, workers: int, uploads_per_min_per_worker: int = 27) -> float:
    """Hours for ``workers`` to process ``uploads`` at the measured throughput."""
    if workers < 1:
        raise ValueError(f"workers must be >= 1, got {workers}")
    return uploads / workers / uploads_per_min_per_worker / 60


def estimate_migration_time(
    instances: Sequence[InstancePlan],
    scenarios: Sequence[tuple[int, int, str]] = DEFAULT_SCENARIOS,
    uploads_per_min_per_worker: int = 27,
) -> list[ScenarioEstimate]:
    """
    Estimate wall-clock time for several instance x worker scenarios.

    The slowest instance is the critical path; each scenario assumes a
    distribution similar to the planned one.
    """
    critical = max((inst.total_uploads for inst in instances), default=0)
    return [
        ScenarioEstimate(
            name=name,
            instances=n_instances,
            workers_per_instance=workers,
            hours=estimate_hours(critical, workers, uploads_per_min_per_worker),
        )
        for n_instances, workers, name in scenarios
    ]


# =============================================================================
# Planner
# =============================================================================


@dataclass
class PartitionPlan:
    """Result of a planning run, not yet persisted."""

    customers: list[CustomerAssignment]
    instances: list[InstancePlan]
    scan: OwnershipScan
    filter: str | None = None

    @property
    def analysis(self) -> DistributionAnalysis:
        return analyze_distribution(self.customers)

    @property
    def summary(self) -> DistributionSummary:
        return summarize_distribution(self.instances)


class PartitionPlanner:
    """
    Discovers customers, estimates their load and assigns them to instances.

    Args:
        ownership: Ownership mapping to scan.
        uploads: Upload source used for per-space counts.
        customers: Customer progress repository receiving assignments.
        config: Planner configuration.
        environment: Environment name used in assignment file names.
        retry_config: Override retry configuration for scans and counts.
        tracer: Optional custom Tracer instance.
        enable_tracing: Whether to enable OpenTelemetry tracing (default True).
    """

    def __init__(
        self,
        ownership: OwnershipIndex,
        uploads: UploadSource,
        customers: CustomerProgressRepository,
        config: PlannerConfig | None = None,
        *,
        environment: str = "production",
        retry_config: RetryConfig | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._ownership = ownership
        self._uploads = uploads
        self._customers = customers
        self._config = config or PlannerConfig()
        self._environment = environment
        self._retry_config = retry_config
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    @property
    def config(self) -> PlannerConfig:
        return self._config

    async def discover_customers(self) -> tuple[list[CustomerAssignment], OwnershipScan]:
        """Scan ownership, count uploads and apply min_uploads ordering."""
        config = self._config
        with self._tracer.span(
            "legacymigrate.planner.scan_ownership",
            {ATTR_SEGMENT_COUNT: config.segments},
        ) as span:
            logger.info("Scanning ownership mapping with %d parallel segments", config.segments)
            scan = await scan_ownership(
                self._ownership,
                config.segments,
                skip_list=config.skip_list,
                include=config.include,
                retry_config=self._retry_config,
            )
            if span is not None:
                span.set_attribute(ATTR_CUSTOMER_COUNT, len(scan.customer_spaces))
        logger.info(
            "Ownership scan complete: %d records, %d skipped, %d unique customers",
            scan.scanned,
            scan.skipped,
            len(scan.customer_spaces),
        )

        with self._tracer.span(
            "legacymigrate.planner.count_uploads",
            {ATTR_CUSTOMER_COUNT: len(scan.customer_spaces)},
        ):
            counter = UploadCounter(self._uploads, config, retry_config=self._retry_config)
            counted = await counter.count_all(scan.customer_spaces)

        customers = filter_and_sort(counted, config.min_uploads)
        if config.min_uploads > 0:
            logger.info(
                "Filtered out %d customers with < %d uploads",
                len(counted) - len(customers),
                config.min_uploads,
            )
        return customers, scan

    async def plan(self, num_instances: int) -> PartitionPlan:
        """
        Produce an assignment of customers to ``num_instances`` instances.

        Raises:
            PlanningError: If discovery fails; nothing has been published.
        """
        with self._tracer.span(
            "legacymigrate.planner.plan",
            {ATTR_INSTANCE_COUNT: num_instances},
        ):
            try:
                customers, scan = await self.discover_customers()
            except PlanningError:
                raise
            except (LegacyMigrationError, OSError, TimeoutError) as e:
                raise PlanningError(f"Customer discovery failed: {e}") from e

            instances = distribute_customers(customers, num_instances)
            include = ",".join(self._config.include) or None
            return PartitionPlan(
                customers=customers,
                instances=instances,
                scan=scan,
                filter=include,
            )

    async def save(self, plan: PartitionPlan) -> list[Path]:
        """
        Persist a plan: one assignment file per instance, then progress rows.

        Returns:
            Paths of the written assignment files.
        """
        return await save_distribution(
            plan.instances,
            plan.customers,
            self._customers,
            state_dir=self._config.state_dir,
            environment=self._environment,
            filter=plan.filter,
            batch_size=self._config.assign_batch_size,
        )


async def save_distribution(
    instances: Sequence[InstancePlan],
    customers: Sequence[CustomerAssignment],
    repository: CustomerProgressRepository,
    *,
    state_dir: Path,
    environment: str,
    filter: str | None = None,
    batch_size: int = 25,
) -> list[Path]:
    """
    Write per-instance assignment files and record assignments.

    Files are written first; a progress store failure is logged and leaves
    the files in place so the store can be populated later.
    """
    state_dir.mkdir(parents=True, exist_ok=True)
    by_customer = {c.customer: c for c in customers}

    paths: list[Path] = []
    for inst in instances:
        path = assignment_path(state_dir, inst.instance_id, environment)
        assignment = InstanceAssignment(
            instance_id=inst.instance_id,
            environment=environment,
            total_customers=len(inst.customers),
            estimated_uploads=inst.total_uploads,
            estimated_spaces=inst.total_spaces,
            customers=inst.customers,
        )
        path.write_text(assignment.model_dump_json(indent=2), encoding="utf-8")
        logger.info("Wrote %s", path.name)
        paths.append(path)

    written = 0
    try:
        for inst in instances:
            rows = [by_customer[c] for c in inst.customers if c in by_customer]
            written += await repository.batch_assign_customers(
                rows,
                str(inst.instance_id),
                filter=filter,
                batch_size=batch_size,
            )
    except LegacyMigrationError as e:
        logger.warning(
            "Failed to record customer assignments (%d written): %s. "
            "Assignment files were saved; re-run to populate the progress store.",
            written,
            e,
        )
    else:
        logger.info("Recorded %d customer assignments", written)
    return paths


# =============================================================================
# Text rendering
# =============================================================================


def format_analysis(analysis: DistributionAnalysis, top: int = 20) -> str:
    lines = [
        "Customer Distribution Analysis",
        "=" * 70,
        f"Total customers: {analysis.total_customers:,}",
        f"Total uploads: {analysis.total_uploads:,}",
        f"Total spaces (with uploads): {analysis.total_spaces:,}",
        f"Total empty spaces: {analysis.total_empty_spaces:,} "
        f"({analysis.empty_space_percent:.1f}%)",
        f"Average uploads/customer: {round(analysis.avg_uploads_per_customer):,}",
        f"Average spaces/customer: {analysis.avg_spaces_per_customer:.1f}",
        "",
        f"Top {top} Customers by Upload Count:",
        "-" * 70,
    ]
    for rank, c in enumerate(analysis.top_customers[:top], start=1):
        share = c.upload_count / analysis.total_uploads * 100 if analysis.total_uploads else 0.0
        lines.append(
            f"  {rank:>3}. {c.customer:<50} | {c.upload_count:>12,} uploads "
            f"({share:5.2f}%) | {c.space_count:>6} spaces"
        )
    lines += ["", "Upload Count Distribution:"]
    for label, count in analysis.buckets:
        share = count / analysis.total_customers * 100 if analysis.total_customers else 0.0
        lines.append(f"  {label:<10}: {count:>8,} customers ({share:.1f}%)")
    return "\n".join(lines)


def format_distribution(
    instances: Sequence[InstancePlan],
    workers_per_instance: int = 10,
    uploads_per_min_per_worker: int = 27,
) -> str:
    total_uploads = sum(inst.total_uploads for inst in instances)
    lines = ["Instance Distribution", "=" * 70]
    for inst in instances:
        share = inst.total_uploads / total_uploads * 100 if total_uploads else 0.0
        hours = estimate_hours(inst.total_uploads, workers_per_instance, uploads_per_min_per_worker)
        lines += [
            f"Instance {inst.instance_id}:",
            f"  Customers: {len(inst.customers):,}",
            f"  Uploads: {inst.total_uploads:,} ({share:.1f}%)",
            f"  Spaces (with uploads): {inst.total_spaces:,}",
            f"  Empty spaces: {inst.total_empty_spaces:,}",
            f"  Estimated time ({workers_per_instance} workers): "
            f"{hours / 24:.1f} days ({hours:.1f} hours)",
            "",
        ]
    summary = summarize_distribution(instances)
    lines += [
        "Load Balance:",
        f"  Min uploads/instance: {summary.min_uploads:,}",
        f"  Max uploads/instance: {summary.max_uploads:,}",
        f"  Avg uploads/instance: {round(summary.avg_uploads):,}",
        f"  Variance: {summary.variance_percent:.1f}%",
    ]
    return "\n".join(lines)


def format_estimates(estimates: Sequence[ScenarioEstimate]) -> str:
    lines = ["Migration Workload Scenarios", "=" * 70]
    for e in estimates:
        lines.append(
            f"  {e.name:<34} {e.instances:>2} x {e.workers_per_instance:>2} workers "
            f"= {e.total_workers:>3} | {e.days:6.1f} days ({e.hours:7.1f} hours)"
        )
    return "\n".join(lines)


__all__ = [
    "DEFAULT_SCENARIOS",
    "SIZE_BUCKETS",
    "CountingCheckpoint",
    "CustomerCount",
    "DistributionAnalysis",
    "DistributionSummary",
    "InstanceAssignment",
    "InstancePlan",
    "OwnershipScan",
    "PartitionPlan",
    "PartitionPlanner",
    "ScenarioEstimate",
    "UploadCounter",
    "analyze_distribution",
    "assignment_path",
    "distribute_customers",
    "estimate_hours",
    "estimate_migration_time",
    "filter_and_sort",
    "format_analysis",
    "format_distribution",
    "format_estimates",
    "is_skipped",
    "load_instance_assignment",
    "matches_include",
    "parse_include_filter",
    "save_distribution",
    "scan_ownership",
    "scan_segment",
]
