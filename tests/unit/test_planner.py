"""
Unit tests for the partition planner.

Tests cover:
- Customer filters (skip list, include filter)
- Segmented ownership scanning
- Resumable upload counting
- Greedy distribution and its balance bound
- Persisting assignment files and progress rows
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from legacymigrate.config import PlannerConfig
from legacymigrate.exceptions import PlanningError, ProgressStoreError, RetryConfig
from legacymigrate.models import CustomerAssignment, ProgressStatus
from legacymigrate.observability import MockTracer
from legacymigrate.planner import (
    CountingCheckpoint,
    CustomerCount,
    PartitionPlanner,
    UploadCounter,
    analyze_distribution,
    assignment_path,
    distribute_customers,
    estimate_hours,
    estimate_migration_time,
    filter_and_sort,
    format_analysis,
    format_distribution,
    is_skipped,
    load_instance_assignment,
    matches_include,
    parse_include_filter,
    save_distribution,
    scan_ownership,
    summarize_distribution,
)
from legacymigrate.repositories import InMemoryCustomerProgressRepository
from tests.fixtures import CUSTOMER, OTHER_CUSTOMER, FakeOwnershipIndex, FakeUploadSource, FakeWorld

FAST_RETRY = RetryConfig(max_attempts=3, base_delay_ms=0.0, max_delay_ms=0.0)


def customer(name: str, uploads: int, spaces: int = 1) -> CustomerAssignment:
    return CustomerAssignment(
        customer=name,
        upload_count=uploads,
        space_count=spaces,
        total_space_count=spaces,
    )


def populate(world: FakeWorld, customers: dict[str, dict[str, int]]) -> None:
    """Register ``{customer: {space: upload_count}}`` in the fake world."""
    for name, spaces in customers.items():
        for space, count in spaces.items():
            world.add_space(name, space)
            for i in range(count):
                world.add_upload(name, space, f"root-{space}-{i}", [f"shard-{space}-{i}"])


class FailingCounts(FakeUploadSource):
    """Upload source whose count fails for one space."""

    def __init__(self, world: FakeWorld, failing_space: str) -> None:
        super().__init__(world)
        self.failing_space = failing_space

    async def count_uploads(self, space: str) -> int:
        if space == self.failing_space:
            raise OSError("connection reset")
        return await super().count_uploads(space)


class BrokenOwnership(FakeOwnershipIndex):
    async def scan_segment(
        self, segment: int, total_segments: int
    ) -> AsyncIterator[tuple[str, str]]:
        raise OSError("table not reachable")
        yield  # pragma: no cover


class RejectingCustomerRepository(InMemoryCustomerProgressRepository):
    async def batch_assign_customers(self, *args: object, **kwargs: object) -> int:
        raise ProgressStoreError("progress store offline")


# =============================================================================
# Filters
# =============================================================================


class TestCustomerFilters:
    """Tests for the skip list and include filter."""

    def test_skip_list_matches_exact_and_extended(self) -> None:
        skip = ["did:mailto:mailslurp.com"]

        assert is_skipped("did:mailto:mailslurp.com", skip)
        assert is_skipped("did:mailto:mailslurp.com:bob", skip)
        assert not is_skipped("did:mailto:mailslurp.community:bob", skip)

    def test_empty_include_matches_everybody(self) -> None:
        assert matches_include(CUSTOMER, ())

    def test_include_matches_domain_segment(self) -> None:
        include = ("example.com",)

        assert matches_include("did:mailto:example.com:alice", include)
        assert not matches_include("did:mailto:other.org:alice", include)

    def test_include_matches_prefix(self) -> None:
        assert matches_include("did:mailto:example.com:alice", ("did:mailto:example.com",))

    def test_parse_include_filter(self) -> None:
        assert parse_include_filter(None) == ()
        assert parse_include_filter(" a.com, ,b.org ") == ("a.com", "b.org")


# =============================================================================
# Ownership scan
# =============================================================================


class TestScanOwnership:
    """Tests for the segmented ownership scan."""

    @pytest.mark.asyncio
    async def test_segments_cover_every_record_once(self, world: FakeWorld) -> None:
        for i in range(7):
            world.add_space(CUSTOMER if i % 2 else OTHER_CUSTOMER, f"did:key:z{i}")

        scan = await scan_ownership(FakeOwnershipIndex(world), 3)

        assert scan.scanned == 7
        assert scan.skipped == 0
        assert len(scan.customer_spaces[CUSTOMER]) == 3
        assert len(scan.customer_spaces[OTHER_CUSTOMER]) == 4
        assert world.calls["ownership.scan"] == 3

    @pytest.mark.asyncio
    async def test_filters_are_applied(self, world: FakeWorld) -> None:
        world.add_space(CUSTOMER, "did:key:z1")
        world.add_space("did:mailto:mailslurp.com:spam", "did:key:z2")
        world.add_space("did:mailto:other.org:carol", "did:key:z3")

        scan = await scan_ownership(
            FakeOwnershipIndex(world),
            2,
            skip_list=["did:mailto:mailslurp.com"],
            include=("example.com",),
        )

        assert list(scan.customer_spaces) == [CUSTOMER]
        assert scan.skipped == 2


# =============================================================================
# Counting
# =============================================================================


class TestUploadCounter:
    """Tests for UploadCounter."""

    @pytest.mark.asyncio
    async def test_count_customer(self, world: FakeWorld, planner_config: PlannerConfig) -> None:
        populate(world, {CUSTOMER: {"did:key:z1": 3, "did:key:z2": 0, "did:key:z3": 2}})
        counter = UploadCounter(FakeUploadSource(world), planner_config)

        result = await counter.count_customer(CUSTOMER, {"did:key:z1", "did:key:z2", "did:key:z3"})

        assert result.upload_count == 5
        assert result.space_count == 2
        assert result.empty_space_count == 1
        assert result.total_space_count == 3

    @pytest.mark.asyncio
    async def test_checkpoint_removed_after_completion(
        self, world: FakeWorld, planner_config: PlannerConfig
    ) -> None:
        populate(world, {CUSTOMER: {"did:key:z1": 1}, OTHER_CUSTOMER: {"did:key:z2": 2}})
        counter = UploadCounter(FakeUploadSource(world), planner_config)

        spaces = {CUSTOMER: {"did:key:z1"}, OTHER_CUSTOMER: {"did:key:z2"}}

        counted = await counter.count_all(spaces)

        assert {c.customer: c.upload_count for c in counted} == {CUSTOMER: 1, OTHER_CUSTOMER: 2}
        assert not planner_config.checkpoint_path.exists()

    @pytest.mark.asyncio
    async def test_checkpoint_saved_before_failure(
        self, world: FakeWorld, planner_config: PlannerConfig
    ) -> None:
        third = "did:mailto:example.com:carol"
        populate(
            world,
            {
                CUSTOMER: {"did:key:z1": 1},
                OTHER_CUSTOMER: {"did:key:z2": 1},
                third: {"did:key:z3": 1},
            },
        )
        counter = UploadCounter(FailingCounts(world, "did:key:z3"), planner_config)

        with pytest.raises(OSError):
            await counter.count_all(
                {CUSTOMER: {"did:key:z1"}, OTHER_CUSTOMER: {"did:key:z2"}, third: {"did:key:z3"}}
            )

        checkpoint = counter.load_checkpoint()
        assert checkpoint is not None
        assert checkpoint.processed_customers == 2
        assert sorted(c.customer for c in checkpoint.customers) == [CUSTOMER, OTHER_CUSTOMER]

    @pytest.mark.asyncio
    async def test_resume_skips_processed_customers(
        self, world: FakeWorld, planner_config: PlannerConfig
    ) -> None:
        populate(world, {CUSTOMER: {"did:key:z1": 4}, OTHER_CUSTOMER: {"did:key:z2": 2}})
        planner_config.state_dir.mkdir(parents=True)
        checkpoint = CountingCheckpoint(
            processed_customers=1,
            customers=[CustomerCount(customer=CUSTOMER, upload_count=42, space_count=1)],
        )
        planner_config.checkpoint_path.write_text(checkpoint.model_dump_json(), encoding="utf-8")
        counter = UploadCounter(FakeUploadSource(world), planner_config)

        spaces = {CUSTOMER: {"did:key:z1"}, OTHER_CUSTOMER: {"did:key:z2"}}

        counted = await counter.count_all(spaces)

        assert {c.customer: c.upload_count for c in counted} == {CUSTOMER: 42, OTHER_CUSTOMER: 2}
        assert world.calls["uploads.count"] == 1

    @pytest.mark.asyncio
    async def test_resume_with_changed_customers_counts_by_id(
        self, world: FakeWorld, planner_config: PlannerConfig
    ) -> None:
        stale = "did:mailto:old.com:zed"
        populate(world, {CUSTOMER: {"did:key:z1": 4}, OTHER_CUSTOMER: {"did:key:z2": 2}})
        planner_config.state_dir.mkdir(parents=True)
        checkpoint = CountingCheckpoint(
            processed_customers=1,
            customers=[CustomerCount(customer=stale, upload_count=9, space_count=1)],
        )
        planner_config.checkpoint_path.write_text(checkpoint.model_dump_json(), encoding="utf-8")
        counter = UploadCounter(FakeUploadSource(world), planner_config)

        counted = await counter.count_all(
            {CUSTOMER: {"did:key:z1"}, OTHER_CUSTOMER: {"did:key:z2"}}
        )

        assert {c.customer: c.upload_count for c in counted} == {CUSTOMER: 4, OTHER_CUSTOMER: 2}
        assert world.calls["uploads.count"] == 2

    def test_unreadable_checkpoint_is_ignored(self, planner_config: PlannerConfig) -> None:
        planner_config.state_dir.mkdir(parents=True)
        planner_config.checkpoint_path.write_text("{not json", encoding="utf-8")
        counter = UploadCounter(FakeUploadSource(FakeWorld()), planner_config)

        assert counter.load_checkpoint() is None


class TestFilterAndSort:
    def test_drops_small_customers_and_orders_by_load(self) -> None:
        customers = [customer("a", 5), customer("b", 50), customer("c", 1)]

        result = filter_and_sort(customers, min_uploads=2)

        assert [c.customer for c in result] == ["b", "a"]


# =============================================================================
# Distribution
# =============================================================================


class TestDistributeCustomers:
    """Tests for the least-loaded assignment."""

    def test_every_customer_assigned_exactly_once(self) -> None:
        customers = filter_and_sort([customer(f"c{i}", i * 3 % 17 + 1) for i in range(40)])

        instances = distribute_customers(customers, 4)

        assigned = [c for inst in instances for c in inst.customers]
        assert sorted(assigned) == sorted(c.customer for c in customers)
        assert len(set(assigned)) == len(assigned)
        assert sum(inst.total_uploads for inst in instances) == sum(
            c.upload_count for c in customers
        )

    def test_imbalance_bounded_by_largest_customer(self) -> None:
        customers = filter_and_sort([customer(f"c{i}", (i * 37) % 101 + 1) for i in range(60)])

        instances = distribute_customers(customers, 5)

        loads = [inst.total_uploads for inst in instances]
        assert max(loads) - min(loads) <= max(c.upload_count for c in customers)

    def test_one_heavy_customer(self) -> None:
        customers = filter_and_sort(
            [customer("heavy", 1000)] + [customer(f"light{i}", 1) for i in range(99)]
        )

        instances = distribute_customers(customers, 5)

        assert instances[0].instance_id == 1
        assert instances[0].customers == ["heavy"]
        assert instances[0].total_uploads == 1000
        assert all(inst.total_uploads in (24, 25) for inst in instances[1:])

    def test_more_instances_than_customers(self) -> None:
        instances = distribute_customers([customer("a", 3)], 3)

        assert [len(inst.customers) for inst in instances] == [1, 0, 0]

    def test_invalid_instance_count(self) -> None:
        with pytest.raises(ValueError):
            distribute_customers([], 0)


class TestDistributionReports:
    def test_analysis(self) -> None:
        customers = [customer("a", 5), customer("b", 500, spaces=3), customer("c", 20_000)]

        analysis = analyze_distribution(customers, top=2)

        assert analysis.total_customers == 3
        assert analysis.total_uploads == 20_505
        assert [c.customer for c in analysis.top_customers] == ["c", "b"]
        assert dict(analysis.buckets) == {
            "1-10": 1,
            "11-100": 0,
            "101-1K": 1,
            "1K-10K": 0,
            "10K-100K": 1,
            "100K+": 0,
        }
        assert "Total customers: 3" in format_analysis(analysis)

    def test_summary_and_format(self) -> None:
        instances = distribute_customers([customer("a", 30), customer("b", 10)], 2)

        summary = summarize_distribution(instances)
        text = format_distribution(instances)

        assert (summary.min_uploads, summary.max_uploads) == (10, 30)
        assert summary.variance_percent == pytest.approx(100.0)
        assert "Instance 1:" in text
        assert "Instance 2:" in text

    def test_estimates(self) -> None:
        instances = distribute_customers([customer("a", 27 * 60 * 10)], 1)

        estimates = estimate_migration_time(instances, scenarios=[(1, 10, "Ten workers")])

        assert estimate_hours(27 * 60, 1) == pytest.approx(1.0)
        assert estimates[0].hours == pytest.approx(1.0)
        assert estimates[0].total_workers == 10

    def test_estimate_needs_workers(self) -> None:
        with pytest.raises(ValueError):
            estimate_hours(10, 0)


# =============================================================================
# Planner
# =============================================================================


class TestPartitionPlanner:
    """Tests for PartitionPlanner end to end."""

    @pytest.mark.asyncio
    async def test_plan_and_save(
        self,
        world: FakeWorld,
        planner_config: PlannerConfig,
        customer_repo: InMemoryCustomerProgressRepository,
    ) -> None:
        populate(
            world,
            {
                CUSTOMER: {"did:key:z1": 3, "did:key:z2": 0},
                OTHER_CUSTOMER: {"did:key:z3": 1},
            },
        )
        collaborators = world.collaborators()
        planner = PartitionPlanner(
            collaborators.ownership,
            collaborators.uploads,
            customer_repo,
            planner_config,
            environment="staging",
            enable_tracing=False,
        )

        plan = await planner.plan(num_instances=2)
        paths = await planner.save(plan)

        assert [inst.customers for inst in plan.instances] == [[CUSTOMER], [OTHER_CUSTOMER]]
        assert paths == [
            assignment_path(planner_config.state_dir, 1, "staging"),
            assignment_path(planner_config.state_dir, 2, "staging"),
        ]
        first = load_instance_assignment(paths[0])
        assert first.customers == [CUSTOMER]
        assert first.estimated_uploads == 3
        assert first.environment == "staging"

        record = await customer_repo.get_customer_progress(CUSTOMER)
        assert record.status is ProgressStatus.PENDING
        assert record.instance_id == "1"
        assert record.total_spaces == 2

    @pytest.mark.asyncio
    async def test_min_uploads(
        self,
        world: FakeWorld,
        tmp_path: Path,
        customer_repo: InMemoryCustomerProgressRepository,
    ) -> None:
        populate(world, {CUSTOMER: {"did:key:z1": 3}, OTHER_CUSTOMER: {"did:key:z2": 1}})
        config = PlannerConfig(min_uploads=2, state_dir=tmp_path / "state")
        collaborators = world.collaborators()
        planner = PartitionPlanner(
            collaborators.ownership,
            collaborators.uploads,
            customer_repo,
            config,
            enable_tracing=False,
        )

        plan = await planner.plan(num_instances=1)

        assert [c.customer for c in plan.customers] == [CUSTOMER]

    @pytest.mark.asyncio
    async def test_discovery_failure_publishes_nothing(
        self,
        world: FakeWorld,
        planner_config: PlannerConfig,
        customer_repo: InMemoryCustomerProgressRepository,
    ) -> None:
        planner = PartitionPlanner(
            BrokenOwnership(world),
            FakeUploadSource(world),
            customer_repo,
            planner_config,
            retry_config=FAST_RETRY,
            enable_tracing=False,
        )

        with pytest.raises(PlanningError):
            await planner.plan(num_instances=2)

        assert await customer_repo.get_all_customers() == []
        assert not planner_config.state_dir.exists() or not any(
            planner_config.state_dir.glob("instance-*.json")
        )

    @pytest.mark.asyncio
    async def test_spans(
        self,
        world: FakeWorld,
        planner_config: PlannerConfig,
        customer_repo: InMemoryCustomerProgressRepository,
    ) -> None:
        tracer = MockTracer()
        collaborators = world.collaborators()
        planner = PartitionPlanner(
            collaborators.ownership,
            collaborators.uploads,
            customer_repo,
            planner_config,
            tracer=tracer,
        )

        await planner.plan(num_instances=1)

        assert tracer.span_names == [
            "legacymigrate.planner.plan",
            "legacymigrate.planner.scan_ownership",
            "legacymigrate.planner.count_uploads",
        ]


class TestSaveDistribution:
    """Tests for save_distribution."""

    @pytest.mark.asyncio
    async def test_progress_rows_written_in_batches(self, tmp_path: Path) -> None:
        customers = [customer(f"did:mailto:example.com:c{i}", 10 - i) for i in range(5)]
        instances = distribute_customers(customers, 1)
        repo = InMemoryCustomerProgressRepository(enable_tracing=False)

        await save_distribution(
            instances,
            customers,
            repo,
            state_dir=tmp_path,
            environment="production",
            filter="example.com",
            batch_size=2,
        )

        assert repo.assign_batches == [2, 2, 1]
        records = await repo.get_customers_by_instance("1")
        assert {r.filter for r in records} == {"example.com"}

    @pytest.mark.asyncio
    async def test_store_failure_keeps_files(self, tmp_path: Path) -> None:
        customers = [customer(CUSTOMER, 3)]
        instances = distribute_customers(customers, 2)

        paths = await save_distribution(
            instances,
            customers,
            RejectingCustomerRepository(enable_tracing=False),
            state_dir=tmp_path,
            environment="production",
        )

        assert [p.name for p in paths] == [
            "instance-1-customers-production.json",
            "instance-2-customers-production.json",
        ]
        data = json.loads(paths[1].read_text(encoding="utf-8"))
        assert data["customers"] == []
        assert data["total_customers"] == 0
