"""
Unit tests for MigrationMonitor and its text views.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from legacymigrate.models import ProgressStatus, SpaceProgress
from legacymigrate.monitor import (
    FailedReport,
    InstanceDetail,
    MigrationMonitor,
    StatusCounts,
    format_customer,
    format_failed,
    format_instance,
    format_overall,
    format_space,
    format_stuck,
)
from legacymigrate.repositories import (
    InMemoryCustomerProgressRepository,
    InMemorySpaceProgressRepository,
)
from tests.fixtures import CUSTOMER, OTHER_CUSTOMER


@pytest.fixture
def monitor(
    space_repo: InMemorySpaceProgressRepository,
    customer_repo: InMemoryCustomerProgressRepository,
) -> MigrationMonitor:
    return MigrationMonitor(space_repo, customer_repo, page_size=2)


async def seed(
    space_repo: InMemorySpaceProgressRepository,
    customer_repo: InMemoryCustomerProgressRepository,
) -> None:
    await space_repo.create_space_progress(
        CUSTOMER, "did:key:z1", 10, instance_id="1", worker_id="1"
    )
    await space_repo.update_space_progress(CUSTOMER, "did:key:z1", 10, "bafy10")
    await space_repo.mark_space_completed(CUSTOMER, "did:key:z1")
    await space_repo.create_space_progress(
        CUSTOMER, "did:key:z2", 4, instance_id="1", worker_id="2"
    )
    await space_repo.update_space_progress(CUSTOMER, "did:key:z2", 1, "bafy1")
    await space_repo.create_space_progress(
        OTHER_CUSTOMER, "did:key:z3", 6, instance_id="2", worker_id="1"
    )
    await space_repo.mark_space_failed(OTHER_CUSTOMER, "did:key:z3", '{"INDEX_MISSING": 6}')

    await customer_repo.mark_customer_in_progress(CUSTOMER)
    await customer_repo.mark_customer_failed(OTHER_CUSTOMER, '{"INDEX_MISSING": 6}')


class TestStatusCounts:
    def test_add_and_percent(self) -> None:
        counts = StatusCounts()
        for status in (
            ProgressStatus.COMPLETED,
            ProgressStatus.COMPLETED,
            ProgressStatus.IN_PROGRESS,
            ProgressStatus.FAILED,
        ):
            counts.add(status)

        assert counts.total == 4
        assert counts.failed == 1
        assert counts.percent_complete == 50.0

    def test_empty_percent(self) -> None:
        assert StatusCounts().percent_complete == 0.0


class TestMigrationMonitor:
    """Tests for MigrationMonitor queries."""

    @pytest.mark.asyncio
    async def test_overall_stats(
        self,
        monitor: MigrationMonitor,
        space_repo: InMemorySpaceProgressRepository,
        customer_repo: InMemoryCustomerProgressRepository,
    ) -> None:
        await seed(space_repo, customer_repo)

        stats = await monitor.overall_stats()

        assert stats.spaces.total == 3
        assert stats.spaces.completed == 1
        assert stats.spaces.failed == 1
        assert stats.customers.in_progress == 1
        assert stats.customers.failed == 1
        assert (stats.completed_uploads, stats.total_uploads) == (11, 20)
        assert list(stats.by_instance) == ["1", "2"]
        assert stats.by_instance["1"].completed_uploads == 11
        assert stats.by_instance["2"].spaces.failed == 1

    @pytest.mark.asyncio
    async def test_customer_detail(
        self,
        monitor: MigrationMonitor,
        space_repo: InMemorySpaceProgressRepository,
        customer_repo: InMemoryCustomerProgressRepository,
    ) -> None:
        await seed(space_repo, customer_repo)

        detail = await monitor.customer_detail(CUSTOMER)

        assert detail.progress.status is ProgressStatus.IN_PROGRESS
        assert [s.space for s in detail.spaces] == ["did:key:z1", "did:key:z2"]
        assert detail.counts.completed == 1
        assert detail.counts.in_progress == 1

    @pytest.mark.asyncio
    async def test_instance_detail(
        self,
        monitor: MigrationMonitor,
        space_repo: InMemorySpaceProgressRepository,
        customer_repo: InMemoryCustomerProgressRepository,
    ) -> None:
        await seed(space_repo, customer_repo)

        detail = await monitor.instance_detail("1")

        assert len(detail.spaces) == 2
        assert list(detail.by_worker) == ["1", "2"]
        assert detail.by_worker["2"].in_progress == 1

    @pytest.mark.asyncio
    async def test_failed_and_stuck(
        self,
        monitor: MigrationMonitor,
        space_repo: InMemorySpaceProgressRepository,
        customer_repo: InMemoryCustomerProgressRepository,
    ) -> None:
        await seed(space_repo, customer_repo)

        report = await monitor.failed()
        stuck = await monitor.stuck(timedelta(seconds=-5))

        assert [c.customer for c in report.customers] == [OTHER_CUSTOMER]
        assert [s.space for s in report.spaces] == ["did:key:z3"]
        assert [s.space for s in stuck] == ["did:key:z2"]
        assert await monitor.stuck() == []

    @pytest.mark.asyncio
    async def test_space_detail(
        self,
        monitor: MigrationMonitor,
        space_repo: InMemorySpaceProgressRepository,
        customer_repo: InMemoryCustomerProgressRepository,
    ) -> None:
        await seed(space_repo, customer_repo)

        found = await monitor.space_detail(CUSTOMER, "did:key:z2")

        assert found.last_processed_upload == "bafy1"
        assert await monitor.space_detail(CUSTOMER, "did:key:zMissing") is None


class TestFormatting:
    """Tests for the text views."""

    @pytest.mark.asyncio
    async def test_overall(
        self,
        monitor: MigrationMonitor,
        space_repo: InMemorySpaceProgressRepository,
        customer_repo: InMemoryCustomerProgressRepository,
    ) -> None:
        await seed(space_repo, customer_repo)

        text = format_overall(await monitor.overall_stats())

        assert "Total Customers: 2" in text
        assert "Total Spaces: 3" in text
        assert "Instance 1:" in text
        assert "Uploads: 11/14 (78.6%)" in text

    @pytest.mark.asyncio
    async def test_customer(
        self,
        monitor: MigrationMonitor,
        space_repo: InMemorySpaceProgressRepository,
        customer_repo: InMemoryCustomerProgressRepository,
    ) -> None:
        await seed(space_repo, customer_repo)

        text = format_customer(await monitor.customer_detail(OTHER_CUSTOMER))

        assert f"Customer: {OTHER_CUSTOMER}" in text
        assert 'Error: {"INDEX_MISSING": 6}' in text
        assert "did:key:z3 (0/6 uploads)" in text

    @pytest.mark.asyncio
    async def test_unknown_customer(self, monitor: MigrationMonitor) -> None:
        text = format_customer(await monitor.customer_detail(CUSTOMER))

        assert "No migration data found for this customer." in text

    def test_space(self) -> None:
        record = SpaceProgress(
            customer=CUSTOMER,
            space="did:key:z1",
            status=ProgressStatus.IN_PROGRESS,
            total_uploads=8,
            completed_uploads=3,
            last_processed_upload="bafy3",
            instance_id="2",
            worker_id="5",
        )

        text = format_space(record)

        assert "Uploads: 3/8" in text
        assert "Last Upload: bafy3" in text
        assert "Worker: 5" in text
        assert "No migration data" in format_space(None)

    def test_instance(self) -> None:
        detail = InstanceDetail(
            "3",
            [
                SpaceProgress(CUSTOMER, "did:key:z1", ProgressStatus.COMPLETED, worker_id="1"),
                SpaceProgress(CUSTOMER, "did:key:z2", ProgressStatus.FAILED, worker_id="1"),
            ],
        )

        text = format_instance(detail)

        assert "Instance 3 Progress" in text
        assert "Worker 1: 1/2 completed" in text
        assert "Failed: 1" in text
        assert "No migration data" in format_instance(InstanceDetail("4", []))

    def test_failed_list_is_truncated(self) -> None:
        spaces = [
            SpaceProgress(CUSTOMER, f"did:key:z{i}", ProgressStatus.FAILED, error="boom")
            for i in range(25)
        ]

        text = format_failed(FailedReport(customers=[], spaces=spaces))

        assert "Total Failed: 25" in text
        assert "... and 5 more failed migrations" in text
        assert "No failed migrations found." in format_failed(FailedReport([], []))

    def test_stuck(self) -> None:
        now = datetime(2025, 12, 8, 12, 0, tzinfo=UTC)
        record = SpaceProgress(
            CUSTOMER,
            "did:key:z1",
            ProgressStatus.IN_PROGRESS,
            10,
            4,
            updated_at=now - timedelta(minutes=90),
        )

        text = format_stuck([record], timedelta(hours=1), now=now)

        assert "Stuck Migrations (in-progress >60 minutes)" in text
        assert "Stuck for: 90 minutes" in text
        assert "Progress: 4/10 uploads" in text
