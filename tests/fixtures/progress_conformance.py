"""
Conformance suites for progress store repositories.

Every backend must pass the same contract. Subclass a suite and provide a
``repo`` fixture returning a fresh, empty repository:

    class TestSQLiteSpaceProgress(SpaceProgressConformanceSuite):
        @pytest.fixture
        def repo(self, sqlite_space_repo):
            return sqlite_space_repo
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

import pytest

from legacymigrate.exceptions import InvalidProgressTransitionError, ProgressStoreError
from legacymigrate.models import CustomerAssignment, ProgressStatus
from tests.fixtures.world import CUSTOMER, OTHER_CUSTOMER


class SpaceProgressConformanceSuite:
    """Contract shared by all SpaceProgressRepository implementations."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, repo: Any) -> None:
        created = await repo.create_space_progress(
            CUSTOMER, "did:key:z1", 12, instance_id="1", worker_id="3"
        )
        record = await repo.get_space_progress(CUSTOMER, "did:key:z1")

        assert created is True
        assert record.status is ProgressStatus.IN_PROGRESS
        assert record.total_uploads == 12
        assert record.completed_uploads == 0
        assert record.instance_id == "1"
        assert record.worker_id == "3"
        assert record.created_at is not None

    @pytest.mark.asyncio
    async def test_create_only_if_absent(self, repo: Any) -> None:
        assert await repo.create_space_progress(CUSTOMER, "did:key:z1", 12)
        await repo.update_space_progress(CUSTOMER, "did:key:z1", 4, "bafy4")

        assert await repo.create_space_progress(CUSTOMER, "did:key:z1", 99) is False
        record = await repo.get_space_progress(CUSTOMER, "did:key:z1")
        assert record.total_uploads == 12
        assert record.completed_uploads == 4

    @pytest.mark.asyncio
    async def test_get_missing(self, repo: Any) -> None:
        assert await repo.get_space_progress(CUSTOMER, "did:key:zMissing") is None

    @pytest.mark.asyncio
    async def test_checkpoints_are_monotonic(self, repo: Any) -> None:
        await repo.create_space_progress(CUSTOMER, "did:key:z1", 10)
        await repo.update_space_progress(CUSTOMER, "did:key:z1", 5, "bafy5")
        await repo.update_space_progress(CUSTOMER, "did:key:z1", 3, "bafy3")

        record = await repo.get_space_progress(CUSTOMER, "did:key:z1")
        assert record.completed_uploads == 5
        assert record.last_processed_upload == "bafy5"

    @pytest.mark.asyncio
    async def test_update_missing_record(self, repo: Any) -> None:
        with pytest.raises(ProgressStoreError):
            await repo.update_space_progress(CUSTOMER, "did:key:zMissing", 1)

    @pytest.mark.asyncio
    async def test_completion_clears_error(self, repo: Any) -> None:
        await repo.create_space_progress(CUSTOMER, "did:key:z1", 1)
        await repo.mark_space_failed(CUSTOMER, "did:key:z1", '{"INDEX_MISSING": 1}')
        failed = await repo.get_space_progress(CUSTOMER, "did:key:z1")
        assert failed.status is ProgressStatus.FAILED
        assert failed.error == '{"INDEX_MISSING": 1}'

        await repo.mark_space_in_progress(CUSTOMER, "did:key:z1")
        await repo.mark_space_completed(CUSTOMER, "did:key:z1")

        record = await repo.get_space_progress(CUSTOMER, "did:key:z1")
        assert record.status is ProgressStatus.COMPLETED
        assert record.error is None

    @pytest.mark.asyncio
    async def test_completed_is_terminal(self, repo: Any) -> None:
        await repo.create_space_progress(CUSTOMER, "did:key:z1", 1)
        await repo.mark_space_completed(CUSTOMER, "did:key:z1")

        with pytest.raises(InvalidProgressTransitionError):
            await repo.mark_space_in_progress(CUSTOMER, "did:key:z1")
        with pytest.raises(InvalidProgressTransitionError):
            await repo.mark_space_failed(CUSTOMER, "did:key:z1", "late failure")

        record = await repo.get_space_progress(CUSTOMER, "did:key:z1")
        assert record.status is ProgressStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_status_change_needs_record(self, repo: Any) -> None:
        with pytest.raises(ProgressStoreError):
            await repo.mark_space_completed(CUSTOMER, "did:key:zMissing")

    @pytest.mark.asyncio
    async def test_customer_spaces(self, repo: Any) -> None:
        await repo.create_space_progress(CUSTOMER, "did:key:zB", 1)
        await repo.create_space_progress(CUSTOMER, "did:key:zA", 1)
        await repo.create_space_progress(OTHER_CUSTOMER, "did:key:zC", 1)

        spaces = await repo.get_customer_spaces(CUSTOMER)

        assert [s.space for s in spaces] == ["did:key:zA", "did:key:zB"]

    @pytest.mark.asyncio
    async def test_failed_migrations(self, repo: Any) -> None:
        for name in ("did:key:z1", "did:key:z2", "did:key:z3"):
            await repo.create_space_progress(CUSTOMER, name, 1)
            await repo.mark_space_failed(CUSTOMER, name, "boom")
        await repo.create_space_progress(CUSTOMER, "did:key:z4", 1)

        assert len(await repo.get_failed_migrations()) == 3
        assert len(await repo.get_failed_migrations(limit=2)) == 2

    @pytest.mark.asyncio
    async def test_stuck_migrations(self, repo: Any) -> None:
        await repo.create_space_progress(CUSTOMER, "did:key:z1", 1)
        await repo.create_space_progress(CUSTOMER, "did:key:z2", 1)
        await repo.mark_space_completed(CUSTOMER, "did:key:z2")

        assert await repo.get_stuck_migrations() == []
        stuck = await repo.get_stuck_migrations(timedelta(seconds=-5))
        assert [s.space for s in stuck] == ["did:key:z1"]

    @pytest.mark.asyncio
    async def test_instance_spaces(self, repo: Any) -> None:
        await repo.create_space_progress(CUSTOMER, "did:key:z1", 1, instance_id="1")
        await repo.create_space_progress(CUSTOMER, "did:key:z2", 1, instance_id="2")

        spaces = await repo.get_instance_spaces("2")

        assert [s.space for s in spaces] == ["did:key:z2"]

    @pytest.mark.asyncio
    async def test_scan_all_progress_pages(self, repo: Any) -> None:
        for i in range(5):
            await repo.create_space_progress(CUSTOMER, f"did:key:z{i}", 1)
        await repo.create_space_progress(OTHER_CUSTOMER, "did:key:z0", 1)

        pages = [page async for page in repo.scan_all_progress(page_size=2)]

        assert [len(page) for page in pages] == [2, 2, 2]
        keys = [(r.customer, r.space) for page in pages for r in page]
        assert keys == sorted(keys)
        assert len(set(keys)) == 6


class CustomerProgressConformanceSuite:
    """Contract shared by all CustomerProgressRepository implementations."""

    @staticmethod
    def assignment(customer: str, uploads: int = 10, spaces: int = 2) -> CustomerAssignment:
        return CustomerAssignment(
            customer=customer,
            upload_count=uploads,
            space_count=spaces,
            total_space_count=spaces + 1,
        )

    @pytest.mark.asyncio
    async def test_assign_creates_pending_record(self, repo: Any) -> None:
        await repo.assign_customer(self.assignment(CUSTOMER), "2", filter="example.com")

        record = await repo.get_customer_progress(CUSTOMER)

        assert record.status is ProgressStatus.PENDING
        assert record.instance_id == "2"
        assert record.total_uploads == 10
        assert record.total_spaces == 3
        assert record.filter == "example.com"
        assert record.assigned_at is not None

    @pytest.mark.asyncio
    async def test_reassign_keeps_status(self, repo: Any) -> None:
        await repo.mark_customer_in_progress(CUSTOMER)

        await repo.assign_customer(self.assignment(CUSTOMER, uploads=50), "3")

        record = await repo.get_customer_progress(CUSTOMER)
        assert record.status is ProgressStatus.IN_PROGRESS
        assert record.instance_id == "3"
        assert record.total_uploads == 50

    @pytest.mark.asyncio
    async def test_batch_assign(self, repo: Any) -> None:
        assignments = [self.assignment(f"did:mailto:example.com:c{i}") for i in range(5)]

        written = await repo.batch_assign_customers(assignments, "1", batch_size=2)

        assert written == 5
        assert len(await repo.get_customers_by_instance("1")) == 5
        assert await repo.get_customers_by_instance("2") == []

    @pytest.mark.asyncio
    async def test_mark_in_progress_creates_record(self, repo: Any) -> None:
        await repo.mark_customer_in_progress(CUSTOMER)
        await repo.mark_customer_in_progress(CUSTOMER)

        record = await repo.get_customer_progress(CUSTOMER)
        assert record.status is ProgressStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_roll_up(self, repo: Any) -> None:
        await repo.mark_customer_in_progress(CUSTOMER)
        await repo.update_customer_progress(
            CUSTOMER,
            total_spaces=3,
            completed_spaces=2,
            total_uploads=30,
            completed_uploads=25,
        )

        record = await repo.get_customer_progress(CUSTOMER)
        assert (record.total_spaces, record.completed_spaces) == (3, 2)
        assert (record.total_uploads, record.completed_uploads) == (30, 25)
        assert record.status is ProgressStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_completed_is_terminal(self, repo: Any) -> None:
        await repo.mark_customer_in_progress(CUSTOMER)
        await repo.mark_customer_completed(CUSTOMER)

        assert await repo.is_customer_completed(CUSTOMER)
        record = await repo.get_customer_progress(CUSTOMER)
        assert record.completed_at is not None
        with pytest.raises(InvalidProgressTransitionError):
            await repo.mark_customer_in_progress(CUSTOMER)

    @pytest.mark.asyncio
    async def test_failed_customers(self, repo: Any) -> None:
        await repo.mark_customer_in_progress(CUSTOMER)
        await repo.mark_customer_failed(CUSTOMER, '{"MISSING_DELEGATION": 4}')
        await repo.mark_customer_in_progress(OTHER_CUSTOMER)

        failed = await repo.get_failed_customers()

        assert [c.customer for c in failed] == [CUSTOMER]
        assert failed[0].error == '{"MISSING_DELEGATION": 4}'
        assert not await repo.is_customer_completed(CUSTOMER)

    @pytest.mark.asyncio
    async def test_failed_customer_can_resume(self, repo: Any) -> None:
        await repo.mark_customer_failed(CUSTOMER, "boom")
        await repo.mark_customer_in_progress(CUSTOMER)

        record = await repo.get_customer_progress(CUSTOMER)
        assert record.status is ProgressStatus.IN_PROGRESS
        assert record.error is None

    @pytest.mark.asyncio
    async def test_all_and_by_status(self, repo: Any) -> None:
        await repo.mark_customer_in_progress(OTHER_CUSTOMER)
        await repo.assign_customer(self.assignment(CUSTOMER), "1")

        everyone = await repo.get_all_customers()
        pending = await repo.get_customers_by_status(ProgressStatus.PENDING)

        assert [c.customer for c in everyone] == [CUSTOMER, OTHER_CUSTOMER]
        assert [c.customer for c in pending] == [CUSTOMER]

    @pytest.mark.asyncio
    async def test_unknown_customer(self, repo: Any) -> None:
        assert await repo.get_customer_progress(CUSTOMER) is None
        assert not await repo.is_customer_completed(CUSTOMER)
