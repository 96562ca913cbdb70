"""
Operator views over the progress store.

MigrationMonitor reads both repositories and produces plain data objects;
the ``format_*`` helpers render them as text for the ``monitor`` command.

Example:
    >>> monitor = MigrationMonitor(space_repo, customer_repo)
    >>> print(format_overall(await monitor.overall_stats()))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from legacymigrate.models import CustomerProgress, ProgressStatus, SpaceProgress
from legacymigrate.repositories import (
    DEFAULT_STUCK_AFTER,
    CustomerProgressRepository,
    SpaceProgressRepository,
)

_RULE = "=" * 70
_SUBRULE = "-" * 70
_LIST_LIMIT = 20

_STATUS_ICONS = {
    ProgressStatus.COMPLETED: "🟢",
    ProgressStatus.IN_PROGRESS: "🔵",
    ProgressStatus.PENDING: "🟡",
    ProgressStatus.FAILED: "🔴",
}


def _percent(part: int, whole: int) -> float:
    return part / whole * 100 if whole else 0.0


@dataclass
class StatusCounts:
    """Record counts by progress status."""

    pending: int = 0
    in_progress: int = 0
    completed: int = 0
    failed: int = 0

    def add(self, status: ProgressStatus) -> None:
        if status == ProgressStatus.PENDING:
            self.pending += 1
        elif status == ProgressStatus.IN_PROGRESS:
            self.in_progress += 1
        elif status == ProgressStatus.COMPLETED:
            self.completed += 1
        else:
            self.failed += 1

    @property
    def total(self) -> int:
        return self.pending + self.in_progress + self.completed + self.failed

    @property
    def percent_complete(self) -> float:
        return _percent(self.completed, self.total)


@dataclass
class InstanceStats:
    """Space and upload totals for one instance."""

    instance_id: str
    spaces: StatusCounts = field(default_factory=StatusCounts)
    total_uploads: int = 0
    completed_uploads: int = 0

    @property
    def upload_percent(self) -> float:
        return _percent(self.completed_uploads, self.total_uploads)


@dataclass
class OverallStats:
    """Totals across every progress record."""

    customers: StatusCounts = field(default_factory=StatusCounts)
    spaces: StatusCounts = field(default_factory=StatusCounts)
    total_uploads: int = 0
    completed_uploads: int = 0
    by_instance: dict[str, InstanceStats] = field(default_factory=dict)

    @property
    def upload_percent(self) -> float:
        return _percent(self.completed_uploads, self.total_uploads)

    def instance(self, instance_id: str) -> InstanceStats:
        if instance_id not in self.by_instance:
            self.by_instance[instance_id] = InstanceStats(instance_id)
        return self.by_instance[instance_id]


@dataclass
class CustomerDetail:
    customer: str
    progress: CustomerProgress | None
    spaces: list[SpaceProgress]

    @property
    def counts(self) -> StatusCounts:
        counts = StatusCounts()
        for space in self.spaces:
            counts.add(space.status)
        return counts


@dataclass
class FailedReport:
    customers: list[CustomerProgress]
    spaces: list[SpaceProgress]


@dataclass
class InstanceDetail:
    instance_id: str
    spaces: list[SpaceProgress]

    @property
    def counts(self) -> StatusCounts:
        counts = StatusCounts()
        for space in self.spaces:
            counts.add(space.status)
        return counts

    @property
    def by_worker(self) -> dict[str, StatusCounts]:
        workers: dict[str, StatusCounts] = {}
        for space in self.spaces:
            if space.worker_id:
                workers.setdefault(space.worker_id, StatusCounts()).add(space.status)
        return dict(sorted(workers.items()))


class MigrationMonitor:
    """
    Read-only queries over space and customer progress.

    Args:
        space_progress: Space progress repository.
        customer_progress: Customer progress repository.
        page_size: Page size for full scans.
    """

    def __init__(
        self,
        space_progress: SpaceProgressRepository,
        customer_progress: CustomerProgressRepository,
        *,
        page_size: int = 100,
    ) -> None:
        self._spaces = space_progress
        self._customers = customer_progress
        self._page_size = page_size

    async def overall_stats(self) -> OverallStats:
        """Scan every space record and every customer record."""
        stats = OverallStats()
        async for page in self._spaces.scan_all_progress(self._page_size):
            for record in page:
                stats.spaces.add(record.status)
                stats.total_uploads += record.total_uploads
                stats.completed_uploads += record.completed_uploads
                if record.instance_id:
                    inst = stats.instance(record.instance_id)
                    inst.spaces.add(record.status)
                    inst.total_uploads += record.total_uploads
                    inst.completed_uploads += record.completed_uploads

        for customer in await self._customers.get_all_customers():
            stats.customers.add(customer.status)
        stats.by_instance = dict(sorted(stats.by_instance.items()))
        return stats

    async def customer_detail(self, customer: str) -> CustomerDetail:
        return CustomerDetail(
            customer=customer,
            progress=await self._customers.get_customer_progress(customer),
            spaces=await self._spaces.get_customer_spaces(customer),
        )

    async def space_detail(self, customer: str, space: str) -> SpaceProgress | None:
        return await self._spaces.get_space_progress(customer, space)

    async def instance_detail(self, instance_id: str) -> InstanceDetail:
        return InstanceDetail(instance_id, await self._spaces.get_instance_spaces(instance_id))

    async def failed(self, limit: int | None = None) -> FailedReport:
        return FailedReport(
            customers=await self._customers.get_failed_customers(),
            spaces=await self._spaces.get_failed_migrations(limit),
        )

    async def stuck(self, staleness: timedelta = DEFAULT_STUCK_AFTER) -> list[SpaceProgress]:
        """In-progress spaces not updated within ``staleness``."""
        return await self._spaces.get_stuck_migrations(staleness)


# =============================================================================
# Text rendering
# =============================================================================


def _status_lines(counts: StatusCounts, indent: str = "  ") -> list[str]:
    return [
        f"{indent}🟢 Completed: {counts.completed:,} ({counts.percent_complete:.1f}%)",
        f"{indent}🔵 In Progress: {counts.in_progress:,}",
        f"{indent}🟡 Pending: {counts.pending:,}",
        f"{indent}🔴 Failed: {counts.failed:,}",
    ]


def _more(items: list, noun: str) -> list[str]:
    if len(items) > _LIST_LIMIT:
        return [f"  ... and {len(items) - _LIST_LIMIT} more {noun}"]
    return []


def _when(ts: datetime | None) -> str:
    return ts.isoformat(sep=" ", timespec="seconds") if ts else "unknown"


def format_overall(stats: OverallStats) -> str:
    lines = ["", "Migration Progress Overview", _RULE, ""]
    if stats.customers.total:
        lines.append(f"Total Customers: {stats.customers.total:,}")
        lines += _status_lines(stats.customers)
        lines.append("")
    lines.append(f"Total Spaces: {stats.spaces.total:,}")
    lines += _status_lines(stats.spaces)
    lines += [
        "",
        f"Total Uploads: {stats.total_uploads:,}",
        f"  🟢 Completed: {stats.completed_uploads:,} ({stats.upload_percent:.1f}%)",
    ]

    if stats.by_instance:
        lines += ["", "Progress by Instance:", _SUBRULE]
        for inst in stats.by_instance.values():
            lines += [
                "",
                f"Instance {inst.instance_id}:",
                f"  Spaces: {inst.spaces.completed:,}/{inst.spaces.total:,}"
                f" ({inst.spaces.percent_complete:.1f}%)",
                f"  Uploads: {inst.completed_uploads:,}/{inst.total_uploads:,}"
                f" ({inst.upload_percent:.1f}%)",
            ]
            if inst.spaces.failed:
                lines.append(f"  Failed: {inst.spaces.failed:,}")
    return "\n".join(lines)


def format_customer(detail: CustomerDetail) -> str:
    lines = ["", f"Customer: {detail.customer}", _RULE, ""]
    if detail.progress is not None:
        progress = detail.progress
        lines += [
            f"Status: {_STATUS_ICONS[progress.status]} {progress.status.value}",
            f"Instance: {progress.instance_id or 'unassigned'}",
            f"Uploads: {progress.completed_uploads:,}/{progress.total_uploads:,}",
        ]
        if progress.error:
            lines.append(f"Error: {progress.error}")
        lines.append("")

    lines += [f"Total Spaces: {len(detail.spaces)}", ""]
    if not detail.spaces:
        lines.append("No migration data found for this customer.")
        return "\n".join(lines)

    lines += ["Status:"] + _status_lines(detail.counts) + ["", "Spaces:", _SUBRULE]
    for space in detail.spaces[:_LIST_LIMIT]:
        uploads = (
            f" ({space.completed_uploads}/{space.total_uploads} uploads)"
            if space.total_uploads
            else ""
        )
        lines.append(f"  {_STATUS_ICONS[space.status]} {space.space}{uploads}")
        if space.status == ProgressStatus.IN_PROGRESS:
            lines.append(f"     Instance: {space.instance_id}, Worker: {space.worker_id}")
            lines.append(f"     Updated: {_when(space.updated_at)}")
        if space.status == ProgressStatus.FAILED and space.error:
            lines.append(f"     Error: {space.error}")
    lines += _more(detail.spaces, "spaces")
    return "\n".join(lines)


def format_space(space: SpaceProgress | None) -> str:
    lines = ["", "Space Migration Status", _RULE, ""]
    if space is None:
        lines.append("No migration data found for this space.")
        return "\n".join(lines)

    lines += [
        f"Space: {space.space}",
        f"Customer: {space.customer}",
        f"Status: {_STATUS_ICONS[space.status]} {space.status.value}",
        "",
        f"Uploads: {space.completed_uploads}/{space.total_uploads}",
    ]
    if space.instance_id:
        lines.append(f"Instance: {space.instance_id}")
    if space.worker_id:
        lines.append(f"Worker: {space.worker_id}")
    lines += ["", f"Created: {_when(space.created_at)}", f"Updated: {_when(space.updated_at)}"]
    if space.last_processed_upload:
        lines.append(f"Last Upload: {space.last_processed_upload}")
    if space.error:
        lines += ["", f"Error: {space.error}"]
    return "\n".join(lines)


def format_instance(detail: InstanceDetail) -> str:
    lines = ["", f"Instance {detail.instance_id} Progress", _RULE, ""]
    if not detail.spaces:
        lines.append("No migration data found for this instance.")
        return "\n".join(lines)

    total_uploads = sum(s.total_uploads for s in detail.spaces)
    completed_uploads = sum(s.completed_uploads for s in detail.spaces)
    lines.append(f"Total Spaces: {len(detail.spaces)}")
    lines += _status_lines(detail.counts)
    lines += [
        "",
        f"Total Uploads: {total_uploads:,}",
        f"  🟢 Completed: {completed_uploads:,}",
    ]

    workers = detail.by_worker
    if workers:
        lines += ["", "Progress by Worker:", _SUBRULE]
        for worker_id, counts in workers.items():
            lines.append(f"  Worker {worker_id}: {counts.completed}/{counts.total} completed")
            if counts.in_progress:
                lines.append(f"    In Progress: {counts.in_progress}")
            if counts.failed:
                lines.append(f"    Failed: {counts.failed}")
    return "\n".join(lines)


def format_failed(report: FailedReport) -> str:
    lines = ["", "Failed Migrations", _RULE, ""]
    if report.customers:
        lines.append(f"Failed Customers: {len(report.customers)}")
        for customer in report.customers[:_LIST_LIMIT]:
            lines.append(f"  🔴 {customer.customer}: {customer.error or 'Unknown error'}")
        lines += _more(report.customers, "customers")
        lines.append("")

    lines += [f"Total Failed: {len(report.spaces)}", ""]
    if not report.spaces:
        lines.append("No failed migrations found.")
        return "\n".join(lines)

    for item in report.spaces[:_LIST_LIMIT]:
        lines += [
            f"🔴 {item.space}",
            f"  Customer: {item.customer}",
            f"  Instance: {item.instance_id}, Worker: {item.worker_id}",
            f"  Error: {item.error or 'Unknown error'}",
            f"  Updated: {_when(item.updated_at)}",
            "",
        ]
    lines += _more(report.spaces, "failed migrations")
    return "\n".join(lines)


def format_stuck(
    stuck: list[SpaceProgress],
    staleness: timedelta = DEFAULT_STUCK_AFTER,
    *,
    now: datetime | None = None,
) -> str:
    now = now or datetime.now(UTC)
    minutes = int(staleness.total_seconds() // 60)
    lines = ["", f"Stuck Migrations (in-progress >{minutes} minutes)", _RULE, ""]
    lines += [f"Total Stuck: {len(stuck)}", ""]
    if not stuck:
        lines.append("No stuck migrations found.")
        return "\n".join(lines)

    for item in stuck[:_LIST_LIMIT]:
        stuck_for = int((now - item.updated_at).total_seconds() // 60) if item.updated_at else 0
        lines += [
            f"🔵 {item.space}",
            f"  Customer: {item.customer}",
            f"  Instance: {item.instance_id}, Worker: {item.worker_id}",
            f"  Stuck for: {stuck_for} minutes",
            f"  Progress: {item.completed_uploads}/{item.total_uploads} uploads",
            f"  Last Update: {_when(item.updated_at)}",
            "",
        ]
    lines += _more(stuck, "stuck migrations")
    return "\n".join(lines)


__all__ = [
    "CustomerDetail",
    "FailedReport",
    "InstanceDetail",
    "InstanceStats",
    "MigrationMonitor",
    "OverallStats",
    "StatusCounts",
    "format_customer",
    "format_failed",
    "format_instance",
    "format_overall",
    "format_space",
    "format_stuck",
]
