"""
Run summaries and results files.

A run produces one UploadOutcome per processed upload. RunSummary
aggregates them for the end-of-run report: counts and percentages,
failures grouped by space, and the failure-reason breakdown. The full
outcome list is written to a timestamped JSON file for offline analysis.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from legacymigrate.classifier import FailureHistogram, outcome_reason
from legacymigrate.models import SingleStepMode, UploadOutcome

_RULE = "━" * 70


@dataclass
class RunSummary:
    """
    Aggregated outcomes of one orchestrator run.

    Attributes:
        outcomes: Per-upload outcomes in processing order.
        processed_spaces: Spaces with at least one processed upload.
        skipped_spaces: Spaces skipped because their progress was completed.
        skipped_customers: Customers skipped because they were completed.
        verify_only: Whether the run only verified.
        single_step: Single-step mode of the run, if any.
    """

    outcomes: list[UploadOutcome] = field(default_factory=list)
    processed_spaces: set[str] = field(default_factory=set)
    skipped_spaces: set[str] = field(default_factory=set)
    skipped_customers: set[str] = field(default_factory=set)
    verify_only: bool = False
    single_step: SingleStepMode | None = None

    def record(self, outcome: UploadOutcome) -> None:
        self.outcomes.append(outcome)
        self.processed_spaces.add(outcome.space)

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def successful(self) -> int:
        return sum(1 for o in self.outcomes if o.success)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.failed)

    @property
    def skipped(self) -> int:
        return sum(1 for o in self.outcomes if o.skipped)

    @property
    def already_migrated(self) -> int:
        return sum(1 for o in self.outcomes if o.already_migrated)

    @property
    def spaces_with_failures(self) -> set[str]:
        return {o.space for o in self.outcomes if o.failed}

    def rate(self, count: int) -> int:
        """Whole-number percentage of all processed uploads."""
        return round(count / self.total * 100) if self.total else 0

    def failures_by_space(self) -> dict[str, list[UploadOutcome]]:
        grouped: dict[str, list[UploadOutcome]] = {}
        for outcome in self.outcomes:
            if outcome.failed:
                grouped.setdefault(outcome.space, []).append(outcome)
        return grouped

    def reasons(self) -> FailureHistogram:
        histogram = FailureHistogram()
        for outcome in self.outcomes:
            reason = outcome_reason(outcome)
            if reason is not None:
                histogram.add(reason)
        return histogram

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "skipped": self.skipped,
            "already_migrated": self.already_migrated,
            "processed_spaces": len(self.processed_spaces),
            "spaces_with_failures": len(self.spaces_with_failures),
            "skipped_spaces": len(self.skipped_spaces),
            "skipped_customers": len(self.skipped_customers),
            "failure_reasons": self.reasons().to_dict(),
        }


def format_summary(summary: RunSummary) -> str:
    """Render the end-of-run report shown after the live step trace."""
    lines: list[str] = []

    failures = summary.failures_by_space()
    if failures:
        lines += ["", f"Failed Uploads ({summary.failed}):"]
        for space, outcomes in failures.items():
            lines += ["", f"  Space: {space}"]
            for outcome in outcomes:
                lines.append(f"    ✗ {outcome.root}")
                lines.append(f"      └─ {outcome.error or 'unknown error'}")

        lines += ["", "Failure Breakdown:"]
        for reason, count, percent in summary.reasons().percentages():
            lines.append(
                f"  {reason.value}: {count} upload(s) ({round(percent)}% of failures)"
            )

    processed = len(summary.processed_spaces)
    with_failures = len(summary.spaces_with_failures)
    lines += ["", _RULE, "MIGRATION SUMMARY", _RULE, "", "Spaces:"]
    lines.append(f"  Total processed:     {processed}")
    if summary.skipped_spaces:
        lines.append(f"  Already completed:   {len(summary.skipped_spaces)}")
    if with_failures:
        with_pct = round(with_failures / processed * 100) if processed else 0
        lines.append(f"  With failures:       {with_failures} ({with_pct}%)")
        lines.append(f"  Without failures:    {processed - with_failures} ({100 - with_pct}%)")

    successful = summary.successful
    failed = summary.failed
    lines += ["", "Uploads:", f"  Total processed:     {summary.total}"]
    if summary.verify_only:
        lines.append(f"  Verified (passed):   {successful} ({summary.rate(successful)}%)")
        lines.append(f"  Verified (failed):   {failed} ({summary.rate(failed)}%)")
        if failed == 0 and successful > 0:
            lines += ["", "  ALL VERIFICATIONS PASSED"]
    elif summary.single_step is not None:
        lines.append(f"  Mode: single step ({summary.single_step.value})")
        lines.append(f"  Successful:          {successful} ({summary.rate(successful)}%)")
        lines.append(f"  Failed:              {failed} ({summary.rate(failed)}%)")
    else:
        lines.append(f"  Migrated:            {successful} ({summary.rate(successful)}%)")
        lines.append(f"  Failed:              {failed} ({summary.rate(failed)}%)")
        lines.append(f"  Already migrated:    {summary.already_migrated}")
    if summary.skipped:
        lines.append(f"  Skipped (upstream):  {summary.skipped}")
    if summary.skipped_customers:
        lines.append(f"  Customers already completed: {len(summary.skipped_customers)}")
    return "\n".join(lines)


def results_filename(
    *,
    verify_only: bool = False,
    customer: str | None = None,
    space: str | None = None,
    cid: str | None = None,
    now: datetime | None = None,
) -> str:
    """
    Name of the results file for a run.

    Example:
        >>> results_filename(space="did:key:z6MkAbc", now=datetime(2025, 12, 8, 15, tzinfo=UTC))
        '2025-12-08T15-00-00_migrate_space-z6MkAbc.json'
    """
    now = now or datetime.now(UTC)
    timestamp = now.strftime("%Y-%m-%dT%H-%M-%S")
    mode = "verify" if verify_only else "migrate"

    if customer:
        target = f"customer-{customer.replace('did:mailto:', '') or 'customer'}"
    elif cid:
        target = f"cid-{cid[:8]}"
    elif space:
        target = f"space-{space.replace('did:key:', '') or 'space'}"
    else:
        target = "sample"
    return f"{timestamp}_{mode}_{target}.json"


def write_results(outcomes: list[UploadOutcome], path: Path) -> Path:
    """Write outcomes as a JSON array, creating the directory if needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps([o.to_dict() for o in outcomes], indent=2),
        encoding="utf-8",
    )
    return path


__all__ = [
    "RunSummary",
    "format_summary",
    "results_filename",
    "write_results",
]
