"""
Failure classification.

Maps every non-success outcome to exactly one FailureReason:
- exceptions raised by a step are classified by the step that was running
- verification gaps are classified by the first missing condition,
  with gateway results taking precedence as the more specific root cause

FailureHistogram aggregates reasons per space and per customer; its JSON
form is what gets stored in the ``error`` field of failed progress records.
"""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Iterable

from legacymigrate.exceptions import (
    IndexingServiceUnavailableError,
    NoShardsNoIndexError,
)
from legacymigrate.models import (
    NO_DELEGATION_FOUND,
    FailureReason,
    GatewayFailed,
    GatewayResult,
    GatewaySkipped,
    Step,
    UploadOutcome,
    VerificationResult,
)

STEP_FAILURE_REASONS: dict[Step, FailureReason] = {
    Step.ANALYZE: FailureReason.ANALYSIS_FAILED,
    Step.INDEX_GENERATION: FailureReason.INDEX_GENERATION_FAILED,
    Step.LOCATION_CLAIMS: FailureReason.LOCATION_CLAIM_FAILED,
    Step.GATEWAY_AUTH: FailureReason.GATEWAY_AUTH_FAILED,
}


def classify_step_failure(step: Step, exc: BaseException) -> FailureReason:
    """
    Classify an exception raised while a step was executing.

    Args:
        step: The step that was running.
        exc: The exception it raised.

    Returns:
        The taxonomy value; UNKNOWN_ERROR for INIT/VERIFY.
    """
    if isinstance(exc, NoShardsNoIndexError):
        return FailureReason.NO_SHARDS_NO_INDEX
    if isinstance(exc, IndexingServiceUnavailableError):
        return FailureReason.INDEXING_SERVICE_500
    return STEP_FAILURE_REASONS.get(step, FailureReason.UNKNOWN_ERROR)


def classify_verification(
    verification: VerificationResult,
    gateway_result: GatewayResult | None,
) -> FailureReason | None:
    """
    Classify a failed verification.

    Args:
        verification: Result of the independent re-query.
        gateway_result: What GATEWAY_AUTH returned (None if not attempted).

    Returns:
        None when verification succeeded, otherwise one taxonomy value.
    """
    if verification.success:
        return None

    if not verification.index_verified:
        reason = FailureReason.INDEX_MISSING
    elif not verification.location_claims_verified:
        reason = FailureReason.LOCATION_CLAIMS_MISSING
    elif not verification.all_shards_have_space:
        reason = FailureReason.SPACE_INFO_MISSING
    else:
        reason = FailureReason.VERIFICATION_FAILED

    if isinstance(gateway_result, GatewaySkipped) and gateway_result.reason == NO_DELEGATION_FOUND:
        reason = FailureReason.MISSING_DELEGATION
    elif isinstance(gateway_result, GatewayFailed):
        reason = FailureReason.GATEWAY_AUTH_FAILED

    return reason


def outcome_reason(outcome: UploadOutcome) -> FailureReason | None:
    """Reason to count for an outcome; failed outcomes always get one."""
    if outcome.success or outcome.skipped:
        return None
    return outcome.failure_reason or FailureReason.UNKNOWN_ERROR


class FailureHistogram:
    """
    Count of failure reasons.

    Example:
        >>> histogram = FailureHistogram()
        >>> histogram.add(FailureReason.MISSING_DELEGATION)
        >>> histogram.to_json()
        '{"MISSING_DELEGATION": 1}'
    """

    def __init__(self, reasons: Iterable[FailureReason] = ()) -> None:
        self._counts: Counter[FailureReason] = Counter(reasons)

    def add(self, reason: FailureReason, count: int = 1) -> None:
        self._counts[reason] += count

    def merge(self, other: FailureHistogram) -> None:
        self._counts.update(other._counts)

    def count(self, reason: FailureReason) -> int:
        return self._counts[reason]

    @property
    def total(self) -> int:
        return sum(self._counts.values())

    def __bool__(self) -> bool:
        return self.total > 0

    def __len__(self) -> int:
        return len(self._counts)

    def most_common(self) -> list[tuple[FailureReason, int]]:
        return self._counts.most_common()

    def percentages(self) -> list[tuple[FailureReason, int, float]]:
        """Reasons by descending count with their share of all failures."""
        total = self.total
        return [
            (reason, count, (count / total) * 100 if total else 0.0)
            for reason, count in self.most_common()
        ]

    def to_dict(self) -> dict[str, int]:
        return {reason.value: count for reason, count in self._counts.items()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data: str) -> FailureHistogram:
        """
        Parse a histogram previously stored in a progress record.

        Unknown keys are counted as UNKNOWN_ERROR.
        """
        histogram = cls()
        for key, count in json.loads(data).items():
            try:
                reason = FailureReason(key)
            except ValueError:
                reason = FailureReason.UNKNOWN_ERROR
            histogram.add(reason, int(count))
        return histogram


__all__ = [
    "STEP_FAILURE_REASONS",
    "FailureHistogram",
    "classify_step_failure",
    "classify_verification",
    "outcome_reason",
]
