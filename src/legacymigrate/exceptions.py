"""
Exceptions and error classification for the legacy migration engine.

Exceptions are organized by the component that raises them. Every
exception carries an ErrorClassification so callers can decide whether to
retry, skip or abort without inspecting messages.

Exception Hierarchy:
    LegacyMigrationError (base)
    +-- TransientStoreError
    +-- ProgressStoreError
    |   +-- InvalidProgressTransitionError
    +-- SizeNotFoundError
    +-- NoShardsNoIndexError
    +-- IndexingServiceUnavailableError
    +-- MigrationSpaceUnavailableError
    +-- PlanningError

Retry:
    execute_with_retry() retries an async operation with exponential backoff
    while the raised error is transient (TransientStoreError, builtin
    TimeoutError, or any LegacyMigrationError classified TRANSIENT). All
    other errors propagate immediately.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from legacymigrate.models import ProgressStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorSeverity(Enum):
    """
    Severity level of migration errors.

    Used for alerting and logging decisions.
    """

    CRITICAL = "critical"
    """Data corruption or a condition that invalidates the run."""

    ERROR = "error"
    """Significant failure that may require operator intervention."""

    WARNING = "warning"
    """Issue that should be monitored but may self-resolve."""

    INFO = "info"
    """Informational condition, not a failure."""

    @property
    def should_alert(self) -> bool:
        """True for CRITICAL and ERROR levels."""
        return self in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR)

    @property
    def log_level(self) -> int:
        """
        Get the corresponding Python logging level.

        Returns:
            Python logging level constant.
        """
        level_map = {
            ErrorSeverity.CRITICAL: logging.CRITICAL,
            ErrorSeverity.ERROR: logging.ERROR,
            ErrorSeverity.WARNING: logging.WARNING,
            ErrorSeverity.INFO: logging.INFO,
        }
        return level_map[self]


class ErrorRecoverability(Enum):
    """
    Recoverability classification for migration errors.

    Attributes:
        RECOVERABLE: The affected unit can be retried on a later run.
        TRANSIENT: Temporary error that may resolve on an immediate retry.
        FATAL: Retrying the same unit will fail the same way.
    """

    RECOVERABLE = "recoverable"
    TRANSIENT = "transient"
    FATAL = "fatal"

    @property
    def should_retry(self) -> bool:
        """True only for TRANSIENT errors."""
        return self == ErrorRecoverability.TRANSIENT


@dataclass(frozen=True)
class RetryConfig:
    """
    Configuration for bounded retry with exponential backoff.

    Attributes:
        max_attempts: Maximum number of attempts (including the initial one).
        base_delay_ms: Delay before the first retry in milliseconds.
        max_delay_ms: Cap on any single delay in milliseconds.
        exponential_base: Multiplier applied per attempt.
        jitter_factor: Random jitter factor (0.0 to 1.0).

    Example:
        >>> config = RetryConfig(max_attempts=5, base_delay_ms=1000, jitter_factor=0.0)
        >>> config.get_delay_ms(attempt=2)
        4000.0
    """

    max_attempts: int = 5
    base_delay_ms: float = 1000.0
    max_delay_ms: float = 60000.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_ms < 0:
            raise ValueError(f"base_delay_ms must be >= 0, got {self.base_delay_ms}")
        if self.max_delay_ms < self.base_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"base_delay_ms ({self.base_delay_ms})"
            )
        if self.exponential_base < 1.0:
            raise ValueError(f"exponential_base must be >= 1.0, got {self.exponential_base}")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise ValueError(f"jitter_factor must be between 0.0 and 1.0, got {self.jitter_factor}")

    def get_delay_ms(self, attempt: int) -> float:
        """
        Calculate the delay before retrying after a failed attempt.

        Args:
            attempt: Failed attempt number (0-indexed).

        Returns:
            Delay in milliseconds.
        """
        delay = self.base_delay_ms * (self.exponential_base**attempt)
        if self.jitter_factor > 0:
            delay += delay * self.jitter_factor * random.random()  # nosec B311 - retry jitter
        return min(delay, self.max_delay_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "base_delay_ms": self.base_delay_ms,
            "max_delay_ms": self.max_delay_ms,
            "exponential_base": self.exponential_base,
            "jitter_factor": self.jitter_factor,
        }


# Point queries against the legacy tables: 5 attempts, 1s base, doubling
TRANSIENT_RETRY_CONFIG = RetryConfig(
    max_attempts=5,
    base_delay_ms=1000.0,
    max_delay_ms=60000.0,
    exponential_base=2.0,
)


@dataclass(frozen=True)
class ErrorClassification:
    """
    Metadata describing how an error should be handled.

    Attributes:
        severity: The severity level of the error.
        recoverability: How the error can be recovered from.
        error_code: Unique error code for programmatic handling.
        category: Error category for grouping related errors.
        suggested_action: Human-readable guidance for operators.
        retry_config: Retry configuration (transient errors only).
        labels: Extra labels attached to logs and spans.
    """

    severity: ErrorSeverity
    recoverability: ErrorRecoverability
    error_code: str
    category: str
    suggested_action: str
    retry_config: RetryConfig | None = None
    labels: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "severity": self.severity.value,
            "recoverability": self.recoverability.value,
            "error_code": self.error_code,
            "category": self.category,
            "suggested_action": self.suggested_action,
        }
        if self.retry_config:
            result["retry_config"] = self.retry_config.to_dict()
        if self.labels:
            result["labels"] = self.labels
        return result


class LegacyMigrationError(Exception):
    """
    Base exception for all migration engine errors.

    Attributes:
        message: Human-readable error description.
        customer: The customer involved, if applicable.
        space: The space involved, if applicable.
        suggested_action: Overrides the classification's suggested action.
    """

    _default_classification: ErrorClassification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="MIGRATION_ERROR",
        category="general",
        suggested_action="Review migration logs for the affected upload",
    )

    def __init__(
        self,
        message: str,
        *,
        customer: str | None = None,
        space: str | None = None,
        suggested_action: str | None = None,
    ) -> None:
        self.message = message
        self.customer = customer
        self.space = space
        self.suggested_action = suggested_action
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.customer:
            parts.append(f"customer={self.customer}")
        if self.space:
            parts.append(f"space={self.space}")
        return " ".join(parts)

    @property
    def classification(self) -> ErrorClassification:
        """
        Get the error classification for this exception.

        Subclasses override _default_classification.
        """
        return self._default_classification

    @property
    def severity(self) -> ErrorSeverity:
        return self.classification.severity

    @property
    def recoverability(self) -> ErrorRecoverability:
        return self.classification.recoverability

    @property
    def error_code(self) -> str:
        return self.classification.error_code

    @property
    def retry_config(self) -> RetryConfig | None:
        return self.classification.retry_config

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "message": self.message,
            "customer": self.customer,
            "space": self.space,
            "error_code": self.error_code,
            "classification": self.classification.to_dict(),
        }


class TransientStoreError(LegacyMigrationError):
    """
    Raised by table-backed collaborators for throttling and timeouts.

    Wraps provider-specific conditions (throughput exceeded, connection
    timeouts) so that execute_with_retry can recognize them.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.TRANSIENT,
        error_code="TRANSIENT_STORE_ERROR",
        category="connectivity",
        suggested_action="Retry with backoff; reduce concurrency if it persists",
        retry_config=TRANSIENT_RETRY_CONFIG,
    )


class ProgressStoreError(LegacyMigrationError):
    """Raised when a progress record cannot be read or written."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="PROGRESS_STORE_ERROR",
        category="progress",
        suggested_action=(
            "Check progress store connectivity; the run resumes from the last checkpoint"
        ),
    )


class InvalidProgressTransitionError(ProgressStoreError):
    """
    Raised when a progress record would move to a disallowed status.

    Attributes:
        current_status: Status stored in the record.
        target_status: Status that was requested.
    """

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="INVALID_PROGRESS_TRANSITION",
        category="progress",
        suggested_action="Reset the progress record explicitly before re-running it",
    )

    def __init__(
        self,
        current_status: ProgressStatus,
        target_status: ProgressStatus,
        *,
        customer: str | None = None,
        space: str | None = None,
    ) -> None:
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Invalid progress transition: {current_status.value} -> {target_status.value}",
            customer=customer,
            space=space,
        )


class SizeNotFoundError(LegacyMigrationError):
    """Raised when no size source knows the byte size of a shard."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="SHARD_SIZE_NOT_FOUND",
        category="data",
        suggested_action="Check the blob registry, allocation and store tables for the shard",
    )

    def __init__(self, space: str, shard: str) -> None:
        self.shard = shard
        super().__init__(f"Shard size not found in any size source: {shard}", space=space)


class NoShardsNoIndexError(LegacyMigrationError):
    """Raised when an upload lists no shards and no index claim exists for it."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.CRITICAL,
        recoverability=ErrorRecoverability.FATAL,
        error_code="NO_SHARDS_NO_INDEX",
        category="data",
        suggested_action="Upload record is corrupt; inspect the upload table entry",
    )

    def __init__(self, space: str, root: str) -> None:
        self.root = root
        super().__init__(
            f"Upload {root} has no shards and no index claim - cannot migrate", space=space
        )


class IndexingServiceUnavailableError(LegacyMigrationError):
    """Raised by an indexing oracle when the service answers with a server error."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.WARNING,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="INDEXING_SERVICE_500",
        category="upstream",
        suggested_action="Upstream outage; the upload is skipped and picked up by a later run",
    )


class MigrationSpaceUnavailableError(LegacyMigrationError):
    """Raised when no migration space can be obtained for an upload's space."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="MIGRATION_SPACE_UNAVAILABLE",
        category="ownership",
        suggested_action="Check the ownership index for the space's customer",
    )


class UploadNotFoundError(LegacyMigrationError):
    """Raised when a requested upload does not exist in its space."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="UPLOAD_NOT_FOUND",
        category="data",
        suggested_action="Check the root CID and the space it was uploaded to",
    )

    def __init__(self, space: str, root: str) -> None:
        self.root = root
        super().__init__(f"Upload not found: {root}", space=space)


class PlanningError(LegacyMigrationError):
    """Raised when partition planning cannot complete; nothing is published."""

    _default_classification = ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.RECOVERABLE,
        error_code="PLANNING_FAILED",
        category="planning",
        suggested_action="Re-run planning; counting resumes from its checkpoint",
    )


def is_transient(exc: BaseException) -> bool:
    """
    Check whether an exception belongs to the retryable class.

    Args:
        exc: The exception to check.

    Returns:
        True for builtin timeouts and transient LegacyMigrationErrors.
    """
    if isinstance(exc, LegacyMigrationError):
        return exc.recoverability.should_retry
    return isinstance(exc, TimeoutError)


async def execute_with_retry(
    operation: Callable[[], Coroutine[Any, Any, T]],
    operation_name: str,
    *,
    retry_config: RetryConfig | None = None,
    on_retry: Callable[[int, Exception, float], None] | None = None,
) -> T:
    """
    Execute an operation, retrying transient errors with exponential backoff.

    Args:
        operation: Async callable to execute.
        operation_name: Name used in log messages.
        retry_config: Override retry configuration.
        on_retry: Callback invoked on each retry (attempt, exception, delay_ms).

    Returns:
        The result of the operation.

    Raises:
        Exception: The last error once retries are exhausted, or the first
            non-transient error unchanged.
    """
    config = retry_config or TRANSIENT_RETRY_CONFIG
    attempt = 0

    while True:
        try:
            result = await operation()
        except Exception as e:
            if not is_transient(e):
                raise

            if attempt + 1 >= config.max_attempts:
                logger.error(
                    "Exhausted %d attempts for '%s': %s",
                    config.max_attempts,
                    operation_name,
                    e,
                )
                raise

            delay_ms = config.get_delay_ms(attempt)
            logger.warning(
                "Retryable error in '%s' (attempt %d/%d): %s. Retrying in %.1fs",
                operation_name,
                attempt + 1,
                config.max_attempts,
                e,
                delay_ms / 1000.0,
            )
            if on_retry:
                on_retry(attempt, e, delay_ms)

            await asyncio.sleep(delay_ms / 1000.0)
            attempt += 1
            continue

        if attempt > 0:
            logger.info("Operation '%s' succeeded after %d retries", operation_name, attempt)
        return result


def classify_exception(exc: Exception) -> ErrorClassification:
    """
    Classify any exception and return its error classification.

    Args:
        exc: The exception to classify.

    Returns:
        The exception's own classification, or a generic UNKNOWN_ERROR one.
    """
    if isinstance(exc, LegacyMigrationError):
        return exc.classification

    if isinstance(exc, TimeoutError):
        return TransientStoreError._default_classification

    return ErrorClassification(
        severity=ErrorSeverity.ERROR,
        recoverability=ErrorRecoverability.FATAL,
        error_code="UNKNOWN_ERROR",
        category="unknown",
        suggested_action="An unexpected error occurred. Review logs for the affected upload.",
    )


__all__ = [
    "ErrorSeverity",
    "ErrorRecoverability",
    "ErrorClassification",
    "RetryConfig",
    "TRANSIENT_RETRY_CONFIG",
    "LegacyMigrationError",
    "TransientStoreError",
    "ProgressStoreError",
    "InvalidProgressTransitionError",
    "SizeNotFoundError",
    "NoShardsNoIndexError",
    "IndexingServiceUnavailableError",
    "MigrationSpaceUnavailableError",
    "PlanningError",
    "UploadNotFoundError",
    "is_transient",
    "execute_with_retry",
    "classify_exception",
]
