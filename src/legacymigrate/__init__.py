"""
legacymigrate - Migration orchestration for legacy uploads.

This library provides:
- A per-upload step machine that brings uploads to the indexed, claimed
  and gateway-authorized state, idempotently
- An orchestrator driving customers, spaces and uploads with resumable
  progress tracking
- A progress store with PostgreSQL, SQLite and in-memory backends
- A partition planner distributing customers across parallel instances
- Operator monitoring views over the progress store
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("legacy-migrate")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from legacymigrate.classifier import FailureHistogram, outcome_reason
from legacymigrate.config import MigrationConfig, MigrationSettings, PlannerConfig
from legacymigrate.exceptions import (
    IndexingServiceUnavailableError,
    InvalidProgressTransitionError,
    LegacyMigrationError,
    MigrationSpaceUnavailableError,
    NoShardsNoIndexError,
    PlanningError,
    ProgressStoreError,
    RetryConfig,
    SizeNotFoundError,
    TransientStoreError,
    UploadNotFoundError,
    execute_with_retry,
)
from legacymigrate.machine import MigrationStepMachine
from legacymigrate.models import (
    Claim,
    CustomerAssignment,
    CustomerProgress,
    DidSpace,
    FailureReason,
    GatewayFailed,
    GatewayOk,
    GatewaySkipped,
    IndexingResult,
    MigrationStatus,
    ProgressStatus,
    RawKeySpace,
    SingleStepMode,
    SpaceProgress,
    Step,
    UploadOutcome,
    UploadRecord,
    VerificationResult,
    parse_space_identifier,
)
from legacymigrate.monitor import MigrationMonitor
from legacymigrate.orchestrator import MigrationOrchestrator, RunTarget, load_customers_file
from legacymigrate.ownership import OwnershipCache
from legacymigrate.planner import PartitionPlan, PartitionPlanner, distribute_customers
from legacymigrate.protocols import Collaborators
from legacymigrate.report import RunSummary, format_summary
from legacymigrate.repositories import (
    CustomerProgressRepository,
    InMemoryCustomerProgressRepository,
    InMemorySpaceProgressRepository,
    SpaceProgressRepository,
    open_progress_store,
)
from legacymigrate.sizes import FallbackSizeResolver
from legacymigrate.steps import StepExecutors
from legacymigrate.verification import MigrationVerifier

__all__ = [
    "__version__",
    # Models
    "Claim",
    "CustomerAssignment",
    "CustomerProgress",
    "DidSpace",
    "FailureReason",
    "GatewayFailed",
    "GatewayOk",
    "GatewaySkipped",
    "IndexingResult",
    "MigrationStatus",
    "ProgressStatus",
    "RawKeySpace",
    "SingleStepMode",
    "SpaceProgress",
    "Step",
    "UploadOutcome",
    "UploadRecord",
    "VerificationResult",
    "parse_space_identifier",
    # Exceptions
    "LegacyMigrationError",
    "TransientStoreError",
    "ProgressStoreError",
    "InvalidProgressTransitionError",
    "SizeNotFoundError",
    "NoShardsNoIndexError",
    "IndexingServiceUnavailableError",
    "MigrationSpaceUnavailableError",
    "UploadNotFoundError",
    "PlanningError",
    "RetryConfig",
    "execute_with_retry",
    # Configuration
    "MigrationConfig",
    "MigrationSettings",
    "PlannerConfig",
    # Engine
    "Collaborators",
    "OwnershipCache",
    "FallbackSizeResolver",
    "StepExecutors",
    "MigrationVerifier",
    "MigrationStepMachine",
    "FailureHistogram",
    "outcome_reason",
    # Orchestration
    "MigrationOrchestrator",
    "RunTarget",
    "RunSummary",
    "format_summary",
    "load_customers_file",
    # Progress store
    "SpaceProgressRepository",
    "CustomerProgressRepository",
    "InMemorySpaceProgressRepository",
    "InMemoryCustomerProgressRepository",
    "open_progress_store",
    # Planning and monitoring
    "PartitionPlanner",
    "PartitionPlan",
    "distribute_customers",
    "MigrationMonitor",
]
