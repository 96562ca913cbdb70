"""
Standard span attributes for legacymigrate.

Attribute constants used across the engine for consistent span naming.
They follow OpenTelemetry semantic conventions where applicable.

Example:
    >>> from legacymigrate.observability.attributes import ATTR_SPACE, ATTR_UPLOAD_ROOT
    >>>
    >>> with tracer.span(
    ...     "legacymigrate.machine.migrate_upload",
    ...     {ATTR_SPACE: upload.space, ATTR_UPLOAD_ROOT: upload.root},
    ... ):
    ...     pass
"""

# =============================================================================
# Ownership Attributes
# =============================================================================

ATTR_CUSTOMER = "legacymigrate.customer"
"""Customer account identifier (e.g. 'did:mailto:example.com:alice')."""

ATTR_SPACE = "legacymigrate.space"
"""Space DID owning the upload."""

ATTR_MIGRATION_SPACE = "legacymigrate.migration_space"
"""Per-customer space that receives migrated indexes."""

# =============================================================================
# Upload Attributes
# =============================================================================

ATTR_UPLOAD_ROOT = "legacymigrate.upload.root"
"""Content address of the upload's DAG root."""

ATTR_SHARD = "legacymigrate.shard"
"""Content-addressed shard identifier."""

ATTR_SHARD_COUNT = "legacymigrate.shard.count"
"""Number of shards involved in an operation (integer)."""

ATTR_INDEX_CID = "legacymigrate.index.cid"
"""Content id of a sharded index artifact."""

# =============================================================================
# Step Machine Attributes
# =============================================================================

ATTR_STEP = "legacymigrate.step"
"""Step machine state (e.g. 'analyze', 'location-claims')."""

ATTR_SINGLE_STEP_MODE = "legacymigrate.single_step_mode"
"""Isolated single-step mode, when one is active."""

ATTR_VERIFY_ONLY = "legacymigrate.verify_only"
"""Whether the run only verifies (boolean)."""

ATTR_FAILURE_REASON = "legacymigrate.failure_reason"
"""Failure taxonomy value for a non-success outcome."""

ATTR_ALREADY_MIGRATED = "legacymigrate.already_migrated"
"""Whether ANALYZE short-circuited the upload (boolean)."""

# =============================================================================
# Progress Store Attributes
# =============================================================================

ATTR_PROGRESS_STATUS = "legacymigrate.progress.status"
"""Progress record status ('pending', 'in-progress', 'completed', 'failed')."""

ATTR_INSTANCE_ID = "legacymigrate.instance.id"
"""Worker instance identifier."""

ATTR_COMPLETED_UPLOADS = "legacymigrate.progress.completed_uploads"
"""Uploads checkpointed for a space (integer)."""

# =============================================================================
# Planner Attributes
# =============================================================================

ATTR_SEGMENT = "legacymigrate.planner.segment"
"""Scan segment number (integer)."""

ATTR_SEGMENT_COUNT = "legacymigrate.planner.segments"
"""Total scan segments (integer)."""

ATTR_CUSTOMER_COUNT = "legacymigrate.planner.customer_count"
"""Number of customers in a planning operation (integer)."""

ATTR_INSTANCE_COUNT = "legacymigrate.planner.instance_count"
"""Number of instances being planned for (integer)."""

# =============================================================================
# Database Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g. 'postgresql', 'sqlite')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g. 'INSERT', 'SELECT', 'UPDATE')."""

ATTR_ERROR_TYPE = "error.type"
"""Exception class name when an operation fails."""


__all__ = [
    "ATTR_CUSTOMER",
    "ATTR_SPACE",
    "ATTR_MIGRATION_SPACE",
    "ATTR_UPLOAD_ROOT",
    "ATTR_SHARD",
    "ATTR_SHARD_COUNT",
    "ATTR_INDEX_CID",
    "ATTR_STEP",
    "ATTR_SINGLE_STEP_MODE",
    "ATTR_VERIFY_ONLY",
    "ATTR_FAILURE_REASON",
    "ATTR_ALREADY_MIGRATED",
    "ATTR_PROGRESS_STATUS",
    "ATTR_INSTANCE_ID",
    "ATTR_COMPLETED_UPLOADS",
    "ATTR_SEGMENT",
    "ATTR_SEGMENT_COUNT",
    "ATTR_CUSTOMER_COUNT",
    "ATTR_INSTANCE_COUNT",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    "ATTR_ERROR_TYPE",
]
