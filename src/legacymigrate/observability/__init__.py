"""
Observability utilities for legacymigrate.

Provides composition-based tracing and standard span attribute
definitions shared by every engine component.

Example:
    >>> from legacymigrate.observability import create_tracer, ATTR_SPACE
    >>>
    >>> class Verifier:
    ...     def __init__(self, tracer=None, enable_tracing: bool = True):
    ...         self._tracer = tracer or create_tracer(__name__, enable_tracing)
    ...         self._enable_tracing = self._tracer.enabled
"""

from legacymigrate.observability.attributes import (
    ATTR_ALREADY_MIGRATED,
    ATTR_COMPLETED_UPLOADS,
    ATTR_CUSTOMER,
    ATTR_CUSTOMER_COUNT,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_ERROR_TYPE,
    ATTR_FAILURE_REASON,
    ATTR_INDEX_CID,
    ATTR_INSTANCE_COUNT,
    ATTR_INSTANCE_ID,
    ATTR_MIGRATION_SPACE,
    ATTR_PROGRESS_STATUS,
    ATTR_SEGMENT,
    ATTR_SEGMENT_COUNT,
    ATTR_SHARD,
    ATTR_SHARD_COUNT,
    ATTR_SINGLE_STEP_MODE,
    ATTR_SPACE,
    ATTR_STEP,
    ATTR_UPLOAD_ROOT,
    ATTR_VERIFY_ONLY,
)
from legacymigrate.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanKindEnum",
    "create_tracer",
    # Attributes
    "ATTR_ALREADY_MIGRATED",
    "ATTR_COMPLETED_UPLOADS",
    "ATTR_CUSTOMER",
    "ATTR_CUSTOMER_COUNT",
    "ATTR_DB_OPERATION",
    "ATTR_DB_SYSTEM",
    "ATTR_ERROR_TYPE",
    "ATTR_FAILURE_REASON",
    "ATTR_INDEX_CID",
    "ATTR_INSTANCE_COUNT",
    "ATTR_INSTANCE_ID",
    "ATTR_MIGRATION_SPACE",
    "ATTR_PROGRESS_STATUS",
    "ATTR_SEGMENT",
    "ATTR_SEGMENT_COUNT",
    "ATTR_SHARD",
    "ATTR_SHARD_COUNT",
    "ATTR_SINGLE_STEP_MODE",
    "ATTR_SPACE",
    "ATTR_STEP",
    "ATTR_UPLOAD_ROOT",
    "ATTR_VERIFY_ONLY",
]
