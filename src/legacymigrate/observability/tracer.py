"""
Tracer protocol and implementations for composition-based tracing.

Components receive a tracer as a dependency instead of talking to
OpenTelemetry directly, which keeps them easy to test.

Example:
    >>> from legacymigrate.observability import create_tracer, NullTracer
    >>>
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>>
    >>> class SpaceScanner:
    ...     def __init__(self, tracer: Tracer | None = None):
    ...         self._tracer = tracer or NullTracer()
    ...
    ...     async def scan(self, segment: int) -> None:
    ...         with self._tracer.span("legacymigrate.scanner.scan", {"segment": segment}):
    ...             await self._do_scan(segment)
"""

from __future__ import annotations

import contextlib
from collections.abc import Generator
from contextlib import AbstractContextManager
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from opentelemetry import trace
from opentelemetry.trace import Span
from opentelemetry.trace import SpanKind as OtelSpanKind


class SpanKindEnum(Enum):
    """
    Span kinds for distributed tracing.

    Values:
        INTERNAL: Default span kind for internal operations
        CLIENT: Calls to a remote collaborator (indexing service, claim publisher)
        PRODUCER: Enqueueing work for a downstream system (advertisements)
    """

    INTERNAL = "internal"
    CLIENT = "client"
    PRODUCER = "producer"


_KIND_MAPPING = {
    SpanKindEnum.INTERNAL: OtelSpanKind.INTERNAL,
    SpanKindEnum.CLIENT: OtelSpanKind.CLIENT,
    SpanKindEnum.PRODUCER: OtelSpanKind.PRODUCER,
}


@runtime_checkable
class Tracer(Protocol):
    """
    Protocol for tracers that can create tracing spans.

    Implementations:
    - NullTracer: No-op tracer for when tracing is disabled
    - OpenTelemetryTracer: Wrapper around the OpenTelemetry tracer
    - MockTracer: Records spans for assertions in tests
    """

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        """
        Create a tracing span context manager.

        Args:
            name: Span name (e.g., "legacymigrate.machine.migrate_upload")
            attributes: Span attributes (optional)

        Returns:
            Context manager that yields Span or None
        """
        ...

    @property
    def enabled(self) -> bool:
        """True if tracing is active and will create real spans."""
        ...

    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        """
        Create a tracing span context manager with a SpanKind.

        Like `span()` but marks remote calls as CLIENT and queue writes as
        PRODUCER.
        """
        ...


class NullTracer:
    """
    No-op tracer implementation for when tracing is disabled.

    Example:
        >>> tracer = NullTracer()
        >>> with tracer.span("operation"):  # Does nothing
        ...     do_work()
        >>> tracer.enabled
        False
    """

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False

    @contextlib.contextmanager
    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        yield None


class OpenTelemetryTracer:
    """
    OpenTelemetry tracer implementation.

    Args:
        tracer_name: Name for the tracer (typically __name__)
    """

    def __init__(self, tracer_name: str) -> None:
        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True

    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span | None]:
        return self._tracer.start_as_current_span(
            name,
            kind=_KIND_MAPPING.get(kind, OtelSpanKind.INTERNAL),
            attributes=attributes or {},
        )


class MockTracer:
    """
    Mock tracer for testing that records span information.

    Example:
        >>> tracer = MockTracer()
        >>> with tracer.span("operation", {"key": "value"}):
        ...     pass
        >>> tracer.span_names
        ['operation']
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None

    @property
    def enabled(self) -> bool:
        """Returns True to enable attribute computation in tests."""
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()

    @contextlib.contextmanager
    def span_with_kind(
        self,
        name: str,
        kind: SpanKindEnum = SpanKindEnum.INTERNAL,
        attributes: dict[str, Any] | None = None,
    ) -> Generator[None, None, None]:
        self.spans.append((name, attributes))
        yield None


def create_tracer(
    name: str,
    enable_tracing: bool = True,
) -> Tracer:
    """
    Factory function to create the appropriate tracer.

    Args:
        name: Tracer name (typically __name__)
        enable_tracing: Whether tracing should be enabled (default True)

    Returns:
        OpenTelemetryTracer if enabled, NullTracer otherwise

    Example:
        >>> def __init__(self, tracer: Tracer | None = None, enable_tracing: bool = True):
        ...     self._tracer = tracer or create_tracer(__name__, enable_tracing)
    """
    if enable_tracing:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanKindEnum",
    "create_tracer",
]
