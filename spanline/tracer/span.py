"""Span implementation: a timed operation within a trace."""

from __future__ import annotations

import logging
import threading
import traceback
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, TYPE_CHECKING

from opentelemetry.sdk.resources import Resource
from opentelemetry.trace import SpanKind

from spanline.tracer.attributes import MAX_ATTRIBUTES, clean_attributes, clean_value
from spanline.tracer.span_context import INVALID_SPAN_CONTEXT, SpanContext
from spanline.utils.helpers import time_ns

if TYPE_CHECKING:
    from spanline.context.context import Context
    from spanline.tracer.tracer import Tracer

logger = logging.getLogger(__name__)

MAX_EVENTS = 128
MAX_LINKS = 128

_EMPTY_ATTRIBUTES: Mapping[str, Any] = MappingProxyType({})


class SpanStatus(Enum):
    UNSET = 0
    OK = 1
    ERROR = 2


@dataclass(frozen=True)
class Event:
    name: str
    timestamp_ns: int
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class Link:
    context: SpanContext
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


def make_link(context: SpanContext, attributes: Optional[Mapping[str, Any]] = None) -> Link:
    """Build a Link with validated attributes."""
    cleaned, _ = clean_attributes(attributes)
    return Link(context=context, attributes=MappingProxyType(cleaned))


class _SpanScope:
    """Context manager plumbing shared by recording and non-recording spans."""

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc is not None:
            self.record_exception(exc)
        self.end()
        return False

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        return self.__exit__(exc_type, exc, tb)

    def to_context(self, base: Optional["Context"] = None) -> "Context":
        """
        Return a Context carrying this span as the parent for new spans.

        Baggage is taken from ``base`` when given.
        """
        from spanline.context.context import Context

        base = base or Context()
        return base.with_span_context(self.context)


class Span(_SpanScope):
    """
    A recording span.

    Mutable between creation and ``end()``; every mutator is a silent no-op
    afterwards, so instrumentation can never crash the application.
    """

    def __init__(
        self,
        name: str,
        context: SpanContext,
        tracer: Optional["Tracer"] = None,
        *,
        parent_span_id: Optional[str] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        links: Optional[Sequence[Link]] = None,
        start_time_ns: Optional[int] = None,
        resource: Optional[Resource] = None,
        instrumentation_scope: Optional[str] = None,
    ) -> None:
        """
        Initialize a span. Use ``Tracer.start_span`` rather than calling this.

        Args:
            name: Span name
            context: This span's SpanContext
            tracer: Tracer that created the span (receives it on end)
            parent_span_id: Parent span id (hex) for non-root spans
            kind: OpenTelemetry SpanKind
            attributes: Initial attributes
            links: Links to other spans
            start_time_ns: Explicit start timestamp (epoch ns)
            resource: Resource describing the emitting process
            instrumentation_scope: Name of the tracer's scope
        """
        self.context = context
        self.tracer = tracer
        self.parent_span_id = parent_span_id
        self.kind = kind
        self.resource = resource
        self.instrumentation_scope = instrumentation_scope
        self.start_time_ns = start_time_ns if start_time_ns is not None else time_ns()
        self.end_time_ns: Optional[int] = None

        self.status = SpanStatus.UNSET
        self.status_description: Optional[str] = None

        self._name = name
        self._lock = threading.Lock()
        self._attributes, self.dropped_attributes = clean_attributes(attributes)
        self._events: List[Event] = []
        self.dropped_events = 0

        links = list(links or ())
        self._links: Tuple[Link, ...] = tuple(links[:MAX_LINKS])
        self.dropped_links = max(0, len(links) - MAX_LINKS)

    def __repr__(self) -> str:
        return (
            f"Span(name={self._name!r}, trace_id={self.context.trace_id}, "
            f"span_id={self.context.span_id}, ended={self.ended})"
        )

    @property
    def name(self) -> str:
        return self._name

    @property
    def ended(self) -> bool:
        return self.end_time_ns is not None

    @property
    def attributes(self) -> Mapping[str, Any]:
        """Read-only view of the span attributes."""
        return MappingProxyType(self._attributes)

    @property
    def events(self) -> Tuple[Event, ...]:
        return tuple(self._events)

    @property
    def links(self) -> Tuple[Link, ...]:
        return self._links

    @property
    def duration_ns(self) -> Optional[int]:
        """Get span duration in nanoseconds."""
        if self.end_time_ns is None:
            return None
        return self.end_time_ns - self.start_time_ns

    def is_recording(self) -> bool:
        return not self.ended

    def update_name(self, name: str) -> None:
        with self._lock:
            if self.ended:
                return
            self._name = name

    def set_attribute(self, key: str, value: Any) -> None:
        """Set an attribute on the span."""
        if not isinstance(key, str) or not key:
            return
        cleaned = clean_value(value)
        with self._lock:
            if self.ended:
                return
            if cleaned is None:
                logger.debug(f"Rejected attribute {key!r} on span {self._name!r}")
                self.dropped_attributes += 1
                return
            if key not in self._attributes and len(self._attributes) >= MAX_ATTRIBUTES:
                self.dropped_attributes += 1
                return
            self._attributes[key] = cleaned

    def set_attributes(self, attributes: Mapping[str, Any]) -> None:
        for key, value in attributes.items():
            self.set_attribute(key, value)

    def add_event(
        self,
        name: str,
        attributes: Optional[Mapping[str, Any]] = None,
        timestamp_ns: Optional[int] = None,
    ) -> None:
        """Add an event to the span."""
        cleaned, _ = clean_attributes(attributes)
        event = Event(
            name=name,
            timestamp_ns=timestamp_ns if timestamp_ns is not None else time_ns(),
            attributes=MappingProxyType(cleaned),
        )
        with self._lock:
            if self.ended:
                return
            if len(self._events) >= MAX_EVENTS:
                self.dropped_events += 1
                return
            self._events.append(event)

    def add_link(self, context: SpanContext, attributes: Optional[Mapping[str, Any]] = None) -> None:
        link = make_link(context, attributes)
        with self._lock:
            if self.ended:
                return
            if len(self._links) >= MAX_LINKS:
                self.dropped_links += 1
                return
            self._links = self._links + (link,)

    def record_exception(self, error: BaseException) -> None:
        """Record an exception event on the span and mark it as failed."""
        if self.ended:
            return
        stacktrace = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
        self.add_event(
            "exception",
            {
                "exception.type": type(error).__name__,
                "exception.message": str(error),
                "exception.stacktrace": stacktrace,
            },
        )
        self.set_status(SpanStatus.ERROR, str(error))

    def set_status(self, status: SpanStatus, description: Optional[str] = None) -> None:
        """Set the span status. UNSET never overrides an explicit status."""
        with self._lock:
            if self.ended or status == SpanStatus.UNSET:
                return
            self.status = status
            self.status_description = description if status == SpanStatus.ERROR else None

    def end(self, end_time_ns: Optional[int] = None) -> None:
        """
        End the span.

        Only the first call has an effect: it freezes the span and hands it
        to the tracer's processors.
        """
        with self._lock:
            if self.ended:
                return
            self.end_time_ns = end_time_ns if end_time_ns is not None else time_ns()

        if self.tracer is not None:
            self.tracer._on_span_end(self)


class NonRecordingSpan(_SpanScope):
    """
    Span that records nothing and is never exported.

    Returned for unsampled spans, spans refused at admission and by the
    no-op tracer. Its context is valid whenever a real trace identity exists,
    so propagation keeps working through it.
    """

    kind = SpanKind.INTERNAL
    parent_span_id = None
    status = SpanStatus.UNSET
    status_description = None
    attributes: Mapping[str, Any] = _EMPTY_ATTRIBUTES
    events: Tuple[Event, ...] = ()
    links: Tuple[Link, ...] = ()
    duration_ns = None

    def __init__(self, context: SpanContext = INVALID_SPAN_CONTEXT, name: str = "") -> None:
        self.context = context
        self.name = name
        self.ended = False

    def __repr__(self) -> str:
        return f"NonRecordingSpan(trace_id={self.context.trace_id}, span_id={self.context.span_id})"

    def is_recording(self) -> bool:
        return False

    def update_name(self, name: str) -> None:
        pass

    def set_attribute(self, key: str, value: Any) -> None:
        pass

    def set_attributes(self, attributes: Dict[str, Any]) -> None:
        pass

    def add_event(self, name: str, attributes=None, timestamp_ns=None) -> None:
        pass

    def add_link(self, context: SpanContext, attributes=None) -> None:
        pass

    def record_exception(self, error: BaseException) -> None:
        pass

    def set_status(self, status: SpanStatus, description: Optional[str] = None) -> None:
        pass

    def end(self, end_time_ns: Optional[int] = None) -> None:
        self.ended = True

