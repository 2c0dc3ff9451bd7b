"""Tracer: creates spans, runs admission and sampling once per span."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence, Union, TYPE_CHECKING

from opentelemetry.trace import SpanKind

from spanline.context.context import Context
from spanline.tracer.span import Link, NonRecordingSpan, Span, make_link
from spanline.tracer.span_context import INVALID_SPAN_CONTEXT, SAMPLED_FLAG, SpanContext
from spanline.utils.helpers import generate_span_id, generate_trace_id

if TYPE_CHECKING:
    from spanline.tracer.provider import TracerProvider

logger = logging.getLogger(__name__)

ParentContext = Union[Context, SpanContext, None]


def _resolve_parent(parent: Optional[Any], parent_context: ParentContext) -> Optional[SpanContext]:
    """Pick the parent SpanContext, or None if the new span is a root."""
    candidate = None
    if parent is not None:
        candidate = getattr(parent, "context", None)
    elif isinstance(parent_context, Context):
        candidate = parent_context.span_context
    elif isinstance(parent_context, SpanContext):
        candidate = parent_context
    if candidate is not None and candidate.is_valid():
        return candidate
    return None


def _to_link(item: Union[Link, SpanContext]) -> Optional[Link]:
    if isinstance(item, Link):
        return item
    if isinstance(item, SpanContext):
        return make_link(item)
    return None


class Tracer:
    """
    Creates spans for one instrumentation scope.

    The parent is always passed explicitly (a span, a ``Context`` or a
    ``SpanContext``); without one the span starts a new trace.
    """

    def __init__(
        self,
        provider: "TracerProvider",
        instrumentation_scope: str,
        version: Optional[str] = None,
    ) -> None:
        """
        Args:
            provider: TracerProvider owning the pipeline
            instrumentation_scope: Instrumentation scope name
            version: Optional instrumentation scope version
        """
        self._provider = provider
        self.instrumentation_scope = instrumentation_scope
        self.version = version

    def start_span(
        self,
        name: str,
        parent_context: ParentContext = None,
        *,
        parent: Optional[Any] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        links: Optional[Sequence[Union[Link, SpanContext]]] = None,
        start_time_ns: Optional[int] = None,
    ) -> Union[Span, NonRecordingSpan]:
        """
        Start a new span.

        Args:
            name: Span name
            parent_context: Parent as a Context or SpanContext
            parent: Parent span (takes precedence over parent_context)
            kind: OpenTelemetry SpanKind
            attributes: Initial attributes
            links: Links (Link or SpanContext) to other spans
            start_time_ns: Explicit start timestamp (epoch ns)

        Returns:
            A recording Span when sampled, a NonRecordingSpan otherwise.
            Never raises.
        """
        try:
            return self._start_span(name, parent_context, parent, kind, attributes, links, start_time_ns)
        except Exception:
            logger.exception(f"Failed to start span '{name}'")
            return NonRecordingSpan(_resolve_parent(parent, parent_context) or INVALID_SPAN_CONTEXT, name)

    def _start_span(self, name, parent_context, parent, kind, attributes, links, start_time_ns):
        provider = self._provider
        parent_sc = _resolve_parent(parent, parent_context)

        if parent_sc is not None:
            trace_id = parent_sc.trace_id
            parent_span_id = parent_sc.span_id
            parent_flags = parent_sc.trace_flags
            parent_state = parent_sc.trace_state
        else:
            trace_id = generate_trace_id()
            parent_span_id = None
            parent_flags = 0
            parent_state = ()
        span_id = generate_span_id()

        controller = provider.backpressure
        if controller is not None and not controller.admit():
            # Refused at admission: keep identity so propagation still works.
            return NonRecordingSpan(SpanContext(trace_id, span_id, parent_flags, parent_state), name)

        link_list = [link for link in (_to_link(item) for item in links or ()) if link is not None]
        result = provider.sampler.should_sample(parent_sc, trace_id, name, kind, attributes, link_list)
        sampled = result.sampled
        if sampled and controller is not None:
            local_parent_sampled = None
            if parent_sc is not None and not parent_sc.is_remote:
                local_parent_sampled = parent_sc.sampled
            if controller.should_shed(
                trace_id, name, attributes, is_root=parent_sc is None, local_parent_sampled=local_parent_sampled
            ):
                sampled = False

        flags = (parent_flags | SAMPLED_FLAG) if sampled else (parent_flags & ~SAMPLED_FLAG)
        trace_state = result.trace_state if result.trace_state is not None else parent_state
        context = SpanContext(trace_id=trace_id, span_id=span_id, trace_flags=flags, trace_state=trace_state)

        if not sampled:
            return NonRecordingSpan(context, name)

        span_attributes = dict(attributes or {})
        span_attributes.update(result.attributes)
        span = Span(
            name,
            context,
            self,
            parent_span_id=parent_span_id,
            kind=kind,
            attributes=span_attributes,
            links=link_list,
            start_time_ns=start_time_ns,
            resource=provider.resource,
            instrumentation_scope=self.instrumentation_scope,
        )
        provider._active_processor.on_start(span, parent_sc)
        return span

    def _on_span_end(self, span: Span) -> None:
        """Called by Span.end(); hands the span to the processor chain."""
        try:
            self._provider._active_processor.on_end(span)
        except Exception:
            # Processors should not crash tracing
            logger.exception("Span processor chain failed")


class NoOpTracer:
    """Tracer used when no pipeline is configured: every span is a NonRecordingSpan."""

    def __init__(self, instrumentation_scope: str = "", version: Optional[str] = None) -> None:
        self.instrumentation_scope = instrumentation_scope
        self.version = version

    def start_span(
        self,
        name: str,
        parent_context: ParentContext = None,
        *,
        parent: Optional[Any] = None,
        kind: SpanKind = SpanKind.INTERNAL,
        attributes: Optional[Mapping[str, Any]] = None,
        links: Optional[Sequence[Any]] = None,
        start_time_ns: Optional[int] = None,
    ) -> NonRecordingSpan:
        return NonRecordingSpan(_resolve_parent(parent, parent_context) or INVALID_SPAN_CONTEXT, name)
