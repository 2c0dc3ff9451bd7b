"""Tracer components for the telemetry pipeline."""

from opentelemetry.trace import SpanKind

from spanline.tracer.provider import NoOpTracerProvider, TracerProvider
from spanline.tracer.span import Event, Link, NonRecordingSpan, Span, SpanStatus
from spanline.tracer.span_context import INVALID_SPAN_CONTEXT, SpanContext
from spanline.tracer.tracer import NoOpTracer, Tracer

__all__ = [
    "Span",
    "NonRecordingSpan",
    "SpanKind",
    "SpanStatus",
    "Event",
    "Link",
    "SpanContext",
    "INVALID_SPAN_CONTEXT",
    "Tracer",
    "NoOpTracer",
    "TracerProvider",
    "NoOpTracerProvider",
]
