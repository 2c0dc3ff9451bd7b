"""Context and propagation utilities."""

from spanline.context.baggage import Baggage, BaggageEntry, format_baggage, parse_baggage
from spanline.context.context import (
    EMPTY_CONTEXT,
    Context,
    attach,
    bind,
    detach,
    get_current,
)
from spanline.context.propagators import (
    extract,
    extract_trace_context,
    format_traceparent,
    format_tracestate,
    inject,
    inject_trace_context,
    parse_traceparent,
    parse_tracestate,
)

__all__ = [
    "Baggage",
    "BaggageEntry",
    "format_baggage",
    "parse_baggage",
    "Context",
    "EMPTY_CONTEXT",
    "bind",
    "attach",
    "detach",
    "get_current",
    "format_traceparent",
    "parse_traceparent",
    "format_tracestate",
    "parse_tracestate",
    "inject_trace_context",
    "extract_trace_context",
    "inject",
    "extract",
]
