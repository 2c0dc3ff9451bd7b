"""W3C trace context and baggage propagation.

Header formatting and parsing of ``traceparent``/``tracestate`` is delegated
to OpenTelemetry's standard ``TraceContextTextMapPropagator``; this module
converts between its span contexts and ours and guarantees that propagation
never raises into the caller.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, MutableMapping, Optional, Sequence, Tuple, Union

from opentelemetry.propagators.textmap import Getter
from opentelemetry.trace import NonRecordingSpan, get_current_span, set_span_in_context
from opentelemetry.trace import SpanContext as OTelSpanContext, TraceFlags, TraceState
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from spanline.context.baggage import BAGGAGE_HEADER, format_baggage, parse_baggage
from spanline.context.context import EMPTY_CONTEXT, Context
from spanline.tracer.span_context import SpanContext
from spanline.utils.helpers import format_span_id, format_trace_id, parse_span_id, parse_trace_id

logger = logging.getLogger(__name__)

TRACEPARENT_HEADER = "traceparent"
TRACESTATE_HEADER = "tracestate"

_propagator = TraceContextTextMapPropagator()


class _CaseInsensitiveGetter(Getter):
    """Header lookup that ignores case, since HTTP header names are case-insensitive."""

    def get(self, carrier: Mapping[str, Any], key: str) -> Optional[List[str]]:
        for name, value in carrier.items():
            if isinstance(name, str) and name.lower() == key:
                if isinstance(value, str):
                    return [value]
                return [str(v) for v in value]
        return None

    def keys(self, carrier: Mapping[str, Any]) -> List[str]:
        return list(carrier.keys())


_getter = _CaseInsensitiveGetter()


def format_tracestate(state: Sequence[Tuple[str, str]]) -> str:
    """
    Format a tracestate header value from ordered (key, value) pairs.

    Entries that are not valid W3C list members are left out.
    """
    if not state:
        return ""
    return TraceState(list(state)).to_header()


def parse_tracestate(header_value: Union[str, Sequence[str], None]) -> Tuple[Tuple[str, str], ...]:
    """
    Parse a tracestate header into ordered (key, value) pairs.

    Invalid headers parse to an empty tuple.
    """
    if not header_value:
        return ()
    headers = [header_value] if isinstance(header_value, str) else list(header_value)
    return tuple(TraceState.from_header(headers).items())


def _to_otel_context(context: SpanContext) -> OTelSpanContext:
    """Convert a Spanline SpanContext to an OpenTelemetry SpanContext."""
    return OTelSpanContext(
        trace_id=parse_trace_id(context.trace_id),
        span_id=parse_span_id(context.span_id),
        is_remote=context.is_remote,
        trace_flags=TraceFlags(context.trace_flags & 0xFF),
        trace_state=TraceState(list(context.trace_state)),
    )


def _from_otel_context(otel_context: OTelSpanContext) -> SpanContext:
    """Convert an OpenTelemetry SpanContext to a Spanline SpanContext."""
    return SpanContext(
        trace_id=format_trace_id(otel_context.trace_id),
        span_id=format_span_id(otel_context.span_id),
        trace_flags=int(otel_context.trace_flags),
        trace_state=tuple(otel_context.trace_state.items()) if otel_context.trace_state else (),
        is_remote=otel_context.is_remote,
    )


def inject_trace_context(carrier: MutableMapping[str, str], context: SpanContext) -> None:
    """Write traceparent (and tracestate when present) into ``carrier``."""
    if context is None or not context.is_valid():
        return
    otel_ctx = set_span_in_context(NonRecordingSpan(_to_otel_context(context)))
    _propagator.inject(carrier, context=otel_ctx)


def extract_trace_context(carrier: Mapping[str, Any]) -> Optional[SpanContext]:
    """
    Read traceparent/tracestate from ``carrier``.

    Returns None when the header is missing or malformed.
    """
    otel_ctx = _propagator.extract(carrier, getter=_getter)
    otel_span_context = get_current_span(otel_ctx).get_span_context()
    if not otel_span_context.is_valid:
        return None
    return _from_otel_context(otel_span_context)


def format_traceparent(context: SpanContext) -> str:
    """Format a traceparent header value; empty string for invalid contexts."""
    carrier: dict = {}
    inject_trace_context(carrier, context)
    return carrier.get(TRACEPARENT_HEADER, "")


def parse_traceparent(header_value: str) -> Optional[SpanContext]:
    """Parse a traceparent header value into a SpanContext."""
    if not header_value:
        return None
    return extract_trace_context({TRACEPARENT_HEADER: header_value})


def inject(context: Union[Context, SpanContext, None], carrier: MutableMapping[str, str]) -> None:
    """
    Write the trace identity and baggage of ``context`` into ``carrier``.

    An empty context writes nothing. Errors are logged, never raised.
    """
    if context is None:
        return
    if isinstance(context, SpanContext):
        context = EMPTY_CONTEXT.with_span_context(context)
    try:
        if context.span_context is not None:
            inject_trace_context(carrier, context.span_context)
        if context.baggage:
            header = format_baggage(context.baggage)
            if header:
                carrier[BAGGAGE_HEADER] = header
    except Exception as e:
        logger.debug(f"Failed to inject trace context: {e}")


def extract(carrier: Optional[Mapping[str, Any]]) -> Context:
    """
    Read trace identity and baggage from ``carrier``.

    Missing or malformed headers produce a context without a parent, so the
    next span becomes a new root. Never raises.
    """
    if not carrier:
        return EMPTY_CONTEXT
    span_context = None
    baggage_header = None
    try:
        span_context = extract_trace_context(carrier)
        values = _getter.get(carrier, BAGGAGE_HEADER)
        if values:
            baggage_header = ",".join(values)
    except Exception as e:
        logger.debug(f"Failed to extract trace context: {e}")

    baggage = parse_baggage(baggage_header)
    if span_context is None and not baggage:
        return EMPTY_CONTEXT
    return Context(span_context=span_context, baggage=baggage)
