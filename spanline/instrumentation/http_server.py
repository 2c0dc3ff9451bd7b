"""HTTP server helpers for extracting context and creating server spans."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Tuple

from opentelemetry.trace import SpanKind

from spanline.context.context import Context
from spanline.context.propagators import extract


def extract_parent_context(headers: Optional[Mapping[str, Any]]) -> Context:
    """Parse traceparent/tracestate/baggage from request headers (empty Context if absent)."""
    return extract(headers)


def start_server_span(
    tracer, name: str, headers: Optional[Mapping[str, Any]], attributes=None
) -> Tuple[Any, Context]:
    """
    Start a SERVER span whose parent comes from the incoming headers.

    Returns ``(span, parent_context)``. Use the span as a context manager
    (``with``/``async with``) so it ends with the request; the parent
    context carries the incoming baggage for ``span.to_context()``.
    """
    parent_ctx = extract_parent_context(headers)
    span = tracer.start_span(name, parent_ctx, kind=SpanKind.SERVER, attributes=attributes)
    return span, parent_ctx
