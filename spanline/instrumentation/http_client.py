"""HTTP client helpers for context propagation."""

from __future__ import annotations

from typing import Dict, Union

from spanline.context.context import Context
from spanline.context.propagators import inject
from spanline.tracer.span_context import SpanContext


def inject_headers(headers: Dict[str, str], context: Union[Context, SpanContext, None]) -> Dict[str, str]:
    """
    Inject traceparent/tracestate/baggage for ``context`` into the headers dict.

    Returns the same headers mapping for convenience.
    """
    inject(context, headers)
    return headers
