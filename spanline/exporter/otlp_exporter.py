"""OTLP/HTTP exporter: OpenTelemetry protobuf encoding over a requests session."""

from __future__ import annotations

import logging
from typing import List, Optional

import requests
from opentelemetry.exporter.otlp.proto.common.trace_encoder import encode_spans
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import Event as OTelEvent
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.util.instrumentation import InstrumentationScope
from opentelemetry.trace import Link as OTelLink
from opentelemetry.trace import SpanContext as OTelSpanContext
from opentelemetry.trace import Status, StatusCode, TraceFlags, TraceState

from spanline.errors import ExportError
from spanline.exporter.base import ExportBatch, ExportResult, SpanExporter, remaining_seconds
from spanline.tracer.span import SpanStatus
from spanline.tracer.span_context import SpanContext
from spanline.utils.helpers import parse_span_id, parse_trace_id

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://localhost:4318/v1/traces"

# Transient statuses besides 5xx
RETRYABLE_STATUS_CODES = frozenset({408, 429})

_STATUS_CODES = {
    SpanStatus.UNSET: StatusCode.UNSET,
    SpanStatus.OK: StatusCode.OK,
    SpanStatus.ERROR: StatusCode.ERROR,
}


def _otel_span_context(context: SpanContext, is_remote: bool = False) -> OTelSpanContext:
    return OTelSpanContext(
        trace_id=parse_trace_id(context.trace_id),
        span_id=parse_span_id(context.span_id),
        is_remote=is_remote,
        trace_flags=TraceFlags(context.trace_flags),
        trace_state=TraceState(list(context.trace_state)),
    )


def to_readable_span(span) -> ReadableSpan:
    """Convert an ended spanline span into an OpenTelemetry ReadableSpan."""
    context = span.context
    parent = None
    if span.parent_span_id:
        parent = OTelSpanContext(
            trace_id=parse_trace_id(context.trace_id),
            span_id=parse_span_id(span.parent_span_id),
            is_remote=False,
            trace_flags=TraceFlags(context.trace_flags),
        )

    description = span.status_description if span.status == SpanStatus.ERROR else None
    return ReadableSpan(
        name=span.name,
        context=_otel_span_context(context),
        parent=parent,
        resource=span.resource or Resource.get_empty(),
        attributes=dict(span.attributes),
        events=[
            OTelEvent(name=event.name, attributes=dict(event.attributes), timestamp=event.timestamp_ns)
            for event in span.events
        ],
        links=[
            OTelLink(_otel_span_context(link.context, is_remote=True), dict(link.attributes))
            for link in span.links
        ],
        kind=span.kind,
        status=Status(status_code=_STATUS_CODES[span.status], description=description),
        start_time=span.start_time_ns,
        end_time=span.end_time_ns,
        instrumentation_scope=InstrumentationScope(span.instrumentation_scope or "spanline"),
    )


class OTLPExporter(SpanExporter):
    """
    OTLP/HTTP sink: protobuf-encoded spans POSTed over a ``requests`` session.

    The response decides what the queue does next. 2xx is success; 408, 429,
    5xx and connection errors raise a retryable ``ExportError``; any other
    4xx (rejected credentials, malformed payload) raises a non-retryable one.
    The sink never retries by itself; the surrounding queue owns backoff.
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        headers: Optional[dict] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        """
        Initialize OTLP exporter.

        Args:
            endpoint: OTLP traces endpoint URL (defaults to the local collector)
            api_key: Optional API key for authentication
            timeout: Request timeout in seconds
            headers: Optional additional headers
            session: Optional pre-configured requests session
        """
        self.endpoint = endpoint or DEFAULT_ENDPOINT
        self.api_key = api_key
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/x-protobuf"})
        if headers:
            self.session.headers.update(headers)
        if api_key:
            self.session.headers["Authorization"] = f"Bearer {api_key}"

    def export(self, batch: ExportBatch, deadline: Optional[float] = None) -> ExportResult:
        """Export a batch in OTLP format."""
        readable_spans: List[ReadableSpan] = []
        for span in batch:
            try:
                readable_spans.append(to_readable_span(span))
            except Exception as e:
                logger.debug(f"Skipping span {span.name!r}: conversion to OTLP failed: {e}")

        if not readable_spans:
            return ExportResult.SUCCESS

        payload = encode_spans(readable_spans).SerializePartialToString()

        timeout = self.timeout
        remaining = remaining_seconds(deadline)
        if remaining is not None:
            if remaining <= 0:
                return ExportResult.RETRYABLE_FAILURE
            timeout = min(timeout, remaining)

        try:
            response = self.session.post(self.endpoint, data=payload, timeout=timeout)
        except requests.exceptions.RequestException as e:
            raise ExportError(f"OTLP request failed: {e}", retryable=True) from e

        status = response.status_code
        if 200 <= status < 300:
            return ExportResult.SUCCESS
        details = {"status_code": status, "endpoint": self.endpoint}
        if status in RETRYABLE_STATUS_CODES or status >= 500:
            raise ExportError(f"OTLP collector returned HTTP {status}", retryable=True, details=details)
        if status in (401, 403):
            raise ExportError("OTLP collector rejected credentials - check API key", retryable=False, details=details)
        raise ExportError(f"OTLP collector rejected batch with HTTP {status}", retryable=False, details=details)

    def shutdown(self, timeout_millis: int = 30000) -> None:
        """Shutdown the exporter."""
        self.session.close()
