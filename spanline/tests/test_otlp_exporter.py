"""Tests for converting spans to OpenTelemetry and the OTLP sink."""

import time
from unittest.mock import Mock

import pytest
import requests
from opentelemetry.proto.collector.trace.v1.trace_service_pb2 import ExportTraceServiceRequest
from opentelemetry.sdk.resources import Resource
from opentelemetry.trace import SpanKind, StatusCode

from spanline.errors import ExportError
from spanline.exporter.base import ExportBatch, ExportResult
from spanline.exporter.otlp_exporter import OTLPExporter, to_readable_span
from spanline.exporter.queued_exporter import QueuedExporter
from spanline.exporter.retry import RetryPolicy
from spanline.tracer.span import Span, SpanStatus
from spanline.tracer.span_context import SpanContext

TRACE_ID = "4bf92f3577b34da6a3ce929d0e0e4736"
SPAN_ID = "00f067aa0ba902b7"
PARENT_ID = "b7ad6b7169203331"
ENDPOINT = "http://collector:4318/v1/traces"


def make_span():
    span = Span(
        "checkout",
        SpanContext(TRACE_ID, SPAN_ID, 1, trace_state=(("vendor", "value"),)),
        parent_span_id=PARENT_ID,
        kind=SpanKind.CLIENT,
        resource=Resource.create({"service.name": "shop"}),
        instrumentation_scope="shop.http",
        attributes={"http.method": "GET"},
    )
    span.add_event("retry", {"attempt": 2})
    return span


class TestToReadableSpan:
    def test_identity_and_parent(self):
        span = make_span()
        span.end()
        readable = to_readable_span(span)

        assert readable.name == "checkout"
        assert readable.context.trace_id == int(TRACE_ID, 16)
        assert readable.context.span_id == int(SPAN_ID, 16)
        assert readable.context.trace_state.get("vendor") == "value"
        assert readable.parent.span_id == int(PARENT_ID, 16)
        assert readable.kind == SpanKind.CLIENT
        assert readable.resource.attributes["service.name"] == "shop"
        assert readable.instrumentation_scope.name == "shop.http"
        assert readable.start_time == span.start_time_ns
        assert readable.end_time == span.end_time_ns

    def test_attributes_and_events(self):
        span = make_span()
        span.end()
        readable = to_readable_span(span)
        assert readable.attributes["http.method"] == "GET"
        assert [event.name for event in readable.events] == ["retry"]
        assert readable.events[0].attributes["attempt"] == 2

    def test_error_status(self):
        span = make_span()
        span.set_status(SpanStatus.ERROR, "timeout")
        span.end()
        status = to_readable_span(span).status
        assert status.status_code == StatusCode.ERROR
        assert status.description == "timeout"

    def test_root_span_has_no_parent(self):
        span = Span("root", SpanContext(TRACE_ID, SPAN_ID, 1))
        span.end()
        readable = to_readable_span(span)
        assert readable.parent is None
        assert readable.status.status_code == StatusCode.UNSET
        assert readable.instrumentation_scope.name == "spanline"


class TestOTLPExporter:
    """Response classification: the queue retries only transient failures."""

    def _exporter(self, status_code=200, **kwargs):
        exporter = OTLPExporter(endpoint=ENDPOINT, **kwargs)
        exporter.session.post = Mock(return_value=Mock(status_code=status_code))
        return exporter

    def _batch(self):
        span = make_span()
        span.end()
        return ExportBatch.of([span])

    def test_headers(self):
        exporter = OTLPExporter(endpoint=ENDPOINT, api_key="secret", headers={"x-tenant": "acme"})
        assert exporter.session.headers["Authorization"] == "Bearer secret"
        assert exporter.session.headers["x-tenant"] == "acme"
        assert exporter.session.headers["Content-Type"] == "application/x-protobuf"

    def test_success_posts_protobuf_payload(self):
        exporter = self._exporter(200)
        assert exporter.export(self._batch()) == ExportResult.SUCCESS

        (call,) = exporter.session.post.call_args_list
        assert call.args == (ENDPOINT,)
        request = ExportTraceServiceRequest()
        request.ParseFromString(call.kwargs["data"])
        (scope_spans,) = request.resource_spans[0].scope_spans
        assert [span.name for span in scope_spans.spans] == ["checkout"]
        assert call.kwargs["timeout"] == exporter.timeout

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 413])
    def test_client_errors_are_not_retryable(self, status_code):
        with pytest.raises(ExportError) as excinfo:
            self._exporter(status_code).export(self._batch())
        assert not excinfo.value.retryable
        assert excinfo.value.details["status_code"] == status_code

    @pytest.mark.parametrize("status_code", [408, 429, 500, 502, 503])
    def test_transient_errors_are_retryable(self, status_code):
        with pytest.raises(ExportError) as excinfo:
            self._exporter(status_code).export(self._batch())
        assert excinfo.value.retryable

    def test_connection_error_is_retryable(self):
        exporter = self._exporter()
        exporter.session.post.side_effect = requests.exceptions.ConnectionError("Connection refused")
        with pytest.raises(ExportError) as excinfo:
            exporter.export(self._batch())
        assert excinfo.value.retryable

    def test_timeout_follows_deadline(self):
        exporter = self._exporter(200, timeout=10.0)
        exporter.export(self._batch(), deadline=time.monotonic() + 0.5)
        assert exporter.session.post.call_args.kwargs["timeout"] <= 0.5

    def test_expired_deadline_skips_request(self):
        exporter = self._exporter(200)
        assert exporter.export(self._batch(), deadline=time.monotonic() - 1) == ExportResult.RETRYABLE_FAILURE
        exporter.session.post.assert_not_called()

    def test_empty_batch_skips_request(self):
        exporter = self._exporter()
        assert exporter.export(ExportBatch.of([])) == ExportResult.SUCCESS
        exporter.session.post.assert_not_called()

    def test_rejected_credentials_are_dropped_by_queue(self):
        """A 401 reaches the sink once; the queue does not spend its retry budget on it."""
        exporter = self._exporter(401)
        queued = QueuedExporter(
            exporter,
            retry_policy=RetryPolicy(initial_interval=0.05, max_interval=0.1, max_elapsed_time=0.5),
        )
        try:
            queued.export(self._batch())
            assert queued.force_flush(timeout_millis=2000)
            assert exporter.session.post.call_count == 1
            assert queued.failed_batches == 1
            assert queued.get_stats()["retried_batches"] == 0
        finally:
            queued.shutdown(timeout_millis=500)

    def test_shutdown_closes_session(self):
        exporter = self._exporter()
        exporter.session.close = Mock()
        exporter.shutdown()
        exporter.session.close.assert_called_once()
