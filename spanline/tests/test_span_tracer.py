"""Tests for spans, tracers and providers."""

import asyncio

import pytest
from opentelemetry.trace import SpanKind

from spanline.processors.backpressure import BackpressureController
from spanline.processors.base import SpanProcessor
from spanline.processors.batch_processor import BatchSpanProcessor
from spanline.processors.memory_guard import MemoryGuard
from spanline.processors.sampler import ALWAYS_OFF, ParentBased
from spanline.tracer import (
    INVALID_SPAN_CONTEXT,
    NonRecordingSpan,
    NoOpTracerProvider,
    Span,
    SpanContext,
    SpanStatus,
)
from spanline.tracer.attributes import MAX_ATTRIBUTES, clean_value
from spanline.tracer.span import MAX_EVENTS, Event, Link


class TestAttributes:
    """Attribute values are limited to a closed set of types."""

    @pytest.mark.parametrize("value", ["s", True, 42, 1.5, -(2 ** 63), 2 ** 63 - 1])
    def test_scalars_accepted(self, value):
        assert clean_value(value) == value

    @pytest.mark.parametrize(
        "value",
        [None, b"bytes", {"a": 1}, object(), 2 ** 63, [1, "a"], [True, 1], [[1]], [None]],
    )
    def test_rejected_values(self, value):
        assert clean_value(value) is None

    def test_sequences_become_tuples(self):
        values = [1, 2, 3]
        cleaned = clean_value(values)
        assert cleaned == (1, 2, 3)
        values.append(4)
        assert cleaned == (1, 2, 3)

    def test_span_rejects_bad_attributes(self, tracer):
        span = tracer.start_span("op", attributes={"ok": 1, "bad": object()})
        span.set_attribute("also_bad", {"nested": True})
        span.set_attribute("list", ["a", "b"])
        span.end()

        assert dict(span.attributes) == {"ok": 1, "list": ("a", "b")}
        assert span.dropped_attributes == 2

    def test_attribute_limit(self, tracer):
        span = tracer.start_span("op")
        for i in range(MAX_ATTRIBUTES + 5):
            span.set_attribute(f"k{i}", i)
        span.set_attribute("k0", "updated")
        span.end()

        assert len(span.attributes) == MAX_ATTRIBUTES
        assert span.attributes["k0"] == "updated"
        assert span.dropped_attributes == 5


class TestSpanLifecycle:
    def test_end_is_idempotent(self, tracer, recorder, memory_exporter):
        """Only the first end() reaches the processors."""
        span = tracer.start_span("op")
        span.end()
        first_end = span.end_time_ns
        span.end()

        assert span.end_time_ns == first_end
        assert recorder.ended == [span]
        assert len(memory_exporter.get_finished_spans()) == 1

    def test_mutations_after_end_are_ignored(self, tracer):
        span = tracer.start_span("op")
        span.end()
        span.set_attribute("late", 1)
        span.add_event("late")
        span.set_status(SpanStatus.ERROR, "late")
        span.update_name("renamed")

        assert "late" not in span.attributes
        assert span.events == ()
        assert span.status == SpanStatus.UNSET
        assert span.name == "op"
        assert not span.is_recording()

    def test_status_stays_unset_unless_set(self, tracer):
        with tracer.start_span("op") as span:
            pass
        assert span.status == SpanStatus.UNSET

    def test_context_manager_records_exception(self, tracer):
        with pytest.raises(RuntimeError):
            with tracer.start_span("op") as span:
                raise RuntimeError("boom")

        assert span.ended
        assert span.status == SpanStatus.ERROR
        assert span.status_description == "boom"
        event = span.events[0]
        assert event.name == "exception"
        assert event.attributes["exception.type"] == "RuntimeError"
        assert "boom" in event.attributes["exception.stacktrace"]

    def test_async_context_manager(self, tracer, recorder):
        async def handler():
            async with tracer.start_span("async-op") as span:
                span.set_attribute("step", 1)
            return span

        span = asyncio.run(handler())
        assert span.ended
        assert recorder.ended == [span]

    def test_status_ok_cannot_be_unset(self, tracer):
        span = tracer.start_span("op")
        span.set_status(SpanStatus.OK)
        span.set_status(SpanStatus.UNSET)
        span.end()
        assert span.status == SpanStatus.OK
        assert span.status_description is None

    def test_event_limit(self, tracer):
        span = tracer.start_span("op")
        for i in range(MAX_EVENTS + 3):
            span.add_event(f"e{i}")
        span.end()
        assert len(span.events) == MAX_EVENTS
        assert span.dropped_events == 3

    def test_explicit_timestamps(self, tracer):
        span = tracer.start_span("op", start_time_ns=1_000)
        span.end(end_time_ns=5_000)
        assert span.duration_ns == 4_000

    def test_event_and_link_defaults_are_empty_and_read_only(self):
        event = Event("e", 1)
        link = Link(SpanContext("0af7651916cd43dd8448eb211c80319c", "b7ad6b7169203331", 1))
        assert event.attributes == {}
        assert link.attributes == {}
        with pytest.raises(TypeError):
            event.attributes["k"] = "v"
        assert Event("other", 2).attributes == {}


class TestTracer:
    def test_root_span_gets_fresh_identity(self, tracer):
        span = tracer.start_span("root", kind=SpanKind.SERVER)
        assert isinstance(span, Span)
        assert span.context.is_valid()
        assert span.context.sampled
        assert span.parent_span_id is None
        assert span.kind == SpanKind.SERVER

    def test_child_inherits_trace_id(self, tracer):
        parent = tracer.start_span("parent")
        from_span = tracer.start_span("child", parent=parent)
        from_context = tracer.start_span("child2", parent.to_context())
        from_span_context = tracer.start_span("child3", parent.context)

        for child in (from_span, from_context, from_span_context):
            assert child.context.trace_id == parent.context.trace_id
            assert child.parent_span_id == parent.context.span_id
            assert child.context.span_id != parent.context.span_id

    def test_links(self, tracer):
        other = SpanContext("0af7651916cd43dd8448eb211c80319c", "b7ad6b7169203331", 1)
        span = tracer.start_span("batch-job", links=[other])
        span.add_link(other, {"reason": "retry"})
        span.end()
        assert [link.context for link in span.links] == [other, other]
        assert span.links[1].attributes["reason"] == "retry"

    def test_unsampled_span_is_non_recording(self, make_provider, recorder, memory_exporter):
        tracer = make_provider(sampler=ParentBased(ALWAYS_OFF)).get_tracer("tests")
        span = tracer.start_span("dropped")
        span.set_attribute("k", "v")
        span.end()

        assert isinstance(span, NonRecordingSpan)
        assert not span.is_recording()
        assert span.context.is_valid()
        assert not span.context.sampled
        assert recorder.started == []
        assert memory_exporter.get_finished_spans() == ()

    def test_unsampled_parent_keeps_trace_identity(self, make_provider):
        tracer = make_provider(sampler=ParentBased(ALWAYS_OFF)).get_tracer("tests")
        parent = tracer.start_span("parent")
        child = tracer.start_span("child", parent=parent)
        assert child.context.trace_id == parent.context.trace_id
        assert not child.context.sampled

    def test_get_tracer_is_cached(self, make_provider):
        provider = make_provider()
        assert provider.get_tracer("a") is provider.get_tracer("a")
        assert provider.get_tracer("a") is not provider.get_tracer("a", "1.0")

    def test_resource_from_dict(self, make_provider):
        provider = make_provider(resource={"service.name": "checkout"})
        span = provider.get_tracer("tests").start_span("op")
        assert span.resource.attributes["service.name"] == "checkout"

    def test_failing_processor_does_not_break_tracing(self, make_provider, recorder):
        class Exploding(SpanProcessor):
            def on_start(self, span, parent_context=None):
                raise RuntimeError("start")

            def on_end(self, span):
                raise RuntimeError("end")

        provider = make_provider()
        provider.add_span_processor(Exploding())
        span = provider.get_tracer("tests").start_span("op")
        span.end()
        assert recorder.ended == [span]


class TestNoOp:
    def test_noop_provider_returns_non_recording_spans(self):
        tracer = NoOpTracerProvider().get_tracer("nothing")
        with tracer.start_span("op") as span:
            span.set_attribute("k", "v")
            span.record_exception(ValueError("x"))
        assert isinstance(span, NonRecordingSpan)
        assert span.context == INVALID_SPAN_CONTEXT

    def test_noop_tracer_keeps_parent_identity(self):
        parent = SpanContext("0af7651916cd43dd8448eb211c80319c", "b7ad6b7169203331", 1)
        span = NoOpTracerProvider().get_tracer("nothing").start_span("op", parent)
        assert span.context == parent


class TestMemoryGuardAdmission:
    """Spans refused at admission never reach a processor."""

    def test_refused_spans_are_not_forwarded(self, make_provider, recorder, memory_exporter):
        limit = 100 * 1024 * 1024
        usage = {"value": limit // 2}
        guard = MemoryGuard(limit, check_interval=0, usage_probe=lambda: usage["value"])
        controller = BackpressureController(memory_guard=guard)
        batch = BatchSpanProcessor(memory_exporter, schedule_delay_millis=60000)
        provider = make_provider(backpressure=controller)
        provider.add_span_processor(batch)
        tracer = provider.get_tracer("tests")

        accepted = tracer.start_span("before")
        accepted.end()
        assert batch.queue_length() == 1

        usage["value"] = limit * 2
        parent = tracer.start_span("refused")
        child = tracer.start_span("refused-child", parent=parent)
        child.set_attribute("k", "v")
        child.end()
        parent.end()

        assert isinstance(parent, NonRecordingSpan)
        assert parent.context.is_valid()
        assert child.context.trace_id == parent.context.trace_id
        assert controller.dropped_at_admission == 2
        assert batch.queue_length() == 1
        assert recorder.started == [accepted]
        assert recorder.ended == [accepted]

        usage["value"] = limit // 2
        assert isinstance(tracer.start_span("recovered"), Span)
