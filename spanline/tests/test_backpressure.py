"""Tests for load shedding, the memory guard and the backpressure controller."""

import logging

import pytest

from spanline.context.propagators import extract
from spanline.errors import ValidationError
from spanline.processors.backpressure import BackpressureController
from spanline.processors.load_shedding import LoadSheddingFilter
from spanline.processors.memory_guard import MemoryGuard, process_rss_bytes
from spanline.processors.sampler import ALWAYS_ON
from spanline.tracer.span import NonRecordingSpan, Span
from spanline.utils.helpers import generate_trace_id
from spanline.utils.throttle import ThrottledLogger

# High 64 bits decide shedding of root spans.
LOW_HIGH_BITS = "0000000000000001" + "ffffffffffffffff"
HIGH_HIGH_BITS = "ffffffffffffffff" + "0000000000000001"


class Gauge:
    def __init__(self, value=0.0):
        self.value = value

    def __call__(self):
        return self.value


class TestLoadSheddingFilter:
    @pytest.mark.parametrize("name", ["GET /healthz", "health", "readyz-probe", "livez", "ping", "PING"])
    def test_default_low_priority_names(self, name):
        assert LoadSheddingFilter().is_low_priority(name)

    def test_route_attributes_are_checked(self):
        shedder = LoadSheddingFilter()
        assert shedder.is_low_priority("GET", {"http.route": "/health"})
        assert not shedder.is_low_priority("GET", {"http.route": "/orders"})

    def test_custom_patterns(self):
        shedder = LoadSheddingFilter(["metrics.*"])
        assert shedder.is_low_priority("metrics.scrape")
        assert not shedder.is_low_priority("healthz")
        assert not LoadSheddingFilter([]).is_low_priority("healthz")


class TestMemoryGuard:
    def test_reading_is_cached(self):
        calls = []

        def probe():
            calls.append(1)
            return 10

        guard = MemoryGuard(100, check_interval=60.0, usage_probe=probe)
        for _ in range(5):
            assert not guard.exceeded()
        assert len(calls) == 1

    def test_exceeded_logs_transitions(self, caplog):
        usage = {"value": 200}
        guard = MemoryGuard(100, check_interval=0, usage_probe=lambda: usage["value"])
        with caplog.at_level(logging.INFO, logger="spanline.processors.memory_guard"):
            assert guard.exceeded()
            assert guard.exceeded()
            usage["value"] = 50
            assert not guard.exceeded()
        messages = [r.getMessage() for r in caplog.records]
        assert sum("refusing new spans" in m for m in messages) == 1
        assert sum("back under limit" in m for m in messages) == 1

    def test_failing_probe_does_not_refuse(self):
        def probe():
            raise OSError("no /proc")

        guard = MemoryGuard(100, check_interval=0, usage_probe=probe)
        assert not guard.exceeded()

    def test_process_rss(self):
        assert process_rss_bytes() > 0
        assert MemoryGuard.from_mib(1).limit_bytes == 1024 * 1024

    def test_invalid_limit(self):
        with pytest.raises(ValidationError):
            MemoryGuard(0)


class TestBackpressureController:
    def test_no_shedding_below_high_water_mark(self):
        controller = BackpressureController(Gauge(0.5))
        assert not controller.shedding_active
        assert not controller.should_shed(HIGH_HIGH_BITS, "healthz")

    def test_root_spans_shed_by_ratio_above_mark(self):
        controller = BackpressureController(Gauge(0.9), shedding_ratio=0.25)
        assert controller.shedding_active
        assert not controller.should_shed(LOW_HIGH_BITS, "checkout", is_root=True)
        assert controller.should_shed(HIGH_HIGH_BITS, "checkout", is_root=True)
        assert controller.shed_spans == 1

    def test_children_of_kept_traces_are_kept(self):
        controller = BackpressureController(Gauge(1.0), shedding_ratio=0.0)
        assert not controller.should_shed(HIGH_HIGH_BITS, "db.query", is_root=False)
        assert controller.should_shed(HIGH_HIGH_BITS, "healthz", is_root=False)

    def test_shed_fraction_is_roughly_the_ratio(self):
        controller = BackpressureController(Gauge(1.0), shedding_ratio=0.25)
        kept = sum(not controller.should_shed(generate_trace_id(), "op") for _ in range(4000))
        assert 800 < kept < 1200

    def test_watch_replaces_gauge(self):
        gauge = Gauge(0.0)
        controller = BackpressureController()
        assert controller.current_fill() == 0.0
        controller.watch(gauge)
        gauge.value = 0.95
        assert controller.shedding_active
        gauge.value = 0.1
        assert not controller.shedding_active

    def test_broken_gauge_counts_as_empty(self):
        def gauge():
            raise RuntimeError("closed")

        assert BackpressureController(gauge).current_fill() == 0.0

    def test_admission(self):
        usage = {"value": 10}
        guard = MemoryGuard(100, check_interval=0, usage_probe=lambda: usage["value"])
        controller = BackpressureController(memory_guard=guard)
        assert controller.admit()
        usage["value"] = 1000
        assert not controller.admit()
        assert controller.get_stats()["dropped_at_admission"] == 1

    @pytest.mark.parametrize("kwargs", [{"high_water_mark": 0}, {"high_water_mark": 1.5}, {"shedding_ratio": 2}])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValidationError):
            BackpressureController(**kwargs)


class TestTracerShedding:
    """Shedding is applied when spans start, after the sampler."""

    def test_health_checks_are_not_sampled_under_pressure(self, make_provider, recorder):
        gauge = Gauge(0.0)
        tracer = make_provider(backpressure=BackpressureController(gauge)).get_tracer("tests")

        assert isinstance(tracer.start_span("GET /healthz"), Span)
        gauge.value = 0.95
        shed = tracer.start_span("GET /healthz")
        assert isinstance(shed, NonRecordingSpan)
        assert shed.context.is_valid()
        assert not shed.context.sampled

    def test_in_progress_traces_stay_complete(self, make_provider):
        gauge = Gauge(0.0)
        tracer = make_provider(backpressure=BackpressureController(gauge, shedding_ratio=0.0)).get_tracer("tests")
        root = tracer.start_span("request")
        gauge.value = 1.0

        child = tracer.start_span("db.query", parent=root)
        new_root = tracer.start_span("request")

        assert isinstance(child, Span)
        assert isinstance(new_root, NonRecordingSpan)

    def test_children_of_shed_root_are_shed_with_always_on(self, make_provider, memory_exporter):
        tracer = make_provider(
            sampler=ALWAYS_ON, backpressure=BackpressureController(Gauge(1.0), shedding_ratio=0.0)
        ).get_tracer("tests")
        root = tracer.start_span("request")
        child = tracer.start_span("db.query", parent=root)
        grandchild = tracer.start_span("db.fetch", parent=child)
        for span in (grandchild, child, root):
            span.end()

        assert isinstance(root, NonRecordingSpan)
        assert isinstance(child, NonRecordingSpan)
        assert isinstance(grandchild, NonRecordingSpan)
        assert child.context.trace_id == root.context.trace_id
        assert memory_exporter.get_finished_spans() == ()

    def test_unsampled_remote_parent_is_left_to_the_sampler(self, make_provider):
        tracer = make_provider(
            sampler=ALWAYS_ON, backpressure=BackpressureController(Gauge(1.0), shedding_ratio=0.0)
        ).get_tracer("tests")
        incoming = extract({"traceparent": "00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-00"})
        assert isinstance(tracer.start_span("handle", incoming), Span)


class TestThrottledLogger:
    def test_suppresses_repeats_and_reports_count(self, caplog):
        target_logger = logging.getLogger("spanline.tests.throttle")
        throttled = ThrottledLogger(target_logger, interval=0.0)
        assert throttled.warning("k", "first")

        throttled.interval = 60.0
        assert not throttled.warning("k", "second")
        assert not throttled.warning("k", "third")
        assert throttled.warning("other", "independent key")

        throttled.interval = 0.0
        with caplog.at_level(logging.WARNING, logger="spanline.tests.throttle"):
            assert throttled.warning("k", "fourth")
        assert "(2 similar messages suppressed)" in caplog.text
