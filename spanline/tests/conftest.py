"""Shared fixtures for the Spanline test suite."""

import threading

import pytest

from spanline.bootstrap import stop_tracing
from spanline.exporter.memory_exporter import InMemorySpanExporter
from spanline.processors.base import SpanProcessor
from spanline.processors.simple_processor import SimpleSpanProcessor
from spanline.tracer.provider import TracerProvider


class RecordingProcessor(SpanProcessor):
    """Processor that remembers every span it sees."""

    def __init__(self):
        self.started = []
        self.ended = []
        self._lock = threading.Lock()

    def on_start(self, span, parent_context=None):
        with self._lock:
            self.started.append(span)

    def on_end(self, span):
        with self._lock:
            self.ended.append(span)


@pytest.fixture
def recorder():
    return RecordingProcessor()


@pytest.fixture
def memory_exporter():
    return InMemorySpanExporter()


@pytest.fixture
def make_provider(recorder, memory_exporter):
    """Build providers wired to the recorder and an in-memory exporter."""
    providers = []

    def _make(**kwargs):
        provider = TracerProvider(**kwargs)
        provider.add_span_processor(recorder)
        provider.add_span_processor(SimpleSpanProcessor(memory_exporter))
        providers.append(provider)
        return provider

    yield _make
    for provider in providers:
        provider.shutdown(timeout_millis=1000)


@pytest.fixture
def tracer(make_provider):
    return make_provider().get_tracer("tests")


@pytest.fixture
def clean_global_provider():
    """Restore the no-op global provider after a test that calls init()."""
    yield
    stop_tracing(timeout_millis=2000)
