"""TracerProvider: owns the resource, sampler and processor chain."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from opentelemetry.sdk.resources import Resource

from spanline.processors.backpressure import BackpressureController
from spanline.processors.base import CompositeSpanProcessor, SpanProcessor
from spanline.processors.sampler import ALWAYS_ON, ParentBased, Sampler
from spanline.tracer.tracer import NoOpTracer, Tracer

logger = logging.getLogger(__name__)


class TracerProvider:
    """
    Entry point of a configured pipeline.

    The resource and sampler are fixed at construction and shared read-only
    by every tracer. Without any span processor the provider still creates
    spans but nothing leaves the process.
    """

    def __init__(
        self,
        resource: Union[Resource, Mapping[str, Any], None] = None,
        sampler: Optional[Sampler] = None,
        backpressure: Optional[BackpressureController] = None,
    ) -> None:
        """
        Initialize TracerProvider.

        Args:
            resource: OpenTelemetry Resource, or a dict of resource
                attributes (merged with the SDK defaults)
            sampler: Head sampler, ParentBased(AlwaysOn) by default
            backpressure: Optional admission/shedding controller
        """
        if not isinstance(resource, Resource):
            resource = Resource.create(dict(resource or {}))
        self._resource = resource
        self._sampler = sampler or ParentBased(ALWAYS_ON)
        self.backpressure = backpressure

        self._active_processor = CompositeSpanProcessor()
        self._tracers: Dict[Tuple[str, Optional[str]], Tracer] = {}
        self._lock = threading.Lock()
        self._shutdown = False

    @property
    def resource(self) -> Resource:
        return self._resource

    @property
    def sampler(self) -> Sampler:
        return self._sampler

    @property
    def processors(self) -> Tuple[SpanProcessor, ...]:
        return self._active_processor.processors

    def get_tracer(self, name: str, version: Optional[str] = None) -> Tracer:
        """
        Get a tracer by name.

        Args:
            name: Instrumentation scope name
            version: Optional instrumentation scope version
        """
        key = (name, version)
        with self._lock:
            tracer = self._tracers.get(key)
            if tracer is None:
                tracer = Tracer(self, name, version)
                self._tracers[key] = tracer
            return tracer

    def add_span_processor(self, processor: SpanProcessor) -> None:
        """Append a processor to the chain. Processors run in the order added."""
        with self._lock:
            if self._shutdown:
                logger.warning("TracerProvider already shut down; ignoring new span processor")
                return
            self._active_processor.add_span_processor(processor)

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Force flush all processors."""
        return self._active_processor.force_flush(timeout_millis)

    def shutdown(self, timeout_millis: int = 30000) -> None:
        """Shutdown all processors within one overall deadline. Idempotent."""
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
        self._active_processor.shutdown(timeout_millis)


class NoOpTracerProvider:
    """Provider used until a pipeline is configured; all operations are no-ops."""

    resource = Resource.get_empty()
    sampler = None
    backpressure = None
    processors: Tuple[SpanProcessor, ...] = ()

    def get_tracer(self, name: str, version: Optional[str] = None) -> NoOpTracer:
        return NoOpTracer(name, version)

    def add_span_processor(self, processor: SpanProcessor) -> None:
        logger.debug("Span processor added to the no-op provider is ignored")

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True

    def shutdown(self, timeout_millis: int = 30000) -> None:
        return None
