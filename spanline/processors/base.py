"""Span processor interface and fan-out composite."""

from __future__ import annotations

import logging
import time
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)


class SpanProcessor:
    """
    Base span processor interface.

    ``on_start`` runs synchronously inside ``Tracer.start_span`` and
    ``on_end`` inside ``Span.end()``, on the application's thread; both must
    be cheap and must not raise.
    """

    def on_start(self, span, parent_context=None) -> None:
        """Called when a recording span starts."""
        pass

    def on_end(self, span) -> None:
        """
        Called when a recording span ends.

        Args:
            span: The ended (now read-only) span
        """
        pass

    def shutdown(self, timeout_millis: int = 30000) -> None:
        """Shutdown the processor."""
        pass

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Force flush any pending spans."""
        return True


class CompositeSpanProcessor(SpanProcessor):
    """
    Fan spans out to several processors, in registration order.

    A failing processor is logged and skipped; the others still run. With no
    processors registered every call is a no-op.
    """

    def __init__(self, processors: Optional[Sequence[SpanProcessor]] = None) -> None:
        self._processors: List[SpanProcessor] = list(processors or ())

    @property
    def processors(self) -> tuple:
        return tuple(self._processors)

    def add_span_processor(self, processor: SpanProcessor) -> None:
        # copy-on-write so iteration in on_end never sees a half-updated list
        self._processors = self._processors + [processor]

    def on_start(self, span, parent_context=None) -> None:
        for processor in self._processors:
            try:
                processor.on_start(span, parent_context)
            except Exception:
                logger.exception(f"Span processor {type(processor).__name__} failed in on_start")

    def on_end(self, span) -> None:
        for processor in self._processors:
            try:
                processor.on_end(span)
            except Exception:
                # Processors should not crash tracing
                logger.exception(f"Span processor {type(processor).__name__} failed in on_end")

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        deadline = time.monotonic() + timeout_millis / 1000.0
        flushed = True
        for processor in self._processors:
            remaining = max(0, int((deadline - time.monotonic()) * 1000))
            try:
                flushed = processor.force_flush(remaining) and flushed
            except Exception:
                logger.exception(f"Span processor {type(processor).__name__} failed to flush")
                flushed = False
        return flushed

    def shutdown(self, timeout_millis: int = 30000) -> None:
        deadline = time.monotonic() + timeout_millis / 1000.0
        for processor in self._processors:
            remaining = max(0, int((deadline - time.monotonic()) * 1000))
            try:
                processor.shutdown(remaining)
            except Exception:
                logger.exception(f"Span processor {type(processor).__name__} failed to shut down")
