"""Synchronous span processor for debugging."""

from __future__ import annotations

import logging
import threading
import time

from spanline.exporter.base import ExportBatch, ExportResult, SpanExporter
from spanline.processors.base import SpanProcessor
from spanline.utils.throttle import ThrottledLogger

logger = logging.getLogger(__name__)


class SimpleSpanProcessor(SpanProcessor):
    """
    Export every sampled span as soon as it ends, on the caller's thread.

    ``Span.end()`` blocks until the export attempt finishes. Useful while
    debugging; use ``BatchSpanProcessor`` in production.
    """

    def __init__(self, exporter: SpanExporter, export_timeout_millis: int = 30000) -> None:
        self.exporter = exporter
        self.export_timeout = export_timeout_millis / 1000.0
        self._lock = threading.Lock()
        self._shutdown = False
        self._failed_spans = 0
        self._throttled = ThrottledLogger(logger)

    def on_end(self, span) -> None:
        if self._shutdown or not span.context.sampled:
            return
        try:
            result = self.exporter.export(
                ExportBatch.of([span]),
                time.monotonic() + self.export_timeout,
            )
        except Exception as e:
            logger.debug(f"Exporter raised: {e}", exc_info=True)
            result = ExportResult.FATAL_FAILURE

        if result != ExportResult.SUCCESS:
            with self._lock:
                self._failed_spans += 1
            self._throttled.warning("export_failed", f"Export of span '{span.name}' failed ({result.name})")

    @property
    def failed_spans(self) -> int:
        return self._failed_spans

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return bool(self.exporter.force_flush(timeout_millis))

    def shutdown(self, timeout_millis: int = 30000) -> None:
        if self._shutdown:
            return
        self._shutdown = True
        self.exporter.shutdown(timeout_millis=timeout_millis)
