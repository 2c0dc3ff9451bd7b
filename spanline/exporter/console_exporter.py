"""Console exporter for developer visibility."""

from __future__ import annotations

import sys
import threading
from typing import Optional

from spanline.exporter.base import ExportBatch, ExportResult, SpanExporter


class ConsoleExporter(SpanExporter):
    """Simple exporter that prints spans to stdout (or provided stream)."""

    def __init__(self, stream=None) -> None:
        self.stream = stream or sys.stdout
        self._lock = threading.Lock()

    def export(self, batch: ExportBatch, deadline: Optional[float] = None) -> ExportResult:
        lines = []
        for span in batch:
            line = (
                f"[span] name={span.name} trace_id={span.context.trace_id} "
                f"span_id={span.context.span_id} parent_id={span.parent_span_id} "
                f"kind={span.kind.name} status={span.status.name} "
                f"duration_ns={span.duration_ns}"
            )
            if span.attributes:
                line += f" attrs={dict(span.attributes)}"
            if span.events:
                line += f" events={[event.name for event in span.events]}"
            lines.append(line)
        with self._lock:
            for line in lines:
                print(line, file=self.stream)
        return ExportResult.SUCCESS

    def shutdown(self, timeout_millis: int = 30000) -> None:
        try:
            self.stream.flush()
        except (AttributeError, ValueError):
            pass
