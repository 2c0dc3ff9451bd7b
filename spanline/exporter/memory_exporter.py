"""In-memory exporter for debugging and tests."""

from __future__ import annotations

import threading
from collections import deque
from typing import Callable, Deque, List, Optional, Union

from spanline.errors import ExportError
from spanline.exporter.base import ExportBatch, ExportResult, SpanExporter

Outcome = Union[ExportResult, ExportError]


class InMemorySpanExporter(SpanExporter):
    """
    Keeps every successfully exported span in memory.

    ``script`` queues outcomes for upcoming calls (an ``ExportResult`` to
    return or an ``ExportError`` to raise); once the script is used up,
    ``default_result`` applies. ``on_export`` is called with each batch
    before the outcome is decided.
    """

    def __init__(
        self,
        default_result: ExportResult = ExportResult.SUCCESS,
        on_export: Optional[Callable[[ExportBatch], None]] = None,
    ) -> None:
        self.default_result = default_result
        self.on_export = on_export
        self._lock = threading.Lock()
        self._spans: List = []
        self._batches: List[ExportBatch] = []
        self._script: Deque[Outcome] = deque()
        self.calls = 0
        self.is_shutdown = False

    def script(self, *outcomes: Outcome) -> None:
        with self._lock:
            self._script.extend(outcomes)

    def export(self, batch: ExportBatch, deadline: Optional[float] = None) -> ExportResult:
        if self.on_export is not None:
            self.on_export(batch)
        with self._lock:
            self.calls += 1
            outcome = self._script.popleft() if self._script else self.default_result
            if isinstance(outcome, ExportError):
                raise outcome
            if outcome == ExportResult.SUCCESS:
                self._batches.append(batch)
                self._spans.extend(batch.spans)
            return outcome

    def get_finished_spans(self) -> tuple:
        with self._lock:
            return tuple(self._spans)

    def get_batches(self) -> tuple:
        with self._lock:
            return tuple(self._batches)

    def clear(self) -> None:
        with self._lock:
            self._spans.clear()
            self._batches.clear()

    def shutdown(self, timeout_millis: int = 30000) -> None:
        self.is_shutdown = True
