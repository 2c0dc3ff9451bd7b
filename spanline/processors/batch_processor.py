"""Batching span processor with bounded buffer and background flush."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Deque, Dict, List, Optional

from spanline.errors import ValidationError
from spanline.exporter.base import ExportBatch, ExportResult, SpanExporter, remaining_seconds
from spanline.processors.base import SpanProcessor
from spanline.processors.drop_policy import DEFAULT_DROP_POLICY, DropPolicy
from spanline.utils.throttle import ThrottledLogger

logger = logging.getLogger(__name__)


class BatchSpanProcessor(SpanProcessor):
    """
    Batch span processor that buffers ended spans for export.

    Application threads only append to a bounded buffer; a background thread
    hands batches to the exporter when ``max_export_batch_size`` spans are
    waiting or ``schedule_delay_millis`` has passed since the last flush,
    whichever comes first. A full buffer drops spans (per the drop policy)
    and counts them instead of blocking the caller.
    """

    def __init__(
        self,
        exporter: SpanExporter,
        *,
        max_queue_size: int = 2048,
        max_export_batch_size: int = 512,
        schedule_delay_millis: int = 5000,
        export_timeout_millis: int = 30000,
        drop_policy: Optional[DropPolicy] = None,
    ) -> None:
        if max_queue_size <= 0:
            raise ValidationError("max_queue_size must be positive")
        if max_export_batch_size <= 0:
            raise ValidationError("max_export_batch_size must be positive")
        if max_export_batch_size > max_queue_size:
            raise ValidationError("max_export_batch_size must be less than or equal to max_queue_size")
        if schedule_delay_millis <= 0:
            raise ValidationError("schedule_delay_millis must be positive")

        self.exporter = exporter
        self.max_queue_size = max_queue_size
        self.max_export_batch_size = max_export_batch_size
        self.schedule_delay = schedule_delay_millis / 1000.0
        self.export_timeout = export_timeout_millis / 1000.0
        self.drop_policy = drop_policy or DEFAULT_DROP_POLICY

        self._queue: Deque[Any] = deque()
        self._lock = threading.Lock()
        # Held while draining and exporting so batches leave in end order.
        self._flush_lock = threading.Lock()
        self._event = threading.Event()
        self._shutdown = False
        self._throttled = ThrottledLogger(logger)

        self._dropped_spans = 0
        self._exported_spans = 0
        self._failed_spans = 0
        self._dropped_on_shutdown = 0

        # One call thread keeps batches in end order; a hung call is abandoned at its deadline.
        self._call_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="spanline-batch-call")
        self._worker = threading.Thread(target=self._worker_loop, name="spanline-batch", daemon=True)
        self._worker.start()

    def on_end(self, span) -> None:
        """Buffer a sampled, ended span. Never blocks."""
        if not span.context.sampled:
            return

        with self._lock:
            if self._shutdown:
                self._dropped_spans += 1
                return
            dropped = self.drop_policy.handle(self._queue, span, self.max_queue_size)
            if dropped is not None:
                self._dropped_spans += 1
                total_dropped = self._dropped_spans
            batch_ready = len(self._queue) >= self.max_export_batch_size

        if batch_ready:
            self._event.set()
        if dropped is not None:
            self._throttled.warning(
                "buffer_full",
                f"Span buffer full ({self.max_queue_size}) - dropping span '{dropped.name}'. "
                f"Total dropped: {total_dropped}",
            )

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Export everything buffered, then flush the exporter. Returns False on timeout."""
        deadline = time.monotonic() + timeout_millis / 1000.0
        if not self._export_batches(drain_all=True, deadline=deadline):
            return False
        remaining = max(0, int((deadline - time.monotonic()) * 1000))
        try:
            return bool(self.exporter.force_flush(remaining))
        except Exception as e:
            logger.debug(f"Exporter flush failed: {e}")
            return False

    def shutdown(self, timeout_millis: int = 30000) -> None:
        """
        Stop the worker and run one final flush bounded by ``timeout_millis``.

        Spans still buffered at the deadline are discarded and counted in
        ``dropped_on_shutdown``.
        """
        with self._lock:
            if self._shutdown:
                return
            self._shutdown = True
        deadline = time.monotonic() + timeout_millis / 1000.0

        self._event.set()
        self._worker.join(timeout=max(0.0, deadline - time.monotonic()))
        self._export_batches(drain_all=True, deadline=deadline)

        with self._lock:
            leftover = len(self._queue)
            self._queue.clear()
            self._dropped_on_shutdown += leftover
        if leftover:
            logger.warning(f"Discarded {leftover} spans not flushed before shutdown deadline")

        self._call_pool.shutdown(wait=False, cancel_futures=True)
        remaining = max(0, int((deadline - time.monotonic()) * 1000))
        try:
            self.exporter.shutdown(timeout_millis=remaining)
        except Exception as e:
            logger.debug(f"Exporter shutdown failed: {e}")

    # Internal
    def _worker_loop(self) -> None:
        """Background worker that flushes on batch size or schedule delay."""
        last_flush = time.monotonic()
        while not self._shutdown:
            timeout = self.schedule_delay - (time.monotonic() - last_flush)
            if timeout > 0:
                self._event.wait(timeout=timeout)
            self._event.clear()
            if self._shutdown:
                break

            timer_fired = time.monotonic() - last_flush >= self.schedule_delay
            self._export_batches(drain_all=timer_fired)
            last_flush = time.monotonic()

    def _export_batches(self, drain_all: bool, deadline: Optional[float] = None) -> bool:
        """
        Export buffered spans in batches.

        With ``drain_all`` everything is exported; otherwise only full
        batches. Returns False if the deadline passed first.
        """
        timeout = -1 if deadline is None else max(0.0, deadline - time.monotonic())
        if not self._flush_lock.acquire(timeout=timeout):
            return False
        try:
            while True:
                if deadline is None and self._shutdown:
                    # shutdown() takes over the final flush under its own deadline
                    return False
                spans = self._drain(drain_all)
                if not spans:
                    return True
                self._export(spans, deadline)
                if deadline is not None and time.monotonic() >= deadline:
                    with self._lock:
                        return not self._queue
        finally:
            self._flush_lock.release()

    def _drain(self, drain_all: bool) -> List[Any]:
        """Take the next batch off the buffer, or nothing if no batch is due."""
        with self._lock:
            if not self._queue:
                return []
            if not drain_all and len(self._queue) < self.max_export_batch_size:
                return []
            count = min(len(self._queue), self.max_export_batch_size)
            return [self._queue.popleft() for _ in range(count)]

    def _export(self, spans: List[Any], deadline: Optional[float] = None) -> None:
        """Hand one batch to the exporter. Errors are counted and logged, never raised."""
        batch = ExportBatch.of(spans)
        call_deadline = time.monotonic() + self.export_timeout
        if deadline is not None:
            call_deadline = min(call_deadline, deadline)
        timeout = remaining_seconds(call_deadline)
        try:
            future = self._call_pool.submit(self.exporter.export, batch, call_deadline)
            result = future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            with self._lock:
                if self._shutdown:
                    self._dropped_on_shutdown += len(batch)
                else:
                    self._failed_spans += len(batch)
            self._throttled.warning(
                "export_timeout",
                f"Exporter call abandoned after {timeout:.2f}s - batch of {len(batch)} spans dropped",
            )
            return
        except Exception as e:
            logger.debug(f"Exporter raised: {e}", exc_info=True)
            result = ExportResult.FATAL_FAILURE

        with self._lock:
            if result == ExportResult.SUCCESS:
                self._exported_spans += len(batch)
            else:
                self._failed_spans += len(batch)
        if result != ExportResult.SUCCESS:
            self._throttled.warning(
                "export_failed",
                f"Exporter did not accept batch of {len(batch)} spans ({result.name})",
            )

    # Introspection
    def queue_length(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def dropped_spans(self) -> int:
        return self._dropped_spans

    @property
    def dropped_on_shutdown(self) -> int:
        return self._dropped_on_shutdown

    def get_stats(self) -> Dict[str, Any]:
        """Get buffering statistics."""
        with self._lock:
            return {
                "max_queue_size": self.max_queue_size,
                "queue_length": len(self._queue),
                "dropped_spans": self._dropped_spans,
                "exported_spans": self._exported_spans,
                "failed_spans": self._failed_spans,
                "dropped_on_shutdown": self._dropped_on_shutdown,
            }
