"""Queued exporter: bounded FIFO queue, worker pool, retry with backoff."""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Dict, Iterable, List, Optional, Union

from tenacity import RetryCallState

from spanline.errors import ExportError, ValidationError
from spanline.exporter.base import ExportBatch, ExportResult, SpanExporter, remaining_seconds
from spanline.exporter.retry import RetryPolicy
from spanline.utils.throttle import ThrottledLogger

logger = logging.getLogger(__name__)

_POLL_INTERVAL = 0.05


class _ShutdownInterrupt(Exception):
    """Raised from a backoff sleep when the exporter is shutting down."""


def _is_retryable(result: ExportResult) -> bool:
    return result == ExportResult.RETRYABLE_FAILURE


class QueuedExporter(SpanExporter):
    """
    Hand batches to a sink from background workers.

    ``export()`` only enqueues and never blocks: when the queue is full the
    batch is dropped and counted. A fixed pool of worker threads drains the
    queue in FIFO order, calls the sink with a per-call timeout and retries
    retryable failures with exponential backoff until the retry budget runs
    out. Fatal failures are dropped right away.
    """

    def __init__(
        self,
        sink: SpanExporter,
        *,
        queue_capacity: int = 1000,
        num_workers: int = 2,
        timeout: float = 10.0,
        retry_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """
        Args:
            sink: Backend-facing exporter called by the workers
            queue_capacity: Maximum number of batches waiting for a worker
            num_workers: Number of worker threads
            timeout: Per-call sink timeout in seconds
            retry_policy: Backoff policy for retryable failures
        """
        if queue_capacity <= 0:
            raise ValidationError("queue_capacity must be positive")
        if num_workers <= 0:
            raise ValidationError("num_workers must be positive")
        if timeout <= 0:
            raise ValidationError("timeout must be positive")

        self.sink = sink
        self.queue_capacity = queue_capacity
        self.num_workers = num_workers
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()

        self._queue: "queue.Queue[ExportBatch]" = queue.Queue(maxsize=queue_capacity)
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0  # queued + in flight
        self._accepting = True
        self._stop = threading.Event()
        self._throttled = ThrottledLogger(logger)

        self._exported_batches = 0
        self._exported_spans = 0
        self._dropped_batches = 0
        self._dropped_spans = 0
        self._retried_batches = 0
        self._failed_batches = 0
        self._failed_spans = 0
        self._dropped_on_shutdown = 0

        # Sink calls run here so a hung sink cannot pin a worker past its timeout.
        self._call_pool = ThreadPoolExecutor(
            max_workers=num_workers * 2,
            thread_name_prefix="spanline-export-call",
        )
        self._workers: List[threading.Thread] = []
        for i in range(num_workers):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"spanline-export-{i}",
                daemon=True,
            )
            worker.start()
            self._workers.append(worker)

    # Producer side

    def export(
        self,
        batch: Union[ExportBatch, Iterable[Any]],
        deadline: Optional[float] = None,
    ) -> ExportResult:
        """
        Enqueue a batch for delivery. Never blocks.

        Returns SUCCESS when the batch was queued and FATAL_FAILURE when it
        was dropped (queue full or exporter shut down).
        """
        if not isinstance(batch, ExportBatch):
            batch = ExportBatch.of(list(batch))
        if not batch:
            return ExportResult.SUCCESS

        with self._lock:
            if not self._accepting:
                self._dropped_batches += 1
                self._dropped_spans += len(batch)
                return ExportResult.FATAL_FAILURE
            try:
                self._queue.put_nowait(batch)
            except queue.Full:
                self._dropped_batches += 1
                self._dropped_spans += len(batch)
                dropped = self._dropped_batches
            else:
                self._pending += 1
                return ExportResult.SUCCESS

        self._throttled.warning(
            "queue_full",
            f"Export queue full ({self.queue_capacity} batches) - dropping batch of {len(batch)} spans. "
            f"Total dropped batches: {dropped}",
        )
        return ExportResult.FATAL_FAILURE

    @property
    def fill_ratio(self) -> float:
        """Fraction of the queue currently occupied (0.0 - 1.0)."""
        return self._queue.qsize() / self.queue_capacity

    def queue_length(self) -> int:
        return self._queue.qsize()

    # Worker side

    def _worker_loop(self) -> None:
        while not self._stop.is_set():
            try:
                batch = self._queue.get(timeout=_POLL_INTERVAL)
            except queue.Empty:
                continue
            try:
                self._deliver(batch)
            except Exception:
                # A bug here must not kill the worker and stall the queue.
                logger.exception("Unexpected error while exporting batch")
                self._record_failure(batch)
            finally:
                with self._idle:
                    self._pending -= 1
                    if self._pending == 0:
                        self._idle.notify_all()

    def _deliver(self, batch: ExportBatch) -> None:
        policy = self.retry_policy
        # A zero budget still allows the one full-timeout attempt.
        budgeted = policy.enabled and policy.max_elapsed_time > 0
        budget_deadline = time.monotonic() + policy.max_elapsed_time
        attempts = 0

        def attempt() -> ExportResult:
            nonlocal attempts
            attempts += 1
            call_deadline = time.monotonic() + self.timeout
            if budgeted:
                if attempts > 1 and remaining_seconds(budget_deadline) <= 0:
                    return ExportResult.RETRYABLE_FAILURE
                call_deadline = min(call_deadline, budget_deadline)
            return self._call_sink(batch, call_deadline)

        retrying = policy.retrying(
            _is_retryable,
            sleep=self._backoff_sleep,
            before_sleep=self._count_retry,
        )
        try:
            result = retrying(attempt)
        except _ShutdownInterrupt:
            with self._lock:
                self._dropped_on_shutdown += len(batch)
            return

        if result == ExportResult.SUCCESS:
            with self._lock:
                self._exported_batches += 1
                self._exported_spans += len(batch)
            return

        self._record_failure(batch)
        if result == ExportResult.FATAL_FAILURE:
            self._throttled.error(
                "fatal",
                f"Export of {len(batch)} spans failed with a non-retryable error - batch dropped",
            )
        elif not policy.enabled:
            self._throttled.warning(
                "retry_disabled",
                f"Export of {len(batch)} spans failed and retries are disabled - batch dropped",
            )
        else:
            self._throttled.warning(
                "retry_exhausted",
                f"Export of {len(batch)} spans still failing after {attempts} attempts "
                f"({policy.max_elapsed_time}s) - batch dropped",
            )

    def _backoff_sleep(self, seconds: float) -> None:
        if self._stop.wait(seconds):
            raise _ShutdownInterrupt()

    def _count_retry(self, retry_state: RetryCallState) -> None:
        with self._lock:
            self._retried_batches += 1
        logger.debug(
            f"Retryable export failure, attempt {retry_state.attempt_number}; "
            f"retrying in {retry_state.next_action.sleep:.2f}s"
        )

    def _call_sink(self, batch: ExportBatch, deadline: float) -> ExportResult:
        timeout = remaining_seconds(deadline)
        try:
            future = self._call_pool.submit(self.sink.export, batch, deadline)
        except RuntimeError:
            # Pool already shut down
            return ExportResult.FATAL_FAILURE
        try:
            result = future.result(timeout=timeout)
        except FutureTimeoutError:
            future.cancel()
            self._throttled.warning("timeout", f"Export call timed out after {timeout:.2f}s")
            return ExportResult.RETRYABLE_FAILURE
        except ExportError as e:
            if e.retryable:
                logger.debug(f"Retryable export error: {e}")
                return ExportResult.RETRYABLE_FAILURE
            self._throttled.warning("non_retryable", f"Non-retryable export error: {e}")
            return ExportResult.FATAL_FAILURE
        except Exception as e:
            self._throttled.warning("sink_error", f"Exporter sink raised {type(e).__name__}: {e}")
            return ExportResult.RETRYABLE_FAILURE

        if isinstance(result, ExportResult):
            return result
        # Plain bool sinks: True means delivered.
        return ExportResult.SUCCESS if result else ExportResult.RETRYABLE_FAILURE

    def _record_failure(self, batch: ExportBatch) -> None:
        with self._lock:
            self._failed_batches += 1
            self._failed_spans += len(batch)

    # Lifecycle

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Wait until every queued batch has been handled. Returns False on timeout."""
        deadline = time.monotonic() + timeout_millis / 1000.0
        with self._idle:
            while self._pending > 0:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def shutdown(self, timeout_millis: int = 30000) -> None:
        """
        Stop accepting batches, drain the queue within the timeout, then stop.

        Batches still queued or in flight at the deadline are abandoned and
        counted in ``dropped_on_shutdown``.
        """
        with self._lock:
            if not self._accepting:
                return
            self._accepting = False

        deadline = time.monotonic() + timeout_millis / 1000.0
        if not self.force_flush(timeout_millis):
            logger.warning("Export queue not drained before shutdown deadline; abandoning remaining batches")
        self._stop.set()

        for worker in self._workers:
            worker.join(timeout=max(remaining_seconds(deadline), _POLL_INTERVAL))

        abandoned = 0
        while True:
            try:
                batch = self._queue.get_nowait()
            except queue.Empty:
                break
            abandoned += len(batch)
        with self._lock:
            self._dropped_on_shutdown += abandoned

        self._call_pool.shutdown(wait=False, cancel_futures=True)
        try:
            self.sink.shutdown(timeout_millis=int(remaining_seconds(deadline) * 1000))
        except Exception as e:
            logger.debug(f"Exporter sink shutdown failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get export statistics."""
        with self._lock:
            return {
                "queue_capacity": self.queue_capacity,
                "queue_length": self._queue.qsize(),
                "exported_batches": self._exported_batches,
                "exported_spans": self._exported_spans,
                "dropped_batches": self._dropped_batches,
                "dropped_spans": self._dropped_spans,
                "retried_batches": self._retried_batches,
                "failed_batches": self._failed_batches,
                "failed_spans": self._failed_spans,
                "dropped_on_shutdown": self._dropped_on_shutdown,
            }

    @property
    def failed_batches(self) -> int:
        return self._failed_batches

    @property
    def dropped_batches(self) -> int:
        return self._dropped_batches
