"""Backpressure controller consulted when spans start.

Pressure is handled in three layers, cheapest first:

1. Queue absorption: bursts are buffered by the processor and exporter
   queues; below the high-water mark nothing changes.
2. Adaptive shedding: while the exporter queue is above the high-water mark
   fewer new traces are sampled and low-priority spans (health checks) are
   not sampled at all.
3. Memory guard: above the memory limit new spans are refused outright and
   never reach a processor.

All decisions are taken once, when a span starts.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, Mapping, Optional

from spanline.errors import ValidationError
from spanline.processors.load_shedding import LoadSheddingFilter
from spanline.processors.memory_guard import MemoryGuard
from spanline.utils.helpers import parse_trace_id

logger = logging.getLogger(__name__)

_HIGH_BITS_SHIFT = 64
_HIGH_BITS_RANGE = 1 << 64


class BackpressureController:
    """
    Admission and shedding decisions based on pipeline pressure.

    ``fill_ratio`` reports how full the exporter queue is (0.0 - 1.0); it is
    usually ``lambda: queued_exporter.fill_ratio``.
    """

    def __init__(
        self,
        fill_ratio: Optional[Callable[[], float]] = None,
        *,
        high_water_mark: float = 0.8,
        shedding_ratio: float = 0.25,
        load_shedding: Optional[LoadSheddingFilter] = None,
        memory_guard: Optional[MemoryGuard] = None,
    ) -> None:
        if not 0.0 < high_water_mark <= 1.0:
            raise ValidationError("high_water_mark must be in (0.0, 1.0]")
        if not 0.0 <= shedding_ratio <= 1.0:
            raise ValidationError("shedding_ratio must be between 0.0 and 1.0")

        self._fill_ratio = fill_ratio
        self.high_water_mark = high_water_mark
        self.shedding_ratio = shedding_ratio
        # Uses the high 64 bits of the trace id, independent of the low bits
        # TraceIdRatioBased looks at, so the two ratios multiply.
        self._shed_bound = round(shedding_ratio * _HIGH_BITS_RANGE)
        self.load_shedding = load_shedding or LoadSheddingFilter()
        self.memory_guard = memory_guard

        self._lock = threading.Lock()
        self._shedding = False
        self._shed_spans = 0
        self._dropped_at_admission = 0

    def watch(self, fill_ratio: Callable[[], float]) -> None:
        """Set the queue fill gauge (used when the exporter is built later)."""
        self._fill_ratio = fill_ratio

    def current_fill(self) -> float:
        if self._fill_ratio is None:
            return 0.0
        try:
            return float(self._fill_ratio())
        except Exception as e:
            logger.debug(f"Queue fill gauge failed: {e}")
            return 0.0

    @property
    def shedding_active(self) -> bool:
        active = self.current_fill() >= self.high_water_mark
        if active != self._shedding:
            self._shedding = active
            if active:
                logger.warning(
                    f"Export queue above high-water mark ({self.high_water_mark:.0%}) - shedding load"
                )
            else:
                logger.info("Export queue back under high-water mark - shedding stopped")
        return active

    def admit(self) -> bool:
        """
        Hard memory guard. False means the span must not be recorded.
        """
        if self.memory_guard is None or not self.memory_guard.exceeded():
            return True
        with self._lock:
            self._dropped_at_admission += 1
        return False

    def should_shed(
        self,
        trace_id: str,
        name: str,
        attributes: Optional[Mapping[str, Any]] = None,
        is_root: bool = True,
        local_parent_sampled: Optional[bool] = None,
    ) -> bool:
        """
        Adaptive shedding for a span the sampler wants to keep.

        Only root spans are subject to the reduced ratio so traces already
        in progress stay complete; low-priority spans are shed regardless.
        Children of an unsampled parent from this process are shed too;
        ``local_parent_sampled`` is None for roots and remote parents.
        """
        if not self.shedding_active:
            return False
        shed = self.load_shedding.is_low_priority(name, attributes)
        if not shed and is_root:
            shed = (parse_trace_id(trace_id) >> _HIGH_BITS_SHIFT) >= self._shed_bound
        if not shed and local_parent_sampled is False:
            shed = True
        if shed:
            with self._lock:
                self._shed_spans += 1
        return shed

    @property
    def dropped_at_admission(self) -> int:
        return self._dropped_at_admission

    @property
    def shed_spans(self) -> int:
        return self._shed_spans

    def get_stats(self) -> Dict[str, Any]:
        """Get backpressure statistics."""
        with self._lock:
            return {
                "queue_fill": round(self.current_fill(), 3),
                "high_water_mark": self.high_water_mark,
                "shedding_active": self._shedding,
                "shed_spans": self._shed_spans,
                "dropped_at_admission": self._dropped_at_admission,
            }
