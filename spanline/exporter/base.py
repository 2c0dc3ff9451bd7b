"""Exporter sink interface and the batch type handed to it."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Iterator, Optional, Sequence, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    from spanline.tracer.span import Span


class ExportResult(enum.Enum):
    SUCCESS = 0
    RETRYABLE_FAILURE = 1
    FATAL_FAILURE = 2


@dataclass(frozen=True)
class ExportBatch:
    """Ordered, bounded group of ended spans, exported exactly once."""

    spans: Tuple["Span", ...]
    created_at: float = field(default_factory=time.monotonic)

    @classmethod
    def of(cls, spans: Sequence["Span"]) -> "ExportBatch":
        return cls(spans=tuple(spans))

    def __len__(self) -> int:
        return len(self.spans)

    def __iter__(self) -> Iterator["Span"]:
        return iter(self.spans)


class SpanExporter:
    """
    Sink interface: the seam between the pipeline and a telemetry backend.

    ``export`` receives a batch and a deadline (a ``time.monotonic()``
    instant, or None for no deadline) and reports how the attempt went.
    Sinks may also raise ``spanline.errors.ExportError``; the caller maps
    it to the matching result.
    """

    def export(self, batch: ExportBatch, deadline: Optional[float] = None) -> ExportResult:
        raise NotImplementedError

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True

    def shutdown(self, timeout_millis: int = 30000) -> None:
        return None


def remaining_seconds(deadline: Optional[float]) -> Optional[float]:
    """Seconds until ``deadline`` (never negative), or None without a deadline."""
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())
