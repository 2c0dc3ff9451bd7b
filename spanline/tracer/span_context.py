"""Immutable trace metadata."""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from spanline.utils.helpers import (
    INVALID_SPAN_ID,
    INVALID_TRACE_ID,
    is_valid_span_id,
    is_valid_trace_id,
)

SAMPLED_FLAG = 0x01

TraceState = Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class SpanContext:
    trace_id: str
    span_id: str
    trace_flags: int = 0  # bit 0 = sampled
    trace_state: TraceState = ()
    # Set on contexts extracted from a carrier; not part of the identity.
    is_remote: bool = field(default=False, compare=False)

    @property
    def sampled(self) -> bool:
        return bool(self.trace_flags & SAMPLED_FLAG)

    def is_valid(self) -> bool:
        return is_valid_trace_id(self.trace_id) and is_valid_span_id(self.span_id)

    def trace_state_value(self, key: str) -> Optional[str]:
        for k, v in self.trace_state:
            if k == key:
                return v
        return None


INVALID_SPAN_CONTEXT = SpanContext(trace_id=INVALID_TRACE_ID, span_id=INVALID_SPAN_ID)
