"""Head-based sampling decisions for traces.

A sampler is consulted exactly once, when a span starts. Its decision is
stored in the span context's trace flags and never revisited.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence, Tuple

from opentelemetry.trace import SpanKind

from spanline.errors import ValidationError
from spanline.tracer.span_context import SpanContext, TraceState
from spanline.utils.helpers import parse_trace_id

_TRACE_ID_LOW_MASK = (1 << 64) - 1


class Decision(enum.Enum):
    DROP = 0
    RECORD_AND_SAMPLE = 1

    @property
    def sampled(self) -> bool:
        return self is Decision.RECORD_AND_SAMPLE


@dataclass(frozen=True)
class SamplingResult:
    decision: Decision
    attributes: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    trace_state: Optional[TraceState] = None

    @property
    def sampled(self) -> bool:
        return self.decision.sampled


class Sampler:
    """Base sampler interface."""

    def should_sample(
        self,
        parent_context: Optional[SpanContext],
        trace_id: str,
        name: str,
        kind: Optional[SpanKind] = None,
        attributes: Optional[Mapping[str, Any]] = None,
        links: Optional[Sequence[Any]] = None,
    ) -> SamplingResult:
        raise NotImplementedError

    def get_description(self) -> str:
        return type(self).__name__


def _parent_trace_state(parent_context: Optional[SpanContext]) -> Optional[TraceState]:
    if parent_context is not None and parent_context.is_valid():
        return parent_context.trace_state
    return None


class StaticSampler(Sampler):
    """Sampler that always returns the same decision."""

    def __init__(self, decision: Decision) -> None:
        self._decision = decision

    def should_sample(self, parent_context, trace_id, name, kind=None, attributes=None, links=None):
        return SamplingResult(self._decision, trace_state=_parent_trace_state(parent_context))

    def get_description(self) -> str:
        return "AlwaysOnSampler" if self._decision.sampled else "AlwaysOffSampler"


class AlwaysOnSampler(StaticSampler):
    def __init__(self) -> None:
        super().__init__(Decision.RECORD_AND_SAMPLE)


class AlwaysOffSampler(StaticSampler):
    def __init__(self) -> None:
        super().__init__(Decision.DROP)


ALWAYS_ON = AlwaysOnSampler()
ALWAYS_OFF = AlwaysOffSampler()


class TraceIdRatioBased(Sampler):
    """
    Sample a fixed fraction of traces, decided from the trace id.

    The low 64 bits of the trace id are treated as a uniform random number
    and compared against ``rate * 2**64``. Every span of a trace therefore
    gets the same decision, on every process that sees that trace id.
    """

    def __init__(self, rate: float) -> None:
        if not 0.0 <= rate <= 1.0:
            raise ValidationError("rate must be between 0.0 and 1.0")
        self._rate = rate
        self._bound = self.get_bound_for_rate(rate)

    @staticmethod
    def get_bound_for_rate(rate: float) -> int:
        return round(rate * (_TRACE_ID_LOW_MASK + 1))

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def bound(self) -> int:
        return self._bound

    def samples_trace_id(self, trace_id: str) -> bool:
        return parse_trace_id(trace_id) & _TRACE_ID_LOW_MASK < self._bound

    def should_sample(self, parent_context, trace_id, name, kind=None, attributes=None, links=None):
        decision = Decision.RECORD_AND_SAMPLE if self.samples_trace_id(trace_id) else Decision.DROP
        return SamplingResult(decision, trace_state=_parent_trace_state(parent_context))

    def get_description(self) -> str:
        return f"TraceIdRatioBased{{{self._rate}}}"


class ParentBased(Sampler):
    """
    Follow the parent's decision; use ``root`` when there is no parent.

    Each parent case (remote or local, sampled or not) has its own delegate,
    so the behavior for missing or unsampled parents is configurable.
    """

    def __init__(
        self,
        root: Sampler,
        remote_parent_sampled: Sampler = ALWAYS_ON,
        remote_parent_not_sampled: Sampler = ALWAYS_OFF,
        local_parent_sampled: Sampler = ALWAYS_ON,
        local_parent_not_sampled: Sampler = ALWAYS_OFF,
    ) -> None:
        self._root = root
        self._remote_parent_sampled = remote_parent_sampled
        self._remote_parent_not_sampled = remote_parent_not_sampled
        self._local_parent_sampled = local_parent_sampled
        self._local_parent_not_sampled = local_parent_not_sampled

    @property
    def root(self) -> Sampler:
        return self._root

    def should_sample(self, parent_context, trace_id, name, kind=None, attributes=None, links=None):
        if parent_context is None or not parent_context.is_valid():
            sampler = self._root
        elif parent_context.is_remote:
            sampler = self._remote_parent_sampled if parent_context.sampled else self._remote_parent_not_sampled
        else:
            sampler = self._local_parent_sampled if parent_context.sampled else self._local_parent_not_sampled
        return sampler.should_sample(parent_context, trace_id, name, kind, attributes, links)

    def get_description(self) -> str:
        return (
            f"ParentBased{{root:{self._root.get_description()},"
            f"remoteParentSampled:{self._remote_parent_sampled.get_description()},"
            f"remoteParentNotSampled:{self._remote_parent_not_sampled.get_description()},"
            f"localParentSampled:{self._local_parent_sampled.get_description()},"
            f"localParentNotSampled:{self._local_parent_not_sampled.get_description()}}}"
        )


SAMPLER_KINDS: Tuple[str, ...] = (
    "always_on",
    "always_off",
    "traceidratio",
    "parentbased_always_on",
    "parentbased_always_off",
    "parentbased_traceidratio",
)


def sampler_from_config(kind: str, ratio: float = 1.0) -> Sampler:
    """
    Build a sampler from its configuration name.

    Names follow the ``OTEL_TRACES_SAMPLER`` vocabulary.
    """
    if kind == "always_on":
        return ALWAYS_ON
    if kind == "always_off":
        return ALWAYS_OFF
    if kind == "traceidratio":
        return TraceIdRatioBased(ratio)
    if kind == "parentbased_always_on":
        return ParentBased(ALWAYS_ON)
    if kind == "parentbased_always_off":
        return ParentBased(ALWAYS_OFF)
    if kind == "parentbased_traceidratio":
        return ParentBased(TraceIdRatioBased(ratio))
    raise ValidationError(f"Unknown sampler kind '{kind}', expected one of {', '.join(SAMPLER_KINDS)}")
