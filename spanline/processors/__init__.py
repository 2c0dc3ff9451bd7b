"""Span processors and supporting utilities."""

from spanline.processors.base import CompositeSpanProcessor, SpanProcessor
from spanline.processors.batch_processor import BatchSpanProcessor
from spanline.processors.simple_processor import SimpleSpanProcessor
from spanline.processors.logging_processor import LoggingSpanProcessor
from spanline.processors.drop_policy import (
    DEFAULT_DROP_POLICY,
    DropNewestPolicy,
    DropOldestPolicy,
    DropPolicy,
)
from spanline.processors.sampler import (
    ALWAYS_OFF,
    ALWAYS_ON,
    AlwaysOffSampler,
    AlwaysOnSampler,
    Decision,
    ParentBased,
    Sampler,
    SamplingResult,
    TraceIdRatioBased,
    sampler_from_config,
)
from spanline.processors.backpressure import BackpressureController
from spanline.processors.load_shedding import LoadSheddingFilter
from spanline.processors.memory_guard import MemoryGuard

__all__ = [
    "SpanProcessor",
    "CompositeSpanProcessor",
    "BatchSpanProcessor",
    "SimpleSpanProcessor",
    "LoggingSpanProcessor",
    "DropPolicy",
    "DropOldestPolicy",
    "DropNewestPolicy",
    "DEFAULT_DROP_POLICY",
    "Decision",
    "Sampler",
    "SamplingResult",
    "AlwaysOnSampler",
    "AlwaysOffSampler",
    "ALWAYS_ON",
    "ALWAYS_OFF",
    "TraceIdRatioBased",
    "ParentBased",
    "sampler_from_config",
    "BackpressureController",
    "LoadSheddingFilter",
    "MemoryGuard",
]
