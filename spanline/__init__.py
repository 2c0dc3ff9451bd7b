"""Spanline: a tracing pipeline with explicit context, sampling and backpressure."""

from spanline.bootstrap import (
    build_pipeline,
    get_tracer,
    get_tracer_provider,
    init,
    set_tracer_provider,
    stop_tracing,
)
from spanline.config import SpanlineConfig, load_config
from spanline.context import (
    EMPTY_CONTEXT,
    Baggage,
    Context,
    bind,
    extract,
    inject,
)
from spanline.errors import (
    ConfigError,
    ExportError,
    InitializationError,
    SpanlineError,
    ValidationError,
)
from spanline.tracer import (
    INVALID_SPAN_CONTEXT,
    NonRecordingSpan,
    Span,
    SpanContext,
    SpanKind,
    SpanStatus,
    Tracer,
    TracerProvider,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "init",
    "stop_tracing",
    "build_pipeline",
    "get_tracer",
    "get_tracer_provider",
    "set_tracer_provider",
    "SpanlineConfig",
    "load_config",
    "Context",
    "EMPTY_CONTEXT",
    "Baggage",
    "bind",
    "inject",
    "extract",
    "Span",
    "NonRecordingSpan",
    "SpanContext",
    "INVALID_SPAN_CONTEXT",
    "SpanKind",
    "SpanStatus",
    "Tracer",
    "TracerProvider",
    "SpanlineError",
    "ConfigError",
    "ValidationError",
    "ExportError",
    "InitializationError",
]
