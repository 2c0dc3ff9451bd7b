"""Exporters for delivering spans to backends."""

from spanline.exporter.base import ExportBatch, ExportResult, SpanExporter
from spanline.exporter.retry import NO_RETRY, RetryPolicy
from spanline.exporter.queued_exporter import QueuedExporter
from spanline.exporter.console_exporter import ConsoleExporter
from spanline.exporter.memory_exporter import InMemorySpanExporter
from spanline.exporter.otlp_exporter import OTLPExporter

__all__ = [
    "ExportBatch",
    "ExportResult",
    "SpanExporter",
    "RetryPolicy",
    "NO_RETRY",
    "QueuedExporter",
    "ConsoleExporter",
    "InMemorySpanExporter",
    "OTLPExporter",
]
