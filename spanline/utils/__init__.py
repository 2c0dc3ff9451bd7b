"""Utility functions for Spanline."""

from spanline.utils.helpers import (
    format_trace_id,
    format_span_id,
    parse_trace_id,
    parse_span_id,
    is_valid_trace_id,
    is_valid_span_id,
    generate_trace_id,
    generate_span_id,
)
from spanline.utils.throttle import ThrottledLogger

__all__ = [
    "format_trace_id",
    "format_span_id",
    "parse_trace_id",
    "parse_span_id",
    "is_valid_trace_id",
    "is_valid_span_id",
    "generate_trace_id",
    "generate_span_id",
    "ThrottledLogger",
]
