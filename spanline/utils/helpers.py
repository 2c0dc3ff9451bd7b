"""Identifier helpers shared by the tracer and the propagators."""

from __future__ import annotations

import re
import time

from opentelemetry.sdk.trace.id_generator import RandomIdGenerator

_id_generator = RandomIdGenerator()

_TRACE_ID_RE = re.compile(r"[0-9a-f]{32}")
_SPAN_ID_RE = re.compile(r"[0-9a-f]{16}")

INVALID_TRACE_ID = "0" * 32
INVALID_SPAN_ID = "0" * 16


def format_trace_id(trace_id: int) -> str:
    """
    Format a 128-bit trace id as a hex string.

    Args:
        trace_id: trace id as int

    Returns:
        32-character lowercase hex string
    """
    return format(trace_id, "032x")


def format_span_id(span_id: int) -> str:
    """
    Format a 64-bit span id as a hex string.

    Args:
        span_id: span id as int

    Returns:
        16-character lowercase hex string
    """
    return format(span_id, "016x")


def parse_trace_id(hex_string: str) -> int:
    """
    Parse a hex trace id into an int.

    Args:
        hex_string: 32-character hex string

    Returns:
        trace id as int (0 for an empty string)
    """
    if not hex_string:
        return 0
    return int(hex_string, 16)


def parse_span_id(hex_string: str) -> int:
    """
    Parse a hex span id into an int.

    Args:
        hex_string: 16-character hex string

    Returns:
        span id as int (0 for an empty string)
    """
    if not hex_string:
        return 0
    return int(hex_string, 16)


def is_valid_trace_id(value: str) -> bool:
    return bool(value) and bool(_TRACE_ID_RE.fullmatch(value)) and value != INVALID_TRACE_ID


def is_valid_span_id(value: str) -> bool:
    return bool(value) and bool(_SPAN_ID_RE.fullmatch(value)) and value != INVALID_SPAN_ID


def generate_trace_id() -> str:
    """Return a fresh random trace id (32 hex chars)."""
    return format_trace_id(_id_generator.generate_trace_id())


def generate_span_id() -> str:
    """Return a fresh random span id (16 hex chars)."""
    return format_span_id(_id_generator.generate_span_id())


def time_ns() -> int:
    return time.time_ns()
