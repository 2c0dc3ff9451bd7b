"""Span processor that logs spans when they end."""

from __future__ import annotations

import logging
from typing import Optional

from spanline.processors.base import SpanProcessor


class LoggingSpanProcessor(SpanProcessor):
    """Logs span summary on end using the standard logging module."""

    def __init__(self, logger: Optional[logging.Logger] = None, level: int = logging.INFO) -> None:
        self.logger = logger or logging.getLogger("spanline.traces")
        self.level = level

    def on_end(self, span) -> None:
        if not self.logger.isEnabledFor(self.level):
            return
        attrs = dict(span.attributes) if span.attributes else {}
        msg = (
            f"[trace] name={span.name} trace_id={span.context.trace_id} "
            f"span_id={span.context.span_id} parent_id={span.parent_span_id} "
            f"status={span.status.name} duration_ns={span.duration_ns} attrs={attrs}"
        )
        self.logger.log(self.level, msg)
