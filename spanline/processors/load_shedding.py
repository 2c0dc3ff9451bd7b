"""Filter identifying low-priority spans to shed first under load."""

from __future__ import annotations

import fnmatch
from typing import Any, Iterable, Mapping, Optional, Tuple

DEFAULT_LOW_PRIORITY_NAMES: Tuple[str, ...] = (
    "*health*",
    "*readyz*",
    "*livez*",
    "ping",
)

# Attributes whose value is matched against the same patterns
_ROUTE_ATTRIBUTES = ("http.route", "http.target", "url.path")


class LoadSheddingFilter:
    """
    Decide whether a span is low priority (health checks, probes, ...).

    Patterns are shell-style globs matched case-insensitively against the
    span name and the HTTP route attributes.
    """

    def __init__(self, patterns: Optional[Iterable[str]] = None) -> None:
        self.patterns = tuple(p.lower() for p in (DEFAULT_LOW_PRIORITY_NAMES if patterns is None else patterns))

    def _matches(self, value: str) -> bool:
        value = value.lower()
        return any(fnmatch.fnmatchcase(value, pattern) for pattern in self.patterns)

    def is_low_priority(self, name: str, attributes: Optional[Mapping[str, Any]] = None) -> bool:
        if not self.patterns:
            return False
        if self._matches(name):
            return True
        for key in _ROUTE_ATTRIBUTES:
            value = (attributes or {}).get(key)
            if isinstance(value, str) and self._matches(value):
                return True
        return False
