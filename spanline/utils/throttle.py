"""Rate-limited logging so a failing backend cannot flood the host's logs."""

from __future__ import annotations

import logging
import threading
import time
from typing import Dict, Tuple


class ThrottledLogger:
    """
    Emit at most one record per key every ``interval`` seconds.

    Suppressed records are counted and the count is appended to the next
    record that gets through, so nothing disappears silently.
    """

    def __init__(self, logger: logging.Logger, interval: float = 10.0) -> None:
        self.logger = logger
        self.interval = interval
        self._lock = threading.Lock()
        # key -> (last emit time, suppressed since)
        self._state: Dict[str, Tuple[float, int]] = {}

    def log(self, level: int, key: str, msg: str) -> bool:
        """Log ``msg`` under ``key`` unless throttled. Returns True if emitted."""
        now = time.monotonic()
        with self._lock:
            last, suppressed = self._state.get(key, (None, 0))
            if last is not None and now - last < self.interval:
                self._state[key] = (last, suppressed + 1)
                return False
            self._state[key] = (now, 0)

        if suppressed:
            msg = f"{msg} ({suppressed} similar messages suppressed)"
        self.logger.log(level, msg)
        return True

    def warning(self, key: str, msg: str) -> bool:
        return self.log(logging.WARNING, key, msg)

    def error(self, key: str, msg: str) -> bool:
        return self.log(logging.ERROR, key, msg)
