"""Hard memory guard: refuse new spans when the process is near its memory limit."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import psutil

from spanline.errors import ValidationError

logger = logging.getLogger(__name__)


def process_rss_bytes() -> int:
    """Resident set size of the current process, in bytes."""
    return psutil.Process().memory_info().rss


class MemoryGuard:
    """
    Last line of defense against memory exhaustion.

    Probing process memory on every span start would be too expensive, so
    the last reading is cached for ``check_interval`` seconds.
    """

    def __init__(
        self,
        limit_bytes: int,
        check_interval: float = 1.0,
        usage_probe: Optional[Callable[[], int]] = None,
    ) -> None:
        """
        Args:
            limit_bytes: Memory usage above which new spans are refused
            check_interval: Seconds a memory reading stays valid
            usage_probe: Callable returning current usage in bytes
                (defaults to the process RSS via psutil)
        """
        if limit_bytes <= 0:
            raise ValidationError("limit_bytes must be positive")
        self.limit_bytes = limit_bytes
        self.check_interval = check_interval
        self._probe = usage_probe or process_rss_bytes
        self._lock = threading.Lock()
        self._last_check: Optional[float] = None
        self._last_usage = 0
        self._tripped = False

    @classmethod
    def from_mib(cls, limit_mib: int, check_interval: float = 1.0) -> "MemoryGuard":
        return cls(limit_bytes=limit_mib * 1024 * 1024, check_interval=check_interval)

    def usage(self) -> int:
        """Current (possibly cached) memory usage in bytes."""
        now = time.monotonic()
        with self._lock:
            if self._last_check is not None and now - self._last_check < self.check_interval:
                return self._last_usage
            self._last_check = now
        try:
            usage = int(self._probe())
        except Exception as e:
            # Without a reading we cannot justify refusing spans.
            logger.debug(f"Memory probe failed: {e}")
            usage = 0
        with self._lock:
            self._last_usage = usage
        return usage

    def exceeded(self) -> bool:
        over = self.usage() > self.limit_bytes
        if over != self._tripped:
            self._tripped = over
            if over:
                logger.warning(
                    f"Memory usage above {self.limit_bytes} bytes - refusing new spans until it drops"
                )
            else:
                logger.info("Memory usage back under limit - accepting new spans")
        return over
