from __future__ import annotations

import time

from context_cache.interfaces import TimeSource


class SystemClock(TimeSource):
    """Wall clock in epoch milliseconds."""

    def now(self) -> int:
        return int(time.time() * 1000)
