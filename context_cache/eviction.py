"""Victim selection for the chat history store.

The policy does not look at per-record byte sizes. Emergency cleanup drops a
fixed fraction of the least recently accessed keys, which always frees
something when anything is tracked.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

import structlog

from config.settings import CacheEngineSettings
from context_cache.models import StorageIndex
from monitoring.telemetry import audit_log

logger = structlog.get_logger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

Remover = Callable[[str], Awaitable[bool]]


@dataclass
class CleanupResult:
    requested: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)

    @property
    def removed_count(self) -> int:
        return len(self.removed)

    @property
    def failed(self) -> List[str]:
        return [k for k in self.requested if k not in self.removed]


def _by_access(index: StorageIndex) -> List[str]:
    return sorted(index.keys, key=index.access_time)


class EvictionPolicy:
    """LRU eviction with an additional age threshold."""

    def __init__(self, settings: Optional[CacheEngineSettings] = None) -> None:
        settings = settings or CacheEngineSettings()
        self.max_keys = settings.max_keys
        self.stale_after_ms = settings.stale_after_days * DAY_MS
        self.emergency_fraction = settings.emergency_fraction

    def select_stale(self, index: StorageIndex, now_ms: int) -> List[str]:
        threshold = now_ms - self.stale_after_ms
        return [k for k in index.keys if index.access_time(k) < threshold]

    def select_excess(self, index: StorageIndex) -> List[str]:
        excess = len(index.keys) - self.max_keys
        if excess <= 0:
            return []
        return _by_access(index)[:excess]

    def select_emergency(self, index: StorageIndex) -> List[str]:
        count = math.floor(len(index.keys) * self.emergency_fraction)
        return _by_access(index)[:count]

    async def _remove_all(self, keys: List[str], remove: Remover, level: str) -> CleanupResult:
        result = CleanupResult(requested=list(keys))
        for key in keys:
            # Keys are removed one by one; a failure leaves the rest in place.
            if await remove(key):
                result.removed.append(key)
                audit_log("key_evicted", key=key, level=level)
        if result.failed:
            logger.warning("cleanup_incomplete", level=level, failed=result.failed)
        return result

    async def smart_cleanup(self, index: StorageIndex, now_ms: int, remove: Remover) -> CleanupResult:
        """Remove stale keys and keys beyond the key cap."""
        victims = list(dict.fromkeys(self.select_stale(index, now_ms) + self.select_excess(index)))
        logger.info("smart_cleanup", tracked=len(index.keys), victims=len(victims))
        return await self._remove_all(victims, remove, "smart")

    async def emergency_cleanup(self, index: StorageIndex, remove: Remover) -> CleanupResult:
        """Remove the least recently accessed half of the tracked keys."""
        victims = self.select_emergency(index)
        logger.warning("emergency_cleanup", tracked=len(index.keys), victims=len(victims))
        if not victims:
            return CleanupResult()
        return await self._remove_all(victims, remove, "emergency")
