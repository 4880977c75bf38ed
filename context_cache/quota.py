from __future__ import annotations

from enum import Enum
from typing import Optional

import structlog

from config.settings import CacheEngineSettings
from context_cache.interfaces import PersistencePort
from context_cache.models import UsageReport
from exceptions import StorageError

logger = structlog.get_logger(__name__)


class CleanupLevel(str, Enum):
    NONE = "none"
    SMART = "smart"
    EMERGENCY = "emergency"


class QuotaManager:
    """Track backend usage and decide how much cleanup a write needs."""

    def __init__(
        self,
        port: PersistencePort,
        settings: Optional[CacheEngineSettings] = None,
    ) -> None:
        self.port = port
        settings = settings or CacheEngineSettings()
        self.soft_threshold = settings.soft_threshold
        self.hard_threshold = settings.hard_threshold
        self.fallback_usage = settings.fallback_usage
        self.default_capacity = settings.default_capacity_bytes

    async def check_usage(self) -> UsageReport:
        """Return the current usage fraction.

        Backends that cannot report usage yield a conservative estimate
        instead of an error.
        """
        try:
            max_bytes = await self.port.capacity_bytes() or self.default_capacity
        except StorageError:
            max_bytes = self.default_capacity
        try:
            bytes_used = await self.port.bytes_in_use()
        except StorageError as e:
            logger.debug("usage_unavailable", error=str(e), fallback=self.fallback_usage)
            return UsageReport(
                fraction=self.fallback_usage,
                bytes_used=0,
                max_bytes=max_bytes,
                estimated=True,
            )
        return UsageReport(
            fraction=bytes_used / max_bytes,
            bytes_used=bytes_used,
            max_bytes=max_bytes,
        )

    def classify(self, fraction: float) -> CleanupLevel:
        if fraction > self.hard_threshold:
            return CleanupLevel.EMERGENCY
        if fraction > self.soft_threshold:
            return CleanupLevel.SMART
        return CleanupLevel.NONE
