from __future__ import annotations

import asyncio
import json
from typing import Any, Dict, Iterable, List

import structlog

from exceptions import CapacityExceeded

logger = structlog.get_logger(__name__)

DEFAULT_CAPACITY_BYTES = 100 * 1024 * 1024


class InMemoryPersistence:
    """Dict-backed persistence with JSON size accounting and a hard capacity."""

    def __init__(self, capacity_bytes: int = DEFAULT_CAPACITY_BYTES) -> None:
        self.capacity = capacity_bytes
        self._data: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    @staticmethod
    def _entry_size(key: str, encoded: str) -> int:
        return len(key.encode("utf-8")) + len(encoded.encode("utf-8"))

    def _used(self) -> int:
        return sum(self._entry_size(k, v) for k, v in self._data.items())

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        async with self._lock:
            return {k: json.loads(self._data[k]) for k in keys if k in self._data}

    async def set(self, items: Dict[str, Any]) -> None:
        encoded = {k: json.dumps(v) for k, v in items.items()}
        async with self._lock:
            projected = self._used()
            for key, value in encoded.items():
                if key in self._data:
                    projected -= self._entry_size(key, self._data[key])
                projected += self._entry_size(key, value)
            if projected > self.capacity:
                logger.warning(
                    "memory_backend_full", projected=projected, capacity=self.capacity
                )
                raise CapacityExceeded(
                    f"QUOTA_BYTES quota exceeded ({projected} > {self.capacity})"
                )
            self._data.update(encoded)

    async def remove(self, keys: Iterable[str]) -> None:
        async with self._lock:
            for key in keys:
                self._data.pop(key, None)

    async def bytes_in_use(self) -> int:
        async with self._lock:
            return self._used()

    async def capacity_bytes(self) -> int:
        return self.capacity

    async def keys(self) -> List[str]:
        async with self._lock:
            return list(self._data)
