from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from context_cache.models import Message, Sender, StorageIndex
from context_cache.storage import InMemoryPersistence
from exceptions import BackendUnavailable, CapacityExceeded

DAY_MS = 24 * 60 * 60 * 1000
NOW_MS = 1_760_000_000_000


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now_ms: int = NOW_MS) -> None:
        self.now_ms = now_ms

    def now(self) -> int:
        return self.now_ms

    def advance(self, ms: int) -> None:
        self.now_ms += ms


class QuotaForcedPersistence(InMemoryPersistence):
    """In-memory backend whose reported usage can be pinned."""

    def __init__(self, capacity_bytes: int = 1_000_000) -> None:
        super().__init__(capacity_bytes)
        self.forced_fraction: Optional[float] = None

    def force_usage(self, fraction: Optional[float]) -> None:
        self.forced_fraction = fraction

    async def bytes_in_use(self) -> int:
        if self.forced_fraction is not None:
            return int(self.capacity * self.forced_fraction)
        return await super().bytes_in_use()


class FlakyPersistence(InMemoryPersistence):
    """In-memory backend that fails scripted writes.

    ``write_failures`` apply to record writes, ``meta_write_failures`` to
    index writes.
    """

    def __init__(self, capacity_bytes: int = 1_000_000, *, record_prefix: str = "chat-history-") -> None:
        super().__init__(capacity_bytes)
        self.record_prefix = record_prefix
        self.write_failures: List[Exception] = []
        self.meta_write_failures: List[Exception] = []
        self.remove_failures: List[Exception] = []
        self.record_writes = 0

    def _is_record_write(self, items: Dict[str, Any]) -> bool:
        return any(
            k.startswith(self.record_prefix) and not k.endswith("meta") for k in items
        )

    async def set(self, items: Dict[str, Any]) -> None:
        if self._is_record_write(items):
            self.record_writes += 1
            if self.write_failures:
                raise self.write_failures.pop(0)
        elif self.meta_write_failures:
            raise self.meta_write_failures.pop(0)
        await super().set(items)

    async def remove(self, keys: Iterable[str]) -> None:
        if self.remove_failures:
            raise self.remove_failures.pop(0)
        await super().remove(keys)


class SlowPersistence(InMemoryPersistence):
    """In-memory backend whose reads stall."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        await asyncio.sleep(self.delay)
        return await super().get(keys)


class UnavailablePersistence(InMemoryPersistence):
    """Backend that refuses every call."""

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        raise BackendUnavailable("permission denied")

    async def set(self, items: Dict[str, Any]) -> None:
        raise BackendUnavailable("permission denied")

    async def remove(self, keys: Iterable[str]) -> None:
        raise BackendUnavailable("permission denied")


def capacity_error() -> CapacityExceeded:
    return CapacityExceeded("QUOTA_BYTES quota exceeded")


def make_message(
    i: int,
    *,
    sender: Sender | str | None = None,
    content: Optional[str] = None,
    token_count: Optional[int] = None,
) -> Message:
    if sender is None:
        sender = Sender.USER if i % 2 == 0 else Sender.ASSISTANT
    return Message(
        id=f"m{i}",
        content=content if content is not None else f"message {i}",
        sender=sender,
        timestamp=datetime(2025, 1, 1, tzinfo=timezone.utc).timestamp() * 1000 + i,
        token_count=token_count,
    )


def make_messages(n: int, **kwargs: Any) -> List[Message]:
    return [make_message(i, **kwargs) for i in range(n)]


def index_with(access: Dict[str, int]) -> StorageIndex:
    index = StorageIndex()
    for key, ts in access.items():
        index.track(key, ts)
    return index
