from __future__ import annotations

from typing import Any, Dict, Iterable, List, Protocol

from context_cache.models import Message, SubjectInfo


class PersistencePort(Protocol):
    """Interface for the key-value backend holding chat histories."""

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        """Return stored values for the keys that exist."""
        ...

    async def set(self, items: Dict[str, Any]) -> None:
        """Store values. Raises ``CapacityExceeded`` when out of space."""
        ...

    async def remove(self, keys: Iterable[str]) -> None:
        """Remove keys; unknown keys are ignored."""
        ...

    async def bytes_in_use(self) -> int:
        """Return bytes currently used by the backend."""
        ...

    async def capacity_bytes(self) -> int:
        """Return total capacity in bytes."""
        ...


class TimeSource(Protocol):
    """Interface for the clock used to stamp access times."""

    def now(self) -> int:
        """Return the current time in epoch milliseconds."""
        ...


class Summarizer(Protocol):
    """Interface for condensing an older segment of a conversation."""

    def summarize(self, messages: List[Message], subject: SubjectInfo) -> str:
        """Return a short natural-language summary of ``messages``."""
        ...
