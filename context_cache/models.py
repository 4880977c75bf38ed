"""Data model for persisted chat histories and engine results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from exceptions import MalformedTimestamp

logger = structlog.get_logger(__name__)

# Sentinel for timestamps that could not be parsed; UI layers compare against it.
INVALID_TIMESTAMP = datetime(1, 1, 1, tzinfo=timezone.utc)


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ErrorKind(str, Enum):
    """Machine-usable classification of a failed operation."""

    STORAGE_FULL = "storage_full"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


def utc_from_epoch_ms(value: float) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """Parse a ``datetime``, epoch milliseconds or ISO-8601 string.

    Naive datetimes are treated as UTC. Raises ``MalformedTimestamp`` when the
    value cannot be interpreted.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise MalformedTimestamp(f"Unsupported timestamp value: {value!r}")
    if isinstance(value, (int, float)):
        try:
            return utc_from_epoch_ms(value)
        except (OverflowError, OSError, ValueError) as exc:
            raise MalformedTimestamp(f"Epoch value out of range: {value!r}") from exc
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise MalformedTimestamp(f"Invalid ISO timestamp: {value!r}") from exc
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise MalformedTimestamp(f"Unsupported timestamp type: {type(value).__name__}")


def normalize_timestamp(value: Any) -> datetime:
    """Like :func:`parse_timestamp` but falls back to ``INVALID_TIMESTAMP``."""
    try:
        return parse_timestamp(value)
    except MalformedTimestamp as exc:
        logger.warning("malformed_timestamp", value=repr(value), error=str(exc))
        return INVALID_TIMESTAMP


def is_invalid_timestamp(value: datetime) -> bool:
    return value == INVALID_TIMESTAMP


class Message(BaseModel):
    """A single chat turn. Frozen; use :meth:`with_usage` for the backfill."""

    model_config = ConfigDict(frozen=True)

    id: str
    content: str
    sender: Sender
    timestamp: datetime
    response_id: Optional[str] = None
    token_count: Optional[int] = None
    compressed: Optional[bool] = None

    @field_validator("sender", mode="before")
    @classmethod
    def _legacy_sender(cls, v: Any) -> Any:
        if isinstance(v, str) and v.lower() == "ai":
            return Sender.ASSISTANT
        return v

    @field_validator("timestamp", mode="before")
    @classmethod
    def _normalize_timestamp(cls, v: Any) -> datetime:
        return normalize_timestamp(v)

    @field_validator("token_count", mode="before")
    @classmethod
    def _drop_malformed_count(cls, v: Any) -> Optional[int]:
        if isinstance(v, bool):
            return None
        if isinstance(v, int):
            return v if v >= 0 else None
        if isinstance(v, float) and v.is_integer() and v >= 0:
            return int(v)
        return None

    def with_usage(
        self,
        *,
        response_id: Optional[str] = None,
        token_count: Optional[int] = None,
    ) -> "Message":
        """Return a copy carrying the model's response id and exact token count."""
        update: Dict[str, Any] = {}
        if response_id is not None:
            update["response_id"] = response_id
        if token_count is not None:
            update["token_count"] = token_count
        return self.model_copy(update=update)


class SubjectInfo(BaseModel):
    """Snapshot of the item a conversation is about (e.g. a ticket)."""

    model_config = ConfigDict(frozen=True)

    title: str = ""
    status: str = ""
    assignee: Optional[str] = None

    def capped(self, max_title: int = 200, max_assignee: int = 100) -> "SubjectInfo":
        return SubjectInfo(
            title=self.title[:max_title],
            status=self.status,
            assignee=self.assignee[:max_assignee] if self.assignee else self.assignee,
        )


class HistoryRecord(BaseModel):
    """Persisted conversation for one key."""

    model_config = ConfigDict(frozen=True)

    key: str
    source_url: str = ""
    messages: List[Message] = Field(default_factory=list)
    last_updated: datetime
    owner_info: Dict[str, Any] = Field(default_factory=dict)
    subject_info: SubjectInfo = Field(default_factory=SubjectInfo)
    context_summary: Optional[str] = None
    last_summary_index: Optional[int] = None
    total_tokens_used: Optional[int] = None

    @field_validator("last_updated", mode="before")
    @classmethod
    def _normalize_last_updated(cls, v: Any) -> datetime:
        return normalize_timestamp(v)

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    @classmethod
    def from_storage(cls, data: Dict[str, Any]) -> "HistoryRecord":
        return cls.model_validate(data)


@dataclass
class StorageIndex:
    """Process-wide index of stored keys and their last access time."""

    keys: List[str] = field(default_factory=list)
    last_access: Dict[str, int] = field(default_factory=dict)
    last_cleanup_at: Optional[int] = None

    def __contains__(self, key: object) -> bool:
        return key in self.last_access or key in self.keys

    def __len__(self) -> int:
        return len(self.keys)

    def track(self, key: str, now_ms: int) -> None:
        if key not in self.keys:
            self.keys.append(key)
        self.last_access[key] = now_ms

    def discard(self, key: str) -> None:
        if key in self.keys:
            self.keys.remove(key)
        self.last_access.pop(key, None)

    def access_time(self, key: str) -> int:
        return self.last_access.get(key, 0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keys": list(self.keys),
            "last_access": dict(self.last_access),
            "last_cleanup_at": self.last_cleanup_at,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "StorageIndex":
        """Rebuild an index from its stored form.

        Entries that cannot be coerced are dropped with a warning, and a blob
        that is not a mapping yields an empty index.
        """
        if not data:
            return cls()
        if not isinstance(data, dict):
            logger.warning("malformed_storage_index", type=type(data).__name__)
            return cls()

        raw_keys = data.get("keys")
        keys: List[str] = []
        for key in raw_keys if isinstance(raw_keys, list) else []:
            if isinstance(key, str) and key not in keys:
                keys.append(key)

        raw_access = data.get("last_access")
        last_access: Dict[str, int] = {}
        dropped: List[str] = []
        for k, v in (raw_access if isinstance(raw_access, dict) else {}).items():
            if k not in keys:
                continue
            try:
                last_access[k] = int(v)
            except (TypeError, ValueError):
                dropped.append(k)

        try:
            last_cleanup_at = int(data["last_cleanup_at"]) if data.get("last_cleanup_at") is not None else None
        except (TypeError, ValueError):
            dropped.append("last_cleanup_at")
            last_cleanup_at = None

        if dropped:
            logger.warning("malformed_index_entries_dropped", entries=dropped)
        return cls(keys=keys, last_access=last_access, last_cleanup_at=last_cleanup_at)


@dataclass
class UsageReport:
    fraction: float
    bytes_used: int
    max_bytes: int
    estimated: bool = False


@dataclass
class SaveResult:
    """Outcome of :meth:`ChatHistoryStore.save`.

    ``cleaned`` tells whether an emergency cleanup ran before the outcome was
    decided, so a UI can tell "cleaned but still failed" from "failed,
    storage untouched".
    """

    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    cleaned: bool = False
    usage: Optional[float] = None


@dataclass
class StorageStats:
    usage: float
    bytes_used: int
    max_bytes: int
    key_count: int
