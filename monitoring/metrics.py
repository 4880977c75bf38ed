from __future__ import annotations

from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SaveMetrics:
    key: str
    success: bool
    cleaned: bool
    usage: Optional[float]
    message_count: int
    error_kind: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass
class CleanupMetrics:
    level: str
    requested: int
    removed: int
    timestamp: datetime = field(default_factory=_utcnow)


class StorageMetricsRecorder:
    """Record and summarize save and cleanup outcomes."""

    def __init__(self) -> None:
        self.saves: List[SaveMetrics] = []
        self.cleanups: List[CleanupMetrics] = []
        self.logger = structlog.get_logger(__name__)

    def record_save(
        self,
        key: str,
        *,
        success: bool,
        cleaned: bool,
        usage: Optional[float],
        message_count: int,
        error_kind: Optional[str] = None,
    ) -> None:
        entry = SaveMetrics(
            key=key,
            success=success,
            cleaned=cleaned,
            usage=usage,
            message_count=message_count,
            error_kind=error_kind,
        )
        self.saves.append(entry)
        self.logger.info("save_metrics", **asdict(entry))

    def record_cleanup(self, level: str, requested: int, removed: int) -> None:
        entry = CleanupMetrics(level=level, requested=requested, removed=removed)
        self.cleanups.append(entry)
        self.logger.info("cleanup_metrics", **asdict(entry))

    def summary(self, last_n: int = 20) -> Dict[str, float | int | str]:
        recent = self.saves[-last_n:]
        if not recent:
            return {}
        failures: Dict[str, int] = {}
        for s in recent:
            if not s.success:
                kind = s.error_kind or "unknown"
                failures[kind] = failures.get(kind, 0) + 1
        return {
            "saves": len(recent),
            "success_rate": sum(1 for s in recent if s.success) / len(recent),
            "cleaned_saves": sum(1 for s in recent if s.cleaned),
            "keys_evicted": sum(c.removed for c in self.cleanups),
            "most_common_failure": max(failures, key=failures.get) if failures else "none",
        }


def summarize_recent_saves(recorder: StorageMetricsRecorder, last_n: int = 20) -> str:
    data = recorder.summary(last_n)
    if not data:
        return "No saves recorded."
    return (
        f"Last {data['saves']} saves - Success rate: {data['success_rate']:.0%}, "
        f"Cleaned: {data['cleaned_saves']}, Keys evicted: {data['keys_evicted']}, "
        f"Most common failure: {data['most_common_failure']}"
    )
