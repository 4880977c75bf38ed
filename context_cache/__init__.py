"""Quota-aware chat history cache and context compaction."""

from .clock import SystemClock
from .eviction import CleanupResult, EvictionPolicy
from .interfaces import PersistencePort, Summarizer, TimeSource
from .models import (
    INVALID_TIMESTAMP,
    ErrorKind,
    HistoryRecord,
    Message,
    SaveResult,
    Sender,
    StorageIndex,
    StorageStats,
    SubjectInfo,
    UsageReport,
    is_invalid_timestamp,
)
from .optimizer import (
    ContextOptimizer,
    OptimizationOptions,
    PreparedContext,
    optimize_context,
    prepare_optimized_context,
)
from .quota import CleanupLevel, QuotaManager
from .store import ChatHistoryStore, describe_error
from .summarizer import KeywordSummarizer
from .tokens import estimate_tokens

__all__ = [
    "ChatHistoryStore",
    "CleanupLevel",
    "CleanupResult",
    "ContextOptimizer",
    "ErrorKind",
    "EvictionPolicy",
    "HistoryRecord",
    "INVALID_TIMESTAMP",
    "KeywordSummarizer",
    "Message",
    "OptimizationOptions",
    "PersistencePort",
    "PreparedContext",
    "QuotaManager",
    "SaveResult",
    "Sender",
    "StorageIndex",
    "StorageStats",
    "SubjectInfo",
    "Summarizer",
    "SystemClock",
    "TimeSource",
    "UsageReport",
    "describe_error",
    "estimate_tokens",
    "is_invalid_timestamp",
    "optimize_context",
    "prepare_optimized_context",
]
