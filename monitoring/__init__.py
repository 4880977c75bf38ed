"""Monitoring utilities for the context cache."""

from .metrics import StorageMetricsRecorder, SaveMetrics, CleanupMetrics, summarize_recent_saves
from .telemetry import audit_log, configure_logging

__all__ = [
    "StorageMetricsRecorder",
    "SaveMetrics",
    "CleanupMetrics",
    "summarize_recent_saves",
    "audit_log",
    "configure_logging",
]
