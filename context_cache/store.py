"""Quota-aware persistent store for per-conversation chat histories."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import structlog
from pydantic import ValidationError

from config.settings import CacheEngineSettings
from context_cache.clock import SystemClock
from context_cache.eviction import CleanupResult, EvictionPolicy
from context_cache.interfaces import PersistencePort, TimeSource
from context_cache.models import (
    ErrorKind,
    HistoryRecord,
    Message,
    SaveResult,
    StorageIndex,
    StorageStats,
    SubjectInfo,
    utc_from_epoch_ms,
)
from context_cache.quota import CleanupLevel, QuotaManager
from exceptions import BackendUnavailable, CapacityExceeded, StorageError, StorageTimeout
from monitoring.metrics import StorageMetricsRecorder

logger = structlog.get_logger(__name__)

_ERROR_MESSAGES = {
    ErrorKind.STORAGE_FULL: (
        "Storage is full and could not be cleaned up automatically. "
        "Please delete old chat histories manually."
    ),
    ErrorKind.CAPACITY_EXCEEDED: (
        "Could not save the chat history even after cleaning up storage. "
        "The data may be too large."
    ),
    ErrorKind.BACKEND_UNAVAILABLE: "Storage is unavailable, nothing was changed. Please retry later.",
    ErrorKind.TIMEOUT: "Timed out while saving the chat history. Please retry later.",
    ErrorKind.UNKNOWN: "Unknown error while saving the chat history.",
}


def describe_error(kind: ErrorKind) -> str:
    """Return the user-facing message for ``kind``."""
    return _ERROR_MESSAGES[kind]


def classify_error(exc: BaseException) -> ErrorKind:
    if isinstance(exc, CapacityExceeded):
        return ErrorKind.CAPACITY_EXCEEDED
    if isinstance(exc, (StorageTimeout, asyncio.TimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, BackendUnavailable):
        return ErrorKind.BACKEND_UNAVAILABLE
    return ErrorKind.UNKNOWN


class ChatHistoryStore:
    """Persist chat histories per key under a best-effort capacity policy.

    Every save replaces the whole record for its key. Two concurrent saves
    for the same key are not serialized: the last write to complete wins.
    The index of tracked keys lives in the backend next to the records and
    is only updated after the matching record write or removal succeeded.
    """

    def __init__(
        self,
        port: PersistencePort,
        clock: Optional[TimeSource] = None,
        *,
        settings: Optional[CacheEngineSettings] = None,
        quota: Optional[QuotaManager] = None,
        eviction: Optional[EvictionPolicy] = None,
        metrics: Optional[StorageMetricsRecorder] = None,
        source_url: str = "",
    ) -> None:
        self.port = port
        self.clock = clock or SystemClock()
        self.settings = settings or CacheEngineSettings()
        self.quota = quota or QuotaManager(port, self.settings)
        self.eviction = eviction or EvictionPolicy(self.settings)
        self.metrics = metrics
        self.source_url = source_url
        self.operation_timeout = self.settings.operation_timeout

    def storage_key(self, key: str) -> str:
        return f"{self.settings.storage_key_prefix}{key}"

    # Index helpers

    async def _read_index(self) -> StorageIndex:
        data = await self.port.get([self.settings.meta_key])
        return StorageIndex.from_dict(data.get(self.settings.meta_key))

    async def _write_index(self, index: StorageIndex) -> None:
        await self.port.set({self.settings.meta_key: index.to_dict()})

    async def _track(self, key: str) -> None:
        index = await self._read_index()
        index.track(key, self.clock.now())
        await self._write_index(index)

    async def index(self) -> StorageIndex:
        """Return a snapshot of the current index."""
        return await self._read_index()

    # Save

    async def save(
        self,
        key: str,
        messages: Sequence[Message],
        subject_info: SubjectInfo,
        owner_info: Optional[Dict[str, Any]] = None,
        *,
        source_url: Optional[str] = None,
    ) -> SaveResult:
        """Persist ``messages`` as the full history of ``key``. Never raises."""
        try:
            result = await asyncio.wait_for(
                self._save(key, messages, subject_info, owner_info or {}, source_url),
                self.operation_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("save_timeout", key=key, timeout=self.operation_timeout)
            result = SaveResult(
                success=False,
                error=describe_error(ErrorKind.TIMEOUT),
                error_kind=ErrorKind.TIMEOUT,
            )
        except Exception as e:
            logger.error("save_failed", key=key, error=str(e))
            result = self._failure(e, cleaned=False, usage=None)

        if self.metrics is not None:
            self.metrics.record_save(
                key,
                success=result.success,
                cleaned=result.cleaned,
                usage=result.usage,
                message_count=len(messages),
                error_kind=result.error_kind.value if result.error_kind else None,
            )
        return result

    def _failure(self, exc: BaseException, *, cleaned: bool, usage: Optional[float]) -> SaveResult:
        kind = classify_error(exc)
        error = describe_error(kind)
        if kind in (ErrorKind.BACKEND_UNAVAILABLE, ErrorKind.UNKNOWN) and str(exc):
            error = f"{error} ({exc})"
        return SaveResult(success=False, error=error, error_kind=kind, cleaned=cleaned, usage=usage)

    def _build_record(
        self,
        key: str,
        messages: Sequence[Message],
        subject_info: SubjectInfo,
        owner_info: Dict[str, Any],
        source_url: Optional[str],
    ) -> HistoryRecord:
        cap = self.settings.max_messages_per_key
        return HistoryRecord(
            key=key,
            source_url=source_url if source_url is not None else self.source_url,
            messages=list(messages)[-cap:],
            last_updated=utc_from_epoch_ms(self.clock.now()),
            owner_info=owner_info,
            subject_info=subject_info.capped(
                self.settings.max_title_length, self.settings.max_assignee_length
            ),
        )

    async def _save(
        self,
        key: str,
        messages: Sequence[Message],
        subject_info: SubjectInfo,
        owner_info: Dict[str, Any],
        source_url: Optional[str],
    ) -> SaveResult:
        usage = await self.quota.check_usage()
        level = self.quota.classify(usage.fraction)
        cleaned = False

        if level is CleanupLevel.EMERGENCY:
            logger.warning("storage_critical", key=key, usage=round(usage.fraction, 4))
            cleanup = await self.emergency_cleanup()
            if cleanup.removed_count == 0:
                return SaveResult(
                    success=False,
                    error=describe_error(ErrorKind.STORAGE_FULL),
                    error_kind=ErrorKind.STORAGE_FULL,
                    usage=usage.fraction,
                )
            cleaned = True
        elif level is CleanupLevel.SMART:
            await self.smart_cleanup()

        record = self._build_record(key, messages, subject_info, owner_info, source_url)
        storage_key = self.storage_key(key)
        payload = {storage_key: record.to_storage()}

        try:
            await self.port.set(payload)
        except CapacityExceeded as e:
            logger.warning("quota_exceeded_on_write", key=key, error=str(e))
            cleanup = await self.emergency_cleanup()
            if cleanup.removed_count == 0:
                return SaveResult(
                    success=False,
                    error=describe_error(ErrorKind.STORAGE_FULL),
                    error_kind=ErrorKind.STORAGE_FULL,
                    cleaned=cleaned,
                    usage=usage.fraction,
                )
            cleaned = True
            try:
                await self.port.set(payload)
            except StorageError as retry_error:
                logger.error("save_retry_failed", key=key, error=str(retry_error))
                return self._failure(retry_error, cleaned=True, usage=usage.fraction)
        except StorageError as e:
            logger.error("save_write_failed", key=key, error=str(e))
            return self._failure(e, cleaned=cleaned, usage=usage.fraction)

        try:
            await self._track(key)
        except Exception as e:
            logger.error("index_update_failed", key=key, error=str(e))
            await self._discard_record(storage_key)
            return self._failure(e, cleaned=cleaned, usage=usage.fraction)

        logger.debug("history_saved", key=key, messages=len(record.messages), cleaned=cleaned)
        return SaveResult(success=True, cleaned=cleaned, usage=usage.fraction)

    async def _discard_record(self, storage_key: str) -> None:
        try:
            await self.port.remove([storage_key])
        except StorageError as e:
            logger.error("record_rollback_failed", storage_key=storage_key, error=str(e))

    # Cleanup

    async def smart_cleanup(self) -> CleanupResult:
        """Opportunistic cleanup; failures are logged and swallowed."""
        try:
            index = await self._read_index()
            result = await self.eviction.smart_cleanup(index, self.clock.now(), self.clear)
        except StorageError as e:
            logger.warning("smart_cleanup_failed", error=str(e))
            return CleanupResult()
        if result.requested:
            await self._mark_cleanup()
        self._record_cleanup(CleanupLevel.SMART, result)
        return result

    async def emergency_cleanup(self) -> CleanupResult:
        try:
            index = await self._read_index()
        except StorageError as e:
            logger.error("emergency_cleanup_failed", error=str(e))
            return CleanupResult()
        result = await self.eviction.emergency_cleanup(index, self.clear)
        if result.removed:
            await self._mark_cleanup()
        self._record_cleanup(CleanupLevel.EMERGENCY, result)
        return result

    async def _mark_cleanup(self) -> None:
        try:
            index = await self._read_index()
            index.last_cleanup_at = self.clock.now()
            await self._write_index(index)
        except StorageError as e:
            logger.debug("cleanup_mark_failed", error=str(e))

    def _record_cleanup(self, level: CleanupLevel, result: CleanupResult) -> None:
        if self.metrics is not None:
            self.metrics.record_cleanup(level.value, len(result.requested), result.removed_count)

    # Load

    async def load(self, key: str) -> List[Message]:
        """Return the stored messages for ``key``, or ``[]``. Never raises."""
        record = await self.load_record(key)
        return list(record.messages) if record else []

    async def load_record(self, key: str) -> Optional[HistoryRecord]:
        """Return the full stored record for ``key``, or ``None``. Never raises."""
        try:
            return await asyncio.wait_for(self._load_record(key), self.operation_timeout)
        except asyncio.TimeoutError:
            logger.warning("load_timeout", key=key, timeout=self.operation_timeout)
        except Exception as e:
            logger.error("load_failed", key=key, error=str(e))
        return None

    async def _load_record(self, key: str) -> Optional[HistoryRecord]:
        storage_key = self.storage_key(key)
        data = await self.port.get([storage_key])
        raw = data.get(storage_key)
        if not raw:
            return None
        try:
            record = HistoryRecord.from_storage(raw)
        except ValidationError as e:
            logger.error("corrupt_history_record", key=key, error=str(e))
            return None
        try:
            await self._track(key)
        except StorageError as e:
            logger.warning("access_time_update_failed", key=key, error=str(e))
        return record

    # Clear

    async def clear(self, key: str) -> bool:
        """Remove the record and index entry for ``key``.

        Returns False on backend failure or when nothing was stored under
        ``key``. Never raises.
        """
        try:
            return await asyncio.wait_for(self._clear(key), self.operation_timeout)
        except asyncio.TimeoutError:
            logger.warning("clear_timeout", key=key, timeout=self.operation_timeout)
        except Exception as e:
            logger.error("clear_failed", key=key, error=str(e))
        return False

    async def _clear(self, key: str) -> bool:
        storage_key = self.storage_key(key)
        index = await self._read_index()
        if key not in index:
            existing = await self.port.get([storage_key])
            if storage_key not in existing:
                return False
            await self.port.remove([storage_key])
            return True
        await self.port.remove([storage_key])
        index = await self._read_index()
        index.discard(key)
        await self._write_index(index)
        return True

    async def clear_all(self) -> bool:
        """Clear every tracked key, stray records and the index itself."""
        try:
            return await asyncio.wait_for(self._clear_all(), self.operation_timeout)
        except asyncio.TimeoutError:
            logger.warning("clear_all_timeout", timeout=self.operation_timeout)
        except Exception as e:
            logger.error("clear_all_failed", error=str(e))
        return False

    async def _clear_all(self) -> bool:
        index = await self._read_index()
        ok = True
        for key in list(index.keys):
            ok = await self._clear(key) and ok

        list_keys = getattr(self.port, "keys", None)
        if callable(list_keys):
            prefix = self.settings.storage_key_prefix
            stray = [
                k for k in await list_keys()
                if k.startswith(prefix) and k != self.settings.meta_key
            ]
            if stray:
                logger.info("removing_stray_records", count=len(stray))
                await self.port.remove(stray)

        await self.port.remove([self.settings.meta_key])
        return ok

    # Stats

    async def stats(self) -> StorageStats:
        try:
            return await asyncio.wait_for(self._stats(), self.operation_timeout)
        except asyncio.TimeoutError:
            logger.warning("stats_timeout", timeout=self.operation_timeout)
        except Exception as e:
            logger.error("stats_failed", error=str(e))
        return StorageStats(
            usage=0.0,
            bytes_used=0,
            max_bytes=self.settings.default_capacity_bytes,
            key_count=0,
        )

    async def _stats(self) -> StorageStats:
        usage = await self.quota.check_usage()
        index = await self._read_index()
        return StorageStats(
            usage=usage.fraction,
            bytes_used=usage.bytes_used,
            max_bytes=usage.max_bytes,
            key_count=len(index.keys),
        )
