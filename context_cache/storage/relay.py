"""Persistence relayed over a message channel.

When the engine runs in a context without direct storage access, every port
call is sent as a request envelope to a peer that owns the real backend.
:class:`RelayHandler` is that peer; :class:`RelayedPersistence` is the client.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

import structlog

from config.settings import CacheEngineSettings
from context_cache.interfaces import PersistencePort
from exceptions import BackendUnavailable, CapacityExceeded, StorageTimeout

logger = structlog.get_logger(__name__)

Transport = Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]

GET = "STORAGE_GET"
SET = "STORAGE_SET"
REMOVE = "STORAGE_REMOVE"
KEYS = "STORAGE_KEYS"

_QUOTA_MARKERS = ("quotaexceedederror", "quota", "storage area is full", "quota_exceeded")


def is_quota_error(text: str) -> bool:
    """Return True if an error description points at a full backend."""
    lowered = (text or "").lower()
    return any(marker in lowered for marker in _QUOTA_MARKERS)


class RelayHandler:
    """Serve relayed requests against a directly accessible port."""

    def __init__(self, port: PersistencePort) -> None:
        self.port = port

    async def handle(self, request: Dict[str, Any]) -> Dict[str, Any]:
        kind = request.get("type")
        payload = request.get("payload") or {}
        response: Dict[str, Any] = {"id": request.get("id"), "type": f"{kind}_RESPONSE"}
        try:
            if kind == GET:
                response["data"] = await self.port.get(payload.get("keys", []))
            elif kind == SET:
                await self.port.set(payload.get("items", {}))
            elif kind == REMOVE:
                await self.port.remove(payload.get("keys", []))
            elif kind == KEYS:
                response["data"] = await self.port.keys()  # type: ignore[attr-defined]
            else:
                raise BackendUnavailable(f"Unknown request type: {kind}")
        except CapacityExceeded as e:
            response.update(success=False, error=str(e), error_type="capacity")
            return response
        except Exception as e:
            logger.error("relay_request_failed", type=kind, error=str(e))
            response.update(success=False, error=str(e) or type(e).__name__)
            return response
        response["success"] = True
        return response


class RelayedPersistence:
    """Port that forwards every call through ``transport``.

    Usage introspection is not available through the channel, so
    :meth:`bytes_in_use` raises ``BackendUnavailable`` and callers fall back
    to their own estimate.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        read_timeout: float = 10.0,
        write_timeout: float = 30.0,
        capacity_bytes: int = 100 * 1024 * 1024,
    ) -> None:
        self.transport = transport
        self.read_timeout = read_timeout
        self.write_timeout = write_timeout
        self.capacity = capacity_bytes

    @classmethod
    def from_settings(
        cls, transport: Transport, settings: Optional[CacheEngineSettings] = None
    ) -> "RelayedPersistence":
        """Build a relay client using the timeouts and capacity from ``settings``."""
        settings = settings or CacheEngineSettings()
        return cls(
            transport,
            read_timeout=settings.relay_read_timeout,
            write_timeout=settings.relay_write_timeout,
            capacity_bytes=settings.default_capacity_bytes,
        )

    async def _request(self, kind: str, payload: Dict[str, Any], timeout: float) -> Any:
        request_id = uuid.uuid4().hex
        request = {"type": kind, "id": request_id, "payload": payload}
        try:
            response = await asyncio.wait_for(self.transport(request), timeout)
        except asyncio.TimeoutError as e:
            logger.warning("relay_timeout", type=kind, timeout=timeout)
            raise StorageTimeout(f"Timed out waiting for {kind} after {timeout}s") from e
        except (ConnectionError, OSError) as e:
            raise BackendUnavailable(f"Relay transport failed: {e}") from e

        if response.get("id") != request_id:
            raise BackendUnavailable(f"Mismatched response for {kind}")
        if not response.get("success"):
            error = response.get("error") or "Unknown error"
            if response.get("error_type") == "capacity" or is_quota_error(error):
                raise CapacityExceeded(error)
            raise BackendUnavailable(error)
        return response.get("data")

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        data = await self._request(GET, {"keys": list(keys)}, self.read_timeout)
        return data or {}

    async def set(self, items: Dict[str, Any]) -> None:
        await self._request(SET, {"items": items}, self.write_timeout)

    async def remove(self, keys: Iterable[str]) -> None:
        await self._request(REMOVE, {"keys": list(keys)}, self.read_timeout)

    async def bytes_in_use(self) -> int:
        raise BackendUnavailable("Usage is not observable through the relay")

    async def capacity_bytes(self) -> int:
        return self.capacity

    async def keys(self) -> List[str]:
        data = await self._request(KEYS, {}, self.read_timeout)
        return list(data or [])
