"""JSON file persistence with async I/O."""

from __future__ import annotations

import asyncio
import errno
import hashlib
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union

import aiofiles
import structlog

from exceptions import BackendUnavailable, CapacityExceeded

logger = structlog.get_logger(__name__)

_OUT_OF_SPACE = {errno.ENOSPC, getattr(errno, "EDQUOT", errno.ENOSPC)}


class JsonFilePersistence:
    """One JSON document per key, sharded by key hash, with a size index."""

    def __init__(
        self,
        storage_dir: Union[str, Path],
        *,
        capacity_bytes: int = 100 * 1024 * 1024,
    ) -> None:
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.capacity = capacity_bytes
        self._index_file = self.storage_dir / ".storage_index.json"
        self._index: Dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._load_index_sync()

    def _load_index_sync(self) -> None:
        """Load the size index synchronously on init."""
        if self._index_file.exists():
            try:
                with open(self._index_file, "r") as f:
                    self._index = {k: int(v) for k, v in json.load(f).items()}
            except (OSError, ValueError, AttributeError) as e:
                logger.warning("Failed to load storage index", error=str(e))
                self._index = {}

    async def _save_index(self) -> None:
        async with aiofiles.open(self._index_file, "w") as f:
            await f.write(json.dumps(self._index, indent=2))

    def _path_for(self, key: str) -> Path:
        # First 2 chars of the hash shard the directory
        key_hash = hashlib.sha256(key.encode()).hexdigest()
        subdir = self.storage_dir / key_hash[:2]
        subdir.mkdir(exist_ok=True)
        return subdir / f"{key_hash}.json"

    @staticmethod
    def _wrap_os_error(exc: OSError) -> Exception:
        if exc.errno in _OUT_OF_SPACE:
            return CapacityExceeded(f"Disk quota exceeded: {exc}")
        return BackendUnavailable(f"Storage I/O failed: {exc}")

    async def get(self, keys: Iterable[str]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        async with self._lock:
            for key in keys:
                if key not in self._index:
                    continue
                path = self._path_for(key)
                if not path.exists():
                    # Index out of sync
                    del self._index[key]
                    await self._save_index()
                    continue
                try:
                    async with aiofiles.open(path, "r") as f:
                        doc = json.loads(await f.read())
                except OSError as e:
                    raise self._wrap_os_error(e) from e
                except ValueError as e:
                    logger.error("Corrupt storage entry", key=key, error=str(e))
                    continue
                result[key] = doc.get("value")
        return result

    async def set(self, items: Dict[str, Any]) -> None:
        encoded = {
            k: json.dumps({"key": k, "value": v}).encode("utf-8") for k, v in items.items()
        }
        async with self._lock:
            projected = sum(self._index.values())
            for key, data in encoded.items():
                projected += len(data) - self._index.get(key, 0)
            if projected > self.capacity:
                raise CapacityExceeded(
                    f"Storage quota exceeded ({projected} > {self.capacity} bytes)"
                )
            try:
                for key, data in encoded.items():
                    async with aiofiles.open(self._path_for(key), "wb") as f:
                        await f.write(data)
                    self._index[key] = len(data)
                await self._save_index()
            except OSError as e:
                logger.error("Failed to write storage entry", error=str(e))
                raise self._wrap_os_error(e) from e

    async def remove(self, keys: Iterable[str]) -> None:
        async with self._lock:
            changed = False
            for key in keys:
                if key not in self._index:
                    continue
                path = self._path_for(key)
                try:
                    if path.exists():
                        path.unlink()
                except OSError as e:
                    raise self._wrap_os_error(e) from e
                del self._index[key]
                changed = True
            if changed:
                await self._save_index()

    async def bytes_in_use(self) -> int:
        async with self._lock:
            return sum(self._index.values())

    async def capacity_bytes(self) -> int:
        return self.capacity

    async def keys(self) -> List[str]:
        async with self._lock:
            return list(self._index)
