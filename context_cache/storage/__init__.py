"""PersistencePort bindings."""

from .disk import JsonFilePersistence
from .memory import DEFAULT_CAPACITY_BYTES, InMemoryPersistence
from .relay import RelayedPersistence, RelayHandler, is_quota_error

__all__ = [
    "DEFAULT_CAPACITY_BYTES",
    "InMemoryPersistence",
    "JsonFilePersistence",
    "RelayedPersistence",
    "RelayHandler",
    "is_quota_error",
]
