class StorageError(Exception):
    """Base exception for persistence related errors."""


class CapacityExceeded(StorageError):
    """Raised when the backend rejects a write because it is out of space."""


class BackendUnavailable(StorageError):
    """Raised when the backend cannot be reached or refuses access."""


class StorageTimeout(BackendUnavailable):
    """Raised when a backend call does not complete in time."""


class MalformedTimestamp(ValueError):
    """Raised when a message timestamp cannot be parsed."""
