"""Storage adapters and adapter selection."""

from pyfusionstate.storage.adapters import (
    FileStorageAdapter,
    HttpStorageAdapter,
    MemoryStorageAdapter,
    NoopStorageAdapter,
    SafeStorageAdapter,
    StorageAdapter,
    SyncStorageAdapter,
    supports_sync_read,
)
from pyfusionstate.storage.detect import detect_best_adapter

__all__ = [
    "FileStorageAdapter",
    "HttpStorageAdapter",
    "MemoryStorageAdapter",
    "NoopStorageAdapter",
    "SafeStorageAdapter",
    "StorageAdapter",
    "SyncStorageAdapter",
    "detect_best_adapter",
    "supports_sync_read",
]
