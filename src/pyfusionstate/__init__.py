"""pyfusionstate - Framework-agnostic reactive state store with debounced persistence."""

from pyfusionstate._version import __version__
from pyfusionstate.config import EngineConfig, PersistenceConfig
from pyfusionstate.exceptions import (
    AlreadyInitializingError,
    FusionStateConfigError,
    FusionStateError,
    MissingKeyNoInitialError,
    PersistenceError,
    PersistenceReadError,
    PersistenceWriteError,
    SubscriberCallbackError,
)
from pyfusionstate.persistence.coordinator import PersistenceCoordinator
from pyfusionstate.state.events import ChangeBus
from pyfusionstate.state.keys import StateKey, is_persistent_key, namespaced_key, persistent_key
from pyfusionstate.state.log import ChangeLog, ChangeRecord
from pyfusionstate.state.policy import EqualityPolicy, deep_equal, reference_equal, shallow_equal
from pyfusionstate.state.store import MISSING, EngineDebugInfo, StateEngine
from pyfusionstate.storage import (
    FileStorageAdapter,
    HttpStorageAdapter,
    MemoryStorageAdapter,
    NoopStorageAdapter,
    SafeStorageAdapter,
    StorageAdapter,
    SyncStorageAdapter,
    detect_best_adapter,
)

__all__ = [
    "__version__",
    "MISSING",
    "AlreadyInitializingError",
    "ChangeBus",
    "ChangeLog",
    "ChangeRecord",
    "EngineConfig",
    "EngineDebugInfo",
    "EqualityPolicy",
    "FileStorageAdapter",
    "FusionStateConfigError",
    "FusionStateError",
    "HttpStorageAdapter",
    "MemoryStorageAdapter",
    "MissingKeyNoInitialError",
    "NoopStorageAdapter",
    "PersistenceConfig",
    "PersistenceCoordinator",
    "PersistenceError",
    "PersistenceReadError",
    "PersistenceWriteError",
    "SafeStorageAdapter",
    "StateEngine",
    "StateKey",
    "StorageAdapter",
    "SubscriberCallbackError",
    "SyncStorageAdapter",
    "deep_equal",
    "detect_best_adapter",
    "is_persistent_key",
    "namespaced_key",
    "persistent_key",
    "reference_equal",
    "shallow_equal",
]
