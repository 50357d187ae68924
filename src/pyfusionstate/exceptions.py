"""Custom exception hierarchy for pyfusionstate."""

from __future__ import annotations

from typing import Any


class FusionStateError(Exception):
    """Base exception for all pyfusionstate errors."""


class FusionStateConfigError(FusionStateError):
    """Invalid or missing configuration."""


class AlreadyInitializingError(FusionStateError):
    """A key was initialized again while its first initialization was still running.

    This signals a reentrancy/logic error: two initializers raced on the
    same key within one synchronous turn (typically a subscriber that
    initializes the key whose initialization triggered it).
    """

    def __init__(self, message: str, *, key: str) -> None:
        self.key = key
        super().__init__(message)


class MissingKeyNoInitialError(FusionStateError):
    """A key does not exist and no initial value was supplied."""

    def __init__(self, message: str, *, key: str) -> None:
        self.key = key
        super().__init__(message)


class PersistenceError(FusionStateError):
    """Storage-side failure.

    Persistence errors are never raised out of the engine; they are
    delivered to the ``on_load_error`` / ``on_save_error`` callbacks.
    """

    operation: str = ""

    def __init__(self, message: str, *, storage_key: str = "") -> None:
        self.storage_key = storage_key
        super().__init__(message)


class PersistenceReadError(PersistenceError):
    """Storage read or JSON parse failed during hydration."""

    operation = "read"


class PersistenceWriteError(PersistenceError):
    """Storage write (or value serialization) failed."""

    operation = "write"

    def __init__(self, message: str, *, storage_key: str = "", state_key: str | None = None) -> None:
        self.state_key = state_key
        super().__init__(message, storage_key=storage_key)


class SubscriberCallbackError(FusionStateError):
    """A subscriber callback raised during emit.

    Only ever logged; delivery to the remaining subscribers continues.
    """

    def __init__(self, message: str, *, key: str, callback: Any = None) -> None:
        self.key = key
        self.callback = callback
        super().__init__(message)
