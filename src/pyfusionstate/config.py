"""Engine and persistence configuration for pyfusionstate."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, TypeAlias

from pyfusionstate._constants import ALL_KEYS_SUFFIX, DEFAULT_KEY_PREFIX
from pyfusionstate.exceptions import FusionStateConfigError, PersistenceReadError, PersistenceWriteError
from pyfusionstate.storage.adapters import StorageAdapter

PersistKeys: TypeAlias = bool | Sequence[str] | Callable[[str, Any], bool]
LoadErrorCallback: TypeAlias = Callable[[PersistenceReadError, str], None]
SaveErrorCallback: TypeAlias = Callable[[PersistenceWriteError, dict[str, Any]], None]
CustomSaveCallback: TypeAlias = Callable[[dict[str, Any], StorageAdapter, str], Awaitable[None]]


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_float(env: Mapping[str, str], name: str) -> float | None:
    raw = env.get(name)
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise FusionStateConfigError(f"{name} must be a number, got {raw!r}") from exc


@dataclasses.dataclass(frozen=True)
class EngineConfig:
    """State engine configuration.

    Parameters
    ----------
    debug : bool
        Log every mutation at DEBUG level (values are redacted).
    initial_state : Mapping
        Values present before any ``initialize`` call. Copied on
        construction.
    """

    debug: bool = False
    initial_state: Mapping[str, Any] = dataclasses.field(default_factory=dict)

    @classmethod
    def from_env(cls, **overrides: Any) -> EngineConfig:
        """Create configuration from ``FUSION_STATE_DEBUG``; keyword arguments win."""
        config_kwargs: dict[str, Any] = {}
        if "debug" not in overrides:
            config_kwargs["debug"] = _env_bool(os.environ.get("FUSION_STATE_DEBUG"), False)
        config_kwargs.update(overrides)
        return cls(**config_kwargs)


@dataclasses.dataclass(frozen=True)
class PersistenceConfig:
    """Persistence configuration.

    Parameters
    ----------
    adapter : StorageAdapter
        Storage backend. See :func:`pyfusionstate.detect_best_adapter`.
    key_prefix : str
        Namespace of the storage slot; the snapshot is stored under
        ``"{key_prefix}_all"``.
    persist_keys : bool, sequence of str, or callable
        ``True`` persists every key, ``False`` none, a sequence only the
        listed keys, and a ``(key, value) -> bool`` predicate the keys it
        accepts.
    load_on_init : bool
        Hydrate the engine from storage when persistence is configured.
    save_on_change : bool
        Mirror changes to storage.
    debounce_time : float
        Seconds of quiet required before a write is issued. ``0`` writes
        on every change.
    on_load_error : callable or None
        ``on_load_error(error, storage_key)`` on read/parse failures.
    on_save_error : callable or None
        ``on_save_error(error, snapshot)`` on write/serialization failures.
    custom_save_callback : coroutine function or None
        ``await custom_save_callback(snapshot, adapter, key_prefix)``
        replaces the default single-slot write.
    value_types : Mapping
        Optional per-key types; stored values for these keys are validated
        with pydantic on hydration (e.g. rebuilding models from dicts).
    create_backups : bool
        Keep a checksummed backup slot used to recover from a corrupted
        primary slot.
    """

    adapter: StorageAdapter
    key_prefix: str = DEFAULT_KEY_PREFIX
    persist_keys: PersistKeys = True
    load_on_init: bool = True
    save_on_change: bool = True
    debounce_time: float = 0.0
    on_load_error: LoadErrorCallback | None = None
    on_save_error: SaveErrorCallback | None = None
    custom_save_callback: CustomSaveCallback | None = None
    value_types: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    create_backups: bool = False

    def __post_init__(self) -> None:
        if self.adapter is None:
            raise FusionStateConfigError("A storage adapter is required for persistence configuration")
        if not self.key_prefix:
            raise FusionStateConfigError("key_prefix must be a non-empty string")
        if self.debounce_time < 0:
            raise FusionStateConfigError(f"debounce_time must be >= 0, got {self.debounce_time}")
        if isinstance(self.persist_keys, str):
            raise FusionStateConfigError("persist_keys must be a bool, a sequence of keys or a predicate")

    @property
    def storage_key(self) -> str:
        return f"{self.key_prefix}{ALL_KEYS_SUFFIX}"

    @property
    def is_enabled(self) -> bool:
        return self.save_on_change or self.load_on_init

    @classmethod
    def from_env(cls, adapter: StorageAdapter, **overrides: Any) -> PersistenceConfig:
        """Create configuration from ``FUSION_STATE_*`` environment variables.

        Reads ``FUSION_STATE_KEY_PREFIX``, ``FUSION_STATE_DEBOUNCE``,
        ``FUSION_STATE_LOAD_ON_INIT`` and ``FUSION_STATE_SAVE_ON_CHANGE``.
        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {"adapter": adapter}

        prefix = env.get("FUSION_STATE_KEY_PREFIX")
        if prefix is not None and "key_prefix" not in overrides:
            config_kwargs["key_prefix"] = prefix

        debounce = _env_float(env, "FUSION_STATE_DEBOUNCE")
        if debounce is not None and "debounce_time" not in overrides:
            config_kwargs["debounce_time"] = debounce

        if "load_on_init" not in overrides:
            config_kwargs["load_on_init"] = _env_bool(env.get("FUSION_STATE_LOAD_ON_INIT"), True)
        if "save_on_change" not in overrides:
            config_kwargs["save_on_change"] = _env_bool(env.get("FUSION_STATE_SAVE_ON_CHANGE"), True)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)
