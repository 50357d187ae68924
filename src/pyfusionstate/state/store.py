"""Framework-agnostic state engine.

:class:`StateEngine` is the only component allowed to mutate the key/value
map. Every mutating operation runs synchronously to completion: the map is
updated, change events are emitted, and a persistence save is scheduled
before the call returns. Subscribers therefore always observe a map that
already reflects the change they are notified about.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any, TypeVar, overload

from pydantic import BaseModel, ConfigDict, Field

from pyfusionstate._constants import KEY_ALREADY_INITIALIZING, KEY_MISSING_NO_INITIAL, format_error_message
from pyfusionstate._redact import redact_for_log
from pyfusionstate.config import EngineConfig, PersistenceConfig
from pyfusionstate.exceptions import AlreadyInitializingError, MissingKeyNoInitialError
from pyfusionstate.persistence.coordinator import PersistenceCoordinator
from pyfusionstate.state.events import ChangeBus, StateChangeCallback, Unsubscribe
from pyfusionstate.state.keys import StateKey, key_name
from pyfusionstate.state.policy import Comparator, EqualityPolicy, resolve_comparator

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Missing:
    """Type of the :data:`MISSING` sentinel."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()
"""Marks "no initial value supplied" (distinct from ``None``)."""


class EngineDebugInfo(BaseModel):
    """Point-in-time view of the engine internals."""

    model_config = ConfigDict(frozen=True)

    state: dict[str, Any] = Field(default_factory=dict)
    key_count: int = 0
    subscriber_count: int = 0
    subscribed_keys: list[str] = Field(default_factory=list)
    initializing_keys: list[str] = Field(default_factory=list)
    persistence_enabled: bool = False
    hydrated: bool = False


class StateEngine:
    """Key-addressed in-memory state with change notification.

    Usage::

        engine = StateEngine(EngineConfig(initial_state={"theme": "light"}))
        engine.initialize("count", 0)
        unsubscribe = engine.subscribe("count", lambda new, old, key: print(key, old, "->", new))
        engine.set("count", lambda prev: prev + 1)

    With persistence::

        async with StateEngine(persistence=PersistenceConfig(adapter=adapter)) as engine:
            await engine.hydrate()
            engine.set("persist.user", {"name": "Ada"})

    Parameters
    ----------
    config : EngineConfig or None
        Debug flag and initial state.
    persistence : PersistenceConfig or None
        Shortcut for calling :meth:`configure_persistence` after construction.
    equality : EqualityPolicy, str, callable or None
        Default change-suppression comparator. Defaults to
        :attr:`EqualityPolicy.REFERENCE`.
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        *,
        persistence: PersistenceConfig | None = None,
        equality: EqualityPolicy | str | Comparator | None = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._debug = self._config.debug
        self._state: dict[str, Any] = dict(self._config.initial_state)
        self._bus = ChangeBus()
        self._initializing: set[str] = set()
        self._default_equality = resolve_comparator(equality)
        self._key_equality: dict[str, Comparator] = {}
        self._persistence: PersistenceCoordinator | None = None
        self._hydration_task: asyncio.Task[dict[str, Any]] | None = None
        # Keys written locally while async hydration is in flight.
        self._dirty_keys: set[str] | None = None
        self._disposed = False

        if self._debug:
            _logger.debug("Engine initialized with state: %s", redact_for_log(self._state))

        if persistence is not None:
            self.configure_persistence(persistence)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> StateEngine:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @overload
    def get(self, key: StateKey[T]) -> T | None: ...

    @overload
    def get(self, key: StateKey[T], default: T) -> T: ...

    @overload
    def get(self, key: str, default: Any = None) -> Any: ...

    def get(self, key: str | StateKey[Any], default: Any = None) -> Any:
        """Return the value of *key*, or *default* when the key is absent."""
        return self._state.get(key_name(key), default)

    def has(self, key: str | StateKey[Any]) -> bool:
        return key_name(key) in self._state

    def __contains__(self, key: object) -> bool:
        if isinstance(key, StateKey):
            return key.name in self._state
        return isinstance(key, str) and key in self._state

    def __len__(self) -> int:
        return len(self._state)

    def get_all(self) -> dict[str, Any]:
        """Copy of the whole snapshot; mutating it does not touch the engine."""
        return dict(self._state)

    @property
    def bus(self) -> ChangeBus:
        return self._bus

    @property
    def persistence(self) -> PersistenceCoordinator | None:
        return self._persistence

    @property
    def is_hydrated(self) -> bool:
        """``True`` once asynchronous hydration finished (or persistence is not configured)."""
        if self._persistence is None or not self._persistence.config.load_on_init:
            return True
        return self._persistence.is_loaded and (self._hydration_task is None or self._hydration_task.done())

    # ------------------------------------------------------------------
    # Equality policy
    # ------------------------------------------------------------------

    def set_equality(self, key: str | StateKey[Any], policy: EqualityPolicy | str | Comparator | None) -> None:
        """Register the change-suppression comparator for *key* (``None`` resets it)."""
        name = key_name(key)
        if policy is None:
            self._key_equality.pop(name, None)
        else:
            self._key_equality[name] = resolve_comparator(policy)

    def _comparator(self, key: str, override: EqualityPolicy | str | Comparator | None) -> Comparator:
        if override is not None:
            return resolve_comparator(override)
        return self._key_equality.get(key, self._default_equality)

    def _is_unchanged(self, key: str, next_value: Any, comparator: Comparator) -> bool:
        if key not in self._state:
            return False
        current = self._state[key]
        try:
            return comparator(next_value, current)
        except Exception:
            _logger.warning("Equality comparator failed for %r; treating value as changed", key, exc_info=True)
            return False

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @overload
    def set(self, key: StateKey[T], value: T | Callable[[T], T], *, equality: Any = None) -> None: ...

    @overload
    def set(self, key: str, value: Any, *, equality: Any = None) -> None: ...

    def set(
        self,
        key: str | StateKey[Any],
        value: Any,
        *,
        equality: EqualityPolicy | str | Comparator | None = None,
    ) -> None:
        """Set *key* to *value*.

        A callable *value* is treated as an updater: it receives the current
        value (``None`` if absent) and returns the next one. To store a
        callable itself, wrap it: ``engine.set(key, lambda _: fn)``.

        Setting a value equal to the current one (per the resolved
        comparator) does nothing: no mutation, no emit, no save.
        """
        name = key_name(key)
        current = self._state.get(name)
        next_value = value(current) if callable(value) else value

        if self._is_unchanged(name, next_value, self._comparator(name, equality)):
            return

        self._state[name] = next_value
        self._mark_dirty(name)
        self._bus.emit(name, next_value, current)
        self._schedule_save()

        if self._debug:
            _logger.debug(
                "State updated - %s: %s -> %s",
                name,
                redact_for_log({name: current})[name],
                redact_for_log({name: next_value})[name],
            )

    def initialize(self, key: str | StateKey[Any], initial_value: Any = MISSING) -> None:
        """Give *key* its initial value unless it already exists.

        Raises
        ------
        AlreadyInitializingError
            *key* is being initialized right now (reentrant initialize).
        MissingKeyNoInitialError
            *key* does not exist and no *initial_value* was supplied.
        """
        name = key_name(key)
        if name in self._initializing:
            raise AlreadyInitializingError(format_error_message(KEY_ALREADY_INITIALIZING, name), key=name)
        if name in self._state:
            return
        if initial_value is MISSING:
            raise MissingKeyNoInitialError(format_error_message(KEY_MISSING_NO_INITIAL, name), key=name)

        self._initializing.add(name)
        try:
            self.set(name, initial_value)
        finally:
            self._initializing.discard(name)

    def remove(self, key: str | StateKey[Any]) -> None:
        """Delete *key*; emits ``(None, old_value)``. No-op when absent."""
        name = key_name(key)
        if name not in self._state:
            return
        old_value = self._state.pop(name)
        self._mark_dirty(name)
        self._bus.emit(name, None, old_value)
        self._schedule_save()

        if self._debug:
            _logger.debug("Key removed: %s", name)

    def batch_update(self, updates: Mapping[str | StateKey[Any], Any]) -> None:
        """Apply several assignments as one logical operation.

        Values are assigned as given (callables are not treated as
        updaters). Every key is checked with the same suppression rule as
        :meth:`set`; changed keys are written to the map in one step, then
        one event is emitted per changed key and at most one save is
        scheduled for the whole batch.
        """
        changes: dict[str, tuple[Any, Any]] = {}
        for key, next_value in updates.items():
            name = key_name(key)
            if self._is_unchanged(name, next_value, self._comparator(name, None)):
                continue
            changes[name] = (next_value, self._state.get(name))

        if not changes:
            return

        self._state.update({name: new for name, (new, _old) in changes.items()})
        for name in changes:
            self._mark_dirty(name)
        for name, (new, old) in changes.items():
            self._bus.emit(name, new, old)
        self._schedule_save()

        if self._debug:
            _logger.debug("Batch update applied: %s", redact_for_log({n: new for n, (new, _o) in changes.items()}))

    def clear(self) -> None:
        """Remove every key; emits ``(None, old_value)`` per removed key."""
        old_state = self._state
        self._state = {}
        for name in old_state:
            self._mark_dirty(name)
        for name, old_value in old_state.items():
            self._bus.emit(name, None, old_value)
        self._schedule_save()

        if self._debug:
            _logger.debug("All state cleared")

    def create_updater(self, key: str | StateKey[Any]) -> Callable[[Any], None]:
        """Return a function that sets *key* (accepts values or updaters)."""
        name = key_name(key)

        def update(value: Any) -> None:
            self.set(name, value)

        return update

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def subscribe(self, key: str | StateKey[Any], callback: StateChangeCallback) -> Unsubscribe:
        """Call ``callback(new_value, old_value, key)`` whenever *key* changes."""
        return self._bus.subscribe(key_name(key), callback)

    def subscribe_to_all(self, callback: StateChangeCallback) -> Unsubscribe:
        """Subscribe *callback* to every key that exists **now**.

        Keys created after this call are not covered.
        """
        unsubscribes = [self._bus.subscribe(name, callback) for name in self._state]

        def unsubscribe() -> None:
            for unsub in unsubscribes:
                unsub()

        return unsubscribe

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def configure_persistence(self, config: PersistenceConfig) -> PersistenceCoordinator:
        """Attach a persistence coordinator and start hydration.

        Synchronous hydration (when the adapter supports it) is applied
        immediately. Asynchronous hydration is started on the running event
        loop; without one it runs on the first ``await engine.hydrate()``.
        """
        if self._persistence is not None:
            self._persistence.cancel_pending()
        coordinator = PersistenceCoordinator(config, debug=self._debug)
        self._persistence = coordinator
        self._hydration_task = None

        loaded = coordinator.hydrate_sync(self._state)
        if loaded is not self._state:
            self._apply_hydrated(loaded)
            if self._debug:
                _logger.debug("State updated from sync persistence load: %s", redact_for_log(self._state))

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None and config.load_on_init:
            self._dirty_keys = set()
            self._hydration_task = loop.create_task(self._hydrate_async(coordinator))
        return coordinator

    async def _hydrate_async(self, coordinator: PersistenceCoordinator) -> dict[str, Any]:
        if self._dirty_keys is None:
            self._dirty_keys = set()
        try:
            loaded = await coordinator.hydrate_async(dict(self._state))
        finally:
            dirty, self._dirty_keys = self._dirty_keys, None
        if coordinator is not self._persistence or self._disposed:
            return self.get_all()

        # Keys written locally while the read was in flight keep their value.
        merged = {name: value for name, value in loaded.items() if name not in dirty}
        self._apply_hydrated({**self._state, **merged})
        if dirty:
            # Saves issued during the read did not include the stored keys.
            self._schedule_save()
        if self._debug:
            _logger.debug("State updated from async persistence load: %s", redact_for_log(self._state))
        return self.get_all()

    def _apply_hydrated(self, loaded: dict[str, Any]) -> None:
        old_state = self._state
        self._state = dict(loaded)
        for name, value in self._state.items():
            if name not in old_state or old_state[name] is not value:
                self._bus.emit(name, value, old_state.get(name))

    async def hydrate(self) -> dict[str, Any]:
        """Wait for (or run) asynchronous hydration and return the snapshot."""
        coordinator = self._persistence
        if coordinator is None:
            return self.get_all()
        if self._hydration_task is None:
            if coordinator.is_loaded:
                return self.get_all()
            self._hydration_task = asyncio.get_running_loop().create_task(self._hydrate_async(coordinator))
        return await asyncio.shield(self._hydration_task)

    async def flush(self) -> None:
        """Write pending persistence changes now and wait for them."""
        if self._persistence is not None:
            await self._persistence.flush()

    def _schedule_save(self) -> None:
        if self._persistence is not None:
            self._persistence.schedule_save(dict(self._state))

    def _mark_dirty(self, name: str) -> None:
        if self._dirty_keys is not None:
            self._dirty_keys.add(name)

    # ------------------------------------------------------------------
    # Introspection and teardown
    # ------------------------------------------------------------------

    def debug_info(self) -> EngineDebugInfo:
        return EngineDebugInfo(
            state=self.get_all(),
            key_count=len(self._state),
            subscriber_count=self._bus.total_subscriber_count(),
            subscribed_keys=self._bus.subscribed_keys(),
            initializing_keys=sorted(self._initializing),
            persistence_enabled=self._persistence is not None and self._persistence.is_enabled,
            hydrated=self.is_hydrated,
        )

    def dispose(self) -> None:
        """Release subscriptions and state.

        Pending debounced writes and hydration are cancelled (best effort);
        I/O already in flight is not. The engine must not be reused.
        """
        self._disposed = True
        if self._persistence is not None:
            self._persistence.cancel_pending()
        if self._hydration_task is not None and not self._hydration_task.done():
            self._hydration_task.cancel()
        self._bus.clear()
        self._initializing.clear()
        self._key_equality.clear()
        self._state = {}

        if self._debug:
            _logger.debug("Engine disposed")

    async def aclose(self) -> None:
        """Flush pending writes, then :meth:`dispose`."""
        if self._persistence is not None and not self._disposed:
            await self._persistence.flush()
        self.dispose()
