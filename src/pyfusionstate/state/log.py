"""Change tracking over a subset of keys.

:class:`ChangeLog` keeps a filtered view of the engine state up to date and,
optionally, the before/after values of the most recent change. It is the
framework-agnostic counterpart of a "state log" devtools hook.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pyfusionstate._redact import redact_for_log
from pyfusionstate.state.events import Unsubscribe
from pyfusionstate.state.policy import Comparator, EqualityPolicy, resolve_comparator

if TYPE_CHECKING:
    from pyfusionstate.state.store import StateEngine

_logger = logging.getLogger(__name__)

Formatter = Callable[[dict[str, Any], "dict[str, ChangeRecord] | None"], Any]


@dataclass(frozen=True, slots=True)
class ChangeRecord:
    previous: Any
    current: Any


class ChangeLog:
    """Observe *keys* of *engine* (all keys existing now when omitted).

    With *track_changes*, ``changes`` holds the most recent change and
    ``history`` the last *history_size* ones.
    """

    def __init__(
        self,
        engine: StateEngine,
        keys: Iterable[str] | None = None,
        *,
        track_changes: bool = False,
        equality: EqualityPolicy | str | Comparator = EqualityPolicy.REFERENCE,
        formatter: Formatter | None = None,
        log_changes: bool = False,
        history_size: int = 100,
    ) -> None:
        self._engine = engine
        self._keys = list(keys) if keys else list(engine.get_all())
        self._track_changes = track_changes
        self._equal = resolve_comparator(equality)
        self._formatter = formatter
        self._log_changes = log_changes
        self.changes: dict[str, ChangeRecord] | None = None
        # Most recent tracked changes, oldest first.
        self.history: deque[tuple[str, ChangeRecord]] = deque(maxlen=history_size)
        self._unsubscribes: list[Unsubscribe] = [engine.subscribe(key, self._on_change) for key in self._keys]

    @property
    def keys(self) -> list[str]:
        return list(self._keys)

    @property
    def state(self) -> dict[str, Any]:
        """Current values of the observed keys that exist."""
        snapshot = self._engine.get_all()
        return {key: snapshot[key] for key in self._keys if key in snapshot}

    def _on_change(self, new_value: Any, old_value: Any, key: str) -> None:
        changes: dict[str, ChangeRecord] | None = None
        if self._track_changes:
            if not self._equal(new_value, old_value):
                record = ChangeRecord(previous=old_value, current=new_value)
                changes = {key: record}
                self.history.append((key, record))
            self.changes = changes
            if changes is None:
                return

        if self._log_changes:
            state = self.state
            if self._formatter is not None:
                payload = self._formatter(state, changes)
            else:
                payload = {"state": redact_for_log(state)}
                if changes:
                    payload["changes"] = {
                        name: {"previous": redact_for_log(rec.previous), "current": redact_for_log(rec.current)}
                        for name, rec in changes.items()
                    }
            _logger.info("State change %s: %s", key, payload)

    def close(self) -> None:
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()

    def __enter__(self) -> ChangeLog:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()
