"""Persistence coordinator.

Mirrors engine snapshots to a :class:`~pyfusionstate.storage.StorageAdapter`:

* hydration, synchronous first (when the adapter can read synchronously)
  then asynchronous, exactly once per coordinator;
* key filtering, debouncing and write suppression (a filtered snapshot that
  is structurally equal to the last successful write is never written);
* corruption-tolerant reads with optional backup recovery.

Storage is a downstream mirror: every storage failure is reported through
the configured callbacks and never raised into the engine.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

from pyfusionstate._constants import (
    PERSISTENCE_READ_ERROR,
    PERSISTENCE_WRITE_ERROR,
    VALUE_NOT_SERIALIZABLE,
    format_error_message,
)
from pyfusionstate._redact import redact_for_log
from pyfusionstate._version import __version__
from pyfusionstate.config import PersistenceConfig
from pyfusionstate.exceptions import PersistenceReadError, PersistenceWriteError
from pyfusionstate.persistence.codec import DecodedSnapshot, SnapshotCodec, dumps
from pyfusionstate.persistence.filtering import filter_persist_keys
from pyfusionstate.persistence.recovery import StorageRecovery
from pyfusionstate.state.policy import deep_equal
from pyfusionstate.storage.adapters import supports_sync_read

_logger = logging.getLogger(__name__)


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class PersistenceCoordinator:
    """Load and save engine snapshots through a storage adapter.

    Parameters
    ----------
    config : PersistenceConfig
        Adapter, filtering, debounce and callback configuration.
    debug : bool
        Log loads and saves at DEBUG level.
    recovery : StorageRecovery or None
        Backup handler used when ``config.create_backups`` is set. A default
        one is created when omitted.
    """

    def __init__(
        self,
        config: PersistenceConfig,
        *,
        debug: bool = False,
        recovery: StorageRecovery | None = None,
    ) -> None:
        self._config = config
        self._debug = debug
        self._codec = SnapshotCodec(config.value_types)
        self._recovery = recovery or StorageRecovery(version=__version__)
        # JSON form of the last successful write (or of the hydrated data).
        self._baseline: dict[str, Any] = {}
        self._written = False
        self._loaded = False
        self._sync_read: tuple[str, DecodedSnapshot | None] | None = None

        self._write_lock = asyncio.Lock()
        self._pending: dict[str, Any] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def config(self) -> PersistenceConfig:
        return self._config

    @property
    def storage_key(self) -> str:
        return self._config.storage_key

    @property
    def is_enabled(self) -> bool:
        return self._config.is_enabled

    @property
    def is_loaded(self) -> bool:
        """Whether the asynchronous hydration has run."""
        return self._loaded

    @property
    def has_pending_write(self) -> bool:
        return self._pending is not None or any(not task.done() for task in self._tasks)

    def update_config(self, config: PersistenceConfig) -> None:
        """Swap the configuration; a pending debounced write is rescheduled."""
        self._config = config
        self._codec = SnapshotCodec(config.value_types)
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            pending, self._pending = self._pending, None
            if pending is not None:
                self._request_write(pending)

    # ------------------------------------------------------------------
    # Error reporting
    # ------------------------------------------------------------------

    def _report_load_error(self, error: PersistenceReadError) -> None:
        callback = self._config.on_load_error
        if callback is None:
            _logger.warning("%s", error)
            return
        _logger.debug("%s", error)
        try:
            callback(error, self.storage_key)
        except Exception:
            _logger.error("on_load_error callback failed", exc_info=True)

    def _report_save_error(self, error: PersistenceWriteError, snapshot: dict[str, Any]) -> None:
        callback = self._config.on_save_error
        if callback is None:
            _logger.warning("%s", error)
            return
        _logger.debug("%s", error)
        try:
            callback(error, snapshot)
        except Exception:
            _logger.error("on_save_error callback failed", exc_info=True)

    def _read_error(self, exc: BaseException) -> PersistenceReadError:
        if isinstance(exc, PersistenceReadError):
            return exc
        error = PersistenceReadError(
            format_error_message(PERSISTENCE_READ_ERROR, exc),
            storage_key=self.storage_key,
        )
        error.__cause__ = exc
        return error

    def _report_value_failures(self, decoded: DecodedSnapshot) -> None:
        for key, exc in decoded.failures.items():
            error = PersistenceReadError(
                format_error_message(PERSISTENCE_READ_ERROR, f'invalid stored value for key "{key}": {exc}'),
                storage_key=self.storage_key,
            )
            error.__cause__ = exc
            self._report_load_error(error)

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------

    def _merge(self, current: dict[str, Any], decoded: DecodedSnapshot) -> dict[str, Any]:
        # Once a write landed, storage no longer holds the loaded payload.
        if not self._written:
            self._baseline = dict(decoded.raw)
        if self._debug:
            _logger.debug("Loaded state from %s: %s", self.storage_key, redact_for_log(decoded.data))
        return {**current, **decoded.data}

    def hydrate_sync(self, current: dict[str, Any]) -> dict[str, Any]:
        """Merge stored state over *current* using a synchronous read.

        Returns *current* itself when nothing was loaded (no sync-capable
        adapter, nothing stored, or a read/parse failure).
        """
        if not self._config.load_on_init:
            return current
        adapter = self._config.adapter
        if not supports_sync_read(adapter):
            return current

        try:
            raw = adapter.get_item_sync(self.storage_key)  # type: ignore[attr-defined]
        except Exception as exc:
            self._report_load_error(self._read_error(exc))
            return current
        if not raw:
            return current

        try:
            decoded = self._codec.decode(raw, storage_key=self.storage_key)
        except PersistenceReadError as exc:
            # The async pass re-reads the same payload; remember it was reported.
            self._sync_read = (raw, None)
            self._report_load_error(exc)
            return current

        self._sync_read = (raw, decoded)
        self._report_value_failures(decoded)
        return self._merge(current, decoded)

    async def hydrate_async(self, current: dict[str, Any]) -> dict[str, Any]:
        """Merge stored state over *current* using the asynchronous read.

        Runs once per coordinator; later calls return *current* unchanged.
        """
        if not self._config.load_on_init or self._loaded:
            self._loaded = True
            return current
        self._loaded = True

        try:
            raw = await self._config.adapter.get_item(self.storage_key)
        except Exception as exc:
            self._report_load_error(self._read_error(exc))
            return current

        if not raw:
            if self._debug:
                _logger.debug("No stored data found under %s", self.storage_key)
            return current

        already_seen = self._sync_read is not None and self._sync_read[0] == raw
        if already_seen and self._sync_read is not None and self._sync_read[1] is not None:
            return self._merge(current, self._sync_read[1])

        try:
            decoded = self._codec.decode(raw, storage_key=self.storage_key)
        except PersistenceReadError as exc:
            if not already_seen:
                self._report_load_error(exc)
            return await self._recover(current)

        self._report_value_failures(decoded)
        return self._merge(current, decoded)

    async def _recover(self, current: dict[str, Any]) -> dict[str, Any]:
        if not self._config.create_backups:
            return current
        recovered = await self._recovery.recover(self._config.adapter, self.storage_key)
        if recovered is None:
            _logger.warning("Falling back to default state for %s", self.storage_key)
            return current
        decoded = self._codec.decode_mapping(recovered)
        self._report_value_failures(decoded)
        merged = self._merge(current, decoded)
        # The primary slot is still corrupted: force the next save to rewrite it.
        if not self._written:
            self._baseline = {}
        return merged

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    async def save(self, snapshot: dict[str, Any]) -> None:
        """Persist *snapshot*.

        Without debounce the write completes before this returns. With a
        debounce interval the write is deferred until the interval passes
        without further calls; only the last snapshot is written.
        """
        if not self._config.save_on_change:
            return
        filtered = filter_persist_keys(snapshot, self._config.persist_keys)
        if self._config.debounce_time > 0:
            self._debounce(filtered)
            return
        await self._write(filtered)

    def schedule_save(self, snapshot: dict[str, Any]) -> None:
        """Non-blocking :meth:`save` for synchronous callers.

        The write runs as a background task on the running loop. Without a
        running loop the snapshot is kept until :meth:`flush`.
        """
        if not self._config.save_on_change:
            return
        filtered = filter_persist_keys(snapshot, self._config.persist_keys)
        if self._config.debounce_time > 0:
            self._debounce(filtered)
        else:
            self._request_write(filtered)

    def _debounce(self, filtered: dict[str, Any]) -> None:
        self._pending = filtered
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        loop = _running_loop()
        if loop is None:
            return
        self._timer = loop.call_later(self._config.debounce_time, self._fire_debounced)

    def _fire_debounced(self) -> None:
        self._timer = None
        pending, self._pending = self._pending, None
        if pending is not None:
            self._request_write(pending)

    def _request_write(self, filtered: dict[str, Any]) -> None:
        loop = _running_loop()
        if loop is None:
            self._pending = filtered
            return
        self._spawn(loop, self._write(filtered))

    def _spawn(self, loop: asyncio.AbstractEventLoop, coro: Coroutine[Any, Any, None]) -> None:
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _write(self, filtered: dict[str, Any]) -> None:
        # The lock keeps at most one write in flight for the storage key;
        # tasks acquire it in the order the saves were requested.
        async with self._write_lock:
            try:
                await self._write_locked(filtered)
            except Exception as exc:
                error = PersistenceWriteError(
                    format_error_message(PERSISTENCE_WRITE_ERROR, exc),
                    storage_key=self.storage_key,
                )
                error.__cause__ = exc
                self._report_save_error(error, filtered)

    async def _write_locked(self, filtered: dict[str, Any]) -> None:
        encoded = self._codec.encode(filtered)
        custom = self._config.custom_save_callback
        if custom is None:
            for key, exc in encoded.failures.items():
                error = PersistenceWriteError(
                    format_error_message(VALUE_NOT_SERIALIZABLE, key, exc),
                    storage_key=self.storage_key,
                    state_key=key,
                )
                error.__cause__ = exc
                self._report_save_error(error, filtered)

        if deep_equal(encoded.data, self._baseline):
            return

        adapter = self._config.adapter
        try:
            if custom is not None:
                await custom(dict(filtered), adapter, self._config.key_prefix)
            else:
                await adapter.set_item(self.storage_key, dumps(encoded.data))
        except Exception as exc:
            if isinstance(exc, PersistenceWriteError):
                error = exc
            else:
                error = PersistenceWriteError(
                    format_error_message(PERSISTENCE_WRITE_ERROR, exc),
                    storage_key=self.storage_key,
                )
                error.__cause__ = exc
            self._report_save_error(error, filtered)
            return

        self._baseline = encoded.data
        self._written = True
        if self._debug:
            _logger.debug("Saved state to %s: %s", self.storage_key, redact_for_log(encoded.data))

        if self._config.create_backups:
            await self._recovery.write_backup(adapter, self.storage_key, encoded.data)

    async def flush(self) -> None:
        """Write any pending snapshot now and wait for in-flight writes."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        pending, self._pending = self._pending, None
        if pending is not None:
            self._spawn(asyncio.get_running_loop(), self._write(pending))
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_pending(self) -> None:
        """Drop the pending debounced write (in-flight I/O is not cancelled)."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending = None
