"""Storage adapter protocol and reference adapters.

The engine depends only on :class:`StorageAdapter`: three coroutines over
string keys and string values. Adapters that can also read synchronously
implement :class:`SyncStorageAdapter`, which lets the persistence layer
hydrate state before the first read.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import quote

import aiohttp

from pyfusionstate.exceptions import PersistenceReadError, PersistenceWriteError

_logger = logging.getLogger(__name__)


@runtime_checkable
class StorageAdapter(Protocol):
    """Asynchronous string key/value storage."""

    async def get_item(self, key: str) -> str | None: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...


@runtime_checkable
class SyncStorageAdapter(StorageAdapter, Protocol):
    """Storage that additionally supports a blocking read."""

    def get_item_sync(self, key: str) -> str | None: ...


def supports_sync_read(adapter: StorageAdapter) -> bool:
    """Whether *adapter* exposes a callable ``get_item_sync``."""
    return callable(getattr(adapter, "get_item_sync", None))


class NoopStorageAdapter:
    """Adapter that stores nothing: reads return ``None``, writes succeed."""

    async def get_item(self, key: str) -> str | None:
        return None

    async def set_item(self, key: str, value: str) -> None:
        return None

    async def remove_item(self, key: str) -> None:
        return None


class MemoryStorageAdapter:
    """Process-local dict storage, mainly for tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})

    def get_item_sync(self, key: str) -> str | None:
        return self._items.get(key)

    async def get_item(self, key: str) -> str | None:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._items

    def __len__(self) -> int:
        return len(self._items)


class FileStorageAdapter:
    """Durable storage: one UTF-8 file per key inside *directory*.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a crash never leaves a half-written slot behind. File
    I/O is small and local, so the coroutines run it inline.
    """

    def __init__(self, directory: str | os.PathLike[str], *, create: bool = True) -> None:
        self._directory = Path(directory)
        if create:
            self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    def _path(self, key: str) -> Path:
        return self._directory / f"{quote(key, safe='')}.json"

    def get_item_sync(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise PersistenceReadError(f"Could not read {path}: {exc}", storage_key=key) from exc

    async def get_item(self, key: str) -> str | None:
        return self.get_item_sync(key)

    async def set_item(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=".tmp-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(value)
            os.replace(tmp_name, path)
        except OSError as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceWriteError(f"Could not write {path}: {exc}", storage_key=key) from exc

    async def remove_item(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)


class HttpStorageAdapter:
    """Remote key/value storage over HTTP.

    ``GET``/``PUT``/``DELETE`` against ``{base_url}/{key}``; a ``404`` on
    read means "no stored value". Pass an existing
    :class:`aiohttp.ClientSession` to share a connection pool; otherwise one
    is created lazily and closed by :meth:`close`.
    """

    def __init__(
        self,
        base_url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._external_session = session is not None
        self._http = session
        self._headers = dict(headers or {})
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def _url(self, key: str) -> str:
        return f"{self._base_url}/{quote(key, safe='')}"

    def _session(self) -> aiohttp.ClientSession:
        if self._http is None:
            self._http = aiohttp.ClientSession(headers=self._headers, timeout=self._timeout)
        return self._http

    async def get_item(self, key: str) -> str | None:
        url = self._url(key)
        _logger.debug("GET %s", url)
        try:
            async with self._session().get(url) as resp:
                if resp.status == 404:
                    return None
                text = await resp.text()
                if resp.status != 200:
                    raise PersistenceReadError(f"HTTP {resp.status} from {url}: {text[:200]}", storage_key=key)
                return text
        except aiohttp.ClientError as exc:
            raise PersistenceReadError(f"Request to {url} failed: {exc}", storage_key=key) from exc

    async def set_item(self, key: str, value: str) -> None:
        url = self._url(key)
        _logger.debug("PUT %s (%d bytes)", url, len(value))
        try:
            async with self._session().put(
                url,
                data=value,
                headers={"content-type": "application/json; charset=UTF-8"},
            ) as resp:
                if resp.status >= 300:
                    text = await resp.text()
                    raise PersistenceWriteError(f"HTTP {resp.status} from {url}: {text[:200]}", storage_key=key)
        except aiohttp.ClientError as exc:
            raise PersistenceWriteError(f"Request to {url} failed: {exc}", storage_key=key) from exc

    async def remove_item(self, key: str) -> None:
        url = self._url(key)
        _logger.debug("DELETE %s", url)
        try:
            async with self._session().delete(url) as resp:
                if resp.status >= 300 and resp.status != 404:
                    raise PersistenceWriteError(f"HTTP {resp.status} from {url}", storage_key=key)
        except aiohttp.ClientError as exc:
            raise PersistenceWriteError(f"Request to {url} failed: {exc}", storage_key=key) from exc

    async def close(self) -> None:
        if not self._external_session and self._http is not None:
            await self._http.close()
        self._http = None


class SafeStorageAdapter:
    """Wrap an adapter so that its failures are logged instead of raised.

    Reads that fail resolve to ``None`` and writes that fail are dropped.
    Useful for backends where losing a write is preferable to reporting it;
    note that the persistence error callbacks never fire for wrapped errors.
    """

    def __init__(self, inner: StorageAdapter) -> None:
        self._inner = inner

    async def get_item(self, key: str) -> str | None:
        try:
            return await self._inner.get_item(key)
        except Exception:
            _logger.warning("Error reading %r from storage", key, exc_info=True)
            return None

    async def set_item(self, key: str, value: str) -> None:
        try:
            await self._inner.set_item(key, value)
        except Exception:
            _logger.warning("Error writing %r to storage", key, exc_info=True)

    async def remove_item(self, key: str) -> None:
        try:
            await self._inner.remove_item(key)
        except Exception:
            _logger.warning("Error removing %r from storage", key, exc_info=True)
