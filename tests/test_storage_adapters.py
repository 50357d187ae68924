from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import aiohttp
import pytest

from pyfusionstate.exceptions import PersistenceReadError, PersistenceWriteError
from pyfusionstate.storage import (
    FileStorageAdapter,
    HttpStorageAdapter,
    MemoryStorageAdapter,
    NoopStorageAdapter,
    SafeStorageAdapter,
    detect_best_adapter,
)
from pyfusionstate.storage.adapters import supports_sync_read


class _FakeResponse:
    def __init__(self, status: int, body: str = "") -> None:
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body

    async def __aenter__(self) -> _FakeResponse:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        return None


class _FakeSession:
    """Stands in for ``aiohttp.ClientSession``; records requests."""

    def __init__(self, responses: dict[str, _FakeResponse] | None = None, error: Exception | None = None) -> None:
        self.responses = responses or {}
        self.error = error
        self.requests: list[tuple[str, str, Any]] = []
        self.closed = False

    def _request(self, method: str, url: str, data: Any = None) -> _FakeResponse:
        self.requests.append((method, url, data))
        if self.error is not None:
            raise self.error
        return self.responses.get(method, _FakeResponse(200))

    def get(self, url: str, **_: Any) -> _FakeResponse:
        return self._request("GET", url)

    def put(self, url: str, *, data: Any = None, **_: Any) -> _FakeResponse:
        return self._request("PUT", url, data)

    def delete(self, url: str, **_: Any) -> _FakeResponse:
        return self._request("DELETE", url)

    async def close(self) -> None:
        self.closed = True


class _FailingAdapter:
    async def get_item(self, key: str) -> str | None:
        raise OSError("read failure")

    async def set_item(self, key: str, value: str) -> None:
        raise OSError("write failure")

    async def remove_item(self, key: str) -> None:
        raise OSError("remove failure")


# ---------------------------------------------------------------------------
# Memory / noop
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_memory_adapter_round_trip() -> None:
    adapter = MemoryStorageAdapter()

    await adapter.set_item("k", "v")

    assert await adapter.get_item("k") == "v"
    assert adapter.get_item_sync("k") == "v"
    assert "k" in adapter
    assert len(adapter) == 1

    await adapter.remove_item("k")
    await adapter.remove_item("k")
    assert await adapter.get_item("k") is None


@pytest.mark.asyncio
async def test_noop_adapter_stores_nothing() -> None:
    adapter = NoopStorageAdapter()
    await adapter.set_item("k", "v")

    assert await adapter.get_item("k") is None
    assert not supports_sync_read(adapter)


# ---------------------------------------------------------------------------
# File
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_file_adapter_persists_across_instances(tmp_path: Path) -> None:
    directory = tmp_path / "state"
    await FileStorageAdapter(directory).set_item("app/all", '{"a":1}')

    reopened = FileStorageAdapter(directory)

    assert reopened.get_item_sync("app/all") == '{"a":1}'
    assert await reopened.get_item("missing") is None
    # Keys are quoted into a single file name; no temp files are left behind.
    assert [path.name for path in directory.iterdir()] == ["app%2Fall.json"]


@pytest.mark.asyncio
async def test_file_adapter_remove(tmp_path: Path) -> None:
    adapter = FileStorageAdapter(tmp_path)
    await adapter.set_item("k", "v")
    await adapter.remove_item("k")
    await adapter.remove_item("k")

    assert adapter.get_item_sync("k") is None


@pytest.mark.asyncio
async def test_file_adapter_write_failure_raises_persistence_error(tmp_path: Path) -> None:
    adapter = FileStorageAdapter(tmp_path / "gone")
    (tmp_path / "gone").rmdir()

    with pytest.raises(PersistenceWriteError):
        await adapter.set_item("k", "v")


def test_file_adapter_read_failure_raises_persistence_error(tmp_path: Path) -> None:
    adapter = FileStorageAdapter(tmp_path)
    # A directory where the slot file should be cannot be read as text.
    (tmp_path / "k.json").mkdir()

    with pytest.raises(PersistenceReadError):
        adapter.get_item_sync("k")


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_http_adapter_get_put_delete() -> None:
    session = _FakeSession({"GET": _FakeResponse(200, '{"a":1}')})
    adapter = HttpStorageAdapter("https://state.example/kv/", session=session)  # type: ignore[arg-type]

    assert await adapter.get_item("fusion_state_all") == '{"a":1}'
    await adapter.set_item("fusion_state_all", '{"a":2}')
    await adapter.remove_item("fusion_state_all")
    await adapter.close()

    assert session.requests == [
        ("GET", "https://state.example/kv/fusion_state_all", None),
        ("PUT", "https://state.example/kv/fusion_state_all", '{"a":2}'),
        ("DELETE", "https://state.example/kv/fusion_state_all", None),
    ]
    # A caller-provided session is not closed by the adapter.
    assert session.closed is False


@pytest.mark.asyncio
async def test_http_adapter_missing_slot_is_none() -> None:
    session = _FakeSession({"GET": _FakeResponse(404)})
    adapter = HttpStorageAdapter("https://state.example", session=session)  # type: ignore[arg-type]

    assert await adapter.get_item("k") is None


@pytest.mark.asyncio
async def test_http_adapter_errors_map_to_persistence_errors() -> None:
    failing = HttpStorageAdapter(
        "https://state.example",
        session=_FakeSession({"GET": _FakeResponse(500, "boom"), "PUT": _FakeResponse(503)}),  # type: ignore[arg-type]
    )
    with pytest.raises(PersistenceReadError):
        await failing.get_item("k")
    with pytest.raises(PersistenceWriteError):
        await failing.set_item("k", "v")

    offline = HttpStorageAdapter(
        "https://state.example",
        session=_FakeSession(error=aiohttp.ClientConnectionError("offline")),  # type: ignore[arg-type]
    )
    with pytest.raises(PersistenceReadError) as excinfo:
        await offline.get_item("k")
    assert isinstance(excinfo.value.__cause__, aiohttp.ClientError)


# ---------------------------------------------------------------------------
# Safe wrapper
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_safe_adapter_swallows_and_logs(caplog: pytest.LogCaptureFixture) -> None:
    adapter = SafeStorageAdapter(_FailingAdapter())

    with caplog.at_level(logging.WARNING, logger="pyfusionstate.storage.adapters"):
        assert await adapter.get_item("k") is None
        await adapter.set_item("k", "v")
        await adapter.remove_item("k")

    assert len(caplog.records) == 3


# ---------------------------------------------------------------------------
# Detection
# ---------------------------------------------------------------------------


def test_detect_uses_given_directory(tmp_path: Path) -> None:
    adapter = detect_best_adapter(tmp_path / "state")

    assert isinstance(adapter, FileStorageAdapter)
    assert adapter.directory == tmp_path / "state"
    # The probe file is cleaned up.
    assert list((tmp_path / "state").iterdir()) == []


def test_detect_reads_directory_from_env(tmp_path: Path) -> None:
    adapter = detect_best_adapter(env={"FUSION_STATE_DIR": str(tmp_path)})

    assert isinstance(adapter, FileStorageAdapter)
    assert adapter.directory == tmp_path


def test_detect_falls_back_to_noop(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a directory", encoding="utf-8")

    assert isinstance(detect_best_adapter(env={}), NoopStorageAdapter)
    assert isinstance(detect_best_adapter(blocker / "state"), NoopStorageAdapter)
