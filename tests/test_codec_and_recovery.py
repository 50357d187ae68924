from __future__ import annotations

import datetime as dt
import json
from enum import Enum
from typing import Any

import pytest
from pydantic import BaseModel

from pyfusionstate.config import PersistenceConfig
from pyfusionstate.exceptions import PersistenceReadError
from pyfusionstate.persistence.codec import SnapshotCodec, dumps, encode_value
from pyfusionstate.persistence.coordinator import PersistenceCoordinator
from pyfusionstate.persistence.recovery import StorageBackup, StorageRecovery, backup_key, calculate_checksum
from pyfusionstate.storage.adapters import MemoryStorageAdapter


class _Color(Enum):
    RED = "red"


class _Point(BaseModel):
    x: int
    y: int


class _Custom:
    def to_json(self) -> dict[str, Any]:
        return {"kind": "custom"}


# ---------------------------------------------------------------------------
# Codec
# ---------------------------------------------------------------------------


def test_encode_value_handles_common_types() -> None:
    assert encode_value(_Point(x=1, y=2)) == {"x": 1, "y": 2}
    assert encode_value(_Color.RED) == "red"
    assert encode_value(dt.date(2024, 5, 1)) == "2024-05-01"
    assert encode_value(_Custom()) == {"kind": "custom"}
    assert encode_value((1, 2)) == [1, 2]


def test_encode_value_rejects_unknown_objects() -> None:
    with pytest.raises(TypeError):
        encode_value(object())


def test_encode_collects_failures_per_key() -> None:
    encoded = SnapshotCodec().encode({"ok": [1, 2], "bad": object()})

    assert encoded.data == {"ok": [1, 2]}
    assert set(encoded.failures) == {"bad"}


def test_dumps_is_compact() -> None:
    assert dumps({"a": [1, 2], "b": None}) == '{"a":[1,2],"b":null}'


def test_decode_rebuilds_typed_values() -> None:
    codec = SnapshotCodec({"point": _Point, "tags": set[str]})

    decoded = codec.decode('{"point": {"x": 1, "y": 2}, "tags": ["a"], "plain": {"x": 1}}')

    assert decoded.data == {"point": _Point(x=1, y=2), "tags": {"a"}, "plain": {"x": 1}}
    assert decoded.raw["point"] == {"x": 1, "y": 2}
    assert decoded.failures == {}


def test_decode_reports_invalid_typed_values() -> None:
    codec = SnapshotCodec({"point": _Point})

    decoded = codec.decode('{"point": {"x": "not-a-number"}, "other": 1}')

    assert decoded.data == {"other": 1}
    assert set(decoded.failures) == {"point"}


@pytest.mark.parametrize("payload", ["{broken", "[]", '"text"', "42"])
def test_decode_rejects_corrupted_payloads(payload: str) -> None:
    with pytest.raises(PersistenceReadError) as excinfo:
        SnapshotCodec().decode(payload, storage_key="slot")
    assert excinfo.value.storage_key == "slot"


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


def test_checksum_ignores_key_order() -> None:
    assert calculate_checksum({"a": 1, "b": 2}) == calculate_checksum({"b": 2, "a": 1})
    assert calculate_checksum({"a": 1}) != calculate_checksum({"a": 2})
    assert len(calculate_checksum({})) == 16


def test_backup_verification() -> None:
    now = [1_000_000]
    recovery = StorageRecovery(version="1.0", max_age_seconds=60, clock_ms=lambda: now[0])

    backup = recovery.build_backup({"a": 1})
    assert recovery.verify(backup)

    tampered = StorageBackup(timestamp=backup.timestamp, data={"a": 2}, version="1.0", checksum=backup.checksum)
    assert not recovery.verify(tampered)

    now[0] += 61_000
    assert not recovery.verify(backup)


@pytest.mark.asyncio
async def test_recover_ignores_unreadable_backup() -> None:
    adapter = MemoryStorageAdapter({backup_key("slot"): "{not json"})

    assert await StorageRecovery(version="1.0").recover(adapter, "slot") is None
    assert await StorageRecovery(version="1.0").recover(MemoryStorageAdapter(), "slot") is None


@pytest.mark.asyncio
async def test_corrupted_slot_recovered_from_backup() -> None:
    adapter = MemoryStorageAdapter()
    writer = PersistenceCoordinator(PersistenceConfig(adapter=adapter, create_backups=True))
    await writer.save({"a": 1})

    backup = json.loads(await adapter.get_item("fusion_state_all__backup__") or "{}")
    assert backup["data"] == {"a": 1}

    await adapter.set_item("fusion_state_all", "{corrupted")
    errors: list[Exception] = []
    reader = PersistenceCoordinator(
        PersistenceConfig(
            adapter=adapter,
            create_backups=True,
            on_load_error=lambda err, key: errors.append(err),
        )
    )

    restored = await reader.hydrate_async({"a": 0, "b": 2})

    assert restored == {"a": 1, "b": 2}
    assert len(errors) == 1

    # The corrupted primary slot is rewritten on the next save.
    await reader.save({"a": 1})
    assert await adapter.get_item("fusion_state_all") == '{"a":1}'
