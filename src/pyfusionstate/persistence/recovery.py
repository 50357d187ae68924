"""Checksummed backups of the persisted snapshot.

When backups are enabled, every successful write of the primary slot is
followed by a write of ``"{storage_key}__backup__"`` holding the same data
wrapped in a :class:`StorageBackup`. If the primary slot is later found
corrupted, hydration falls back to a backup that still verifies and is
younger than :data:`~pyfusionstate._constants.BACKUP_MAX_AGE_SECONDS`.
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from pyfusionstate._constants import BACKUP_MAX_AGE_SECONDS, BACKUP_SUFFIX
from pyfusionstate.persistence.codec import dumps
from pyfusionstate.storage.adapters import StorageAdapter

_logger = logging.getLogger(__name__)


def _now_ms() -> int:
    """Current epoch timestamp in milliseconds."""
    return int(time.time() * 1000)


def calculate_checksum(data: dict[str, Any]) -> str:
    """Short SHA-256 digest of the canonical JSON form of *data*."""
    canonical = dumps(dict(sorted(data.items())))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def backup_key(storage_key: str) -> str:
    return f"{storage_key}{BACKUP_SUFFIX}"


class StorageBackup(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    timestamp: int
    data: dict[str, Any]
    version: str
    checksum: str


class StorageRecovery:
    """Write and verify snapshot backups."""

    def __init__(
        self,
        *,
        version: str,
        max_age_seconds: float = BACKUP_MAX_AGE_SECONDS,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._version = version
        self._max_age_ms = max_age_seconds * 1000
        self._clock_ms = clock_ms

    def build_backup(self, data: dict[str, Any]) -> StorageBackup:
        return StorageBackup(
            timestamp=self._clock_ms(),
            data=data,
            version=self._version,
            checksum=calculate_checksum(data),
        )

    def verify(self, backup: StorageBackup) -> bool:
        """A backup is usable if its checksum matches and it is recent enough."""
        if calculate_checksum(backup.data) != backup.checksum:
            return False
        return (self._clock_ms() - backup.timestamp) < self._max_age_ms

    async def write_backup(self, adapter: StorageAdapter, storage_key: str, data: dict[str, Any]) -> None:
        """Best-effort backup write; failures are only logged."""
        backup = self.build_backup(data)
        try:
            await adapter.set_item(backup_key(storage_key), backup.model_dump_json())
        except Exception:
            _logger.warning("Failed to write backup for %s", storage_key, exc_info=True)

    async def recover(self, adapter: StorageAdapter, storage_key: str) -> dict[str, Any] | None:
        """Return the data of a valid backup, or ``None``."""
        _logger.debug("Attempting recovery of %s from backup", storage_key)
        try:
            raw = await adapter.get_item(backup_key(storage_key))
        except Exception:
            _logger.warning("Backup read failed for %s", storage_key, exc_info=True)
            return None
        if not raw:
            return None

        try:
            backup = StorageBackup.model_validate_json(raw)
        except ValidationError:
            _logger.warning("Backup for %s is unreadable", storage_key, exc_info=True)
            return None

        if not self.verify(backup):
            _logger.warning("Backup for %s failed verification", storage_key)
            return None

        _logger.info("Recovered %s from backup written at %s", storage_key, backup.timestamp)
        return dict(backup.data)
