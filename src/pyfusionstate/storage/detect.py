"""Storage adapter selection.

:func:`detect_best_adapter` is a plain function: it probes the runtime
each time it is called and keeps no module-level cache. Construct the
adapter once and inject it into :class:`~pyfusionstate.config.PersistenceConfig`.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pyfusionstate._constants import PROBE_KEY
from pyfusionstate.storage.adapters import FileStorageAdapter, NoopStorageAdapter, StorageAdapter

_logger = logging.getLogger(__name__)

STATE_DIR_ENV = "FUSION_STATE_DIR"


def _probe_directory(directory: Path) -> bool:
    """Check that *directory* can be created, written and cleaned up."""
    probe = directory / f".{PROBE_KEY}"
    try:
        directory.mkdir(parents=True, exist_ok=True)
        probe.write_text("test", encoding="utf-8")
        probe.unlink()
    except OSError:
        _logger.warning("Storage directory %s detected but not usable", directory, exc_info=True)
        return False
    return True


def detect_best_adapter(
    directory: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> StorageAdapter:
    """Pick the richest storage mechanism usable in this runtime.

    Priority:

    1. :class:`FileStorageAdapter` in *directory*, or in ``$FUSION_STATE_DIR``
       when *directory* is not given, if a probe write succeeds;
    2. :class:`NoopStorageAdapter` (memory-only mode).

    Never raises.
    """
    environ = os.environ if env is None else env
    try:
        candidate = directory if directory is not None else environ.get(STATE_DIR_ENV)
        if candidate:
            path = Path(candidate).expanduser()
            if _probe_directory(path):
                _logger.debug("Using file storage in %s", path)
                return FileStorageAdapter(path, create=False)
    except Exception:
        _logger.warning("Storage detection failed", exc_info=True)

    _logger.info("No durable storage available, using memory-only mode")
    return NoopStorageAdapter()
