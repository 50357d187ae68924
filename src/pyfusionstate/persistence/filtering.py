"""Selection of the keys that are mirrored to storage."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pyfusionstate.config import PersistKeys

_logger = logging.getLogger(__name__)


def filter_persist_keys(snapshot: Mapping[str, Any], persist_keys: PersistKeys) -> dict[str, Any]:
    """Return the part of *snapshot* selected by *persist_keys*.

    * ``True``: every key.
    * ``False``: nothing.
    * sequence of keys: the listed keys that are present in *snapshot*.
    * predicate: keys for which ``predicate(key, value)`` returns ``True``.
      A predicate that raises excludes the key.
    """
    if persist_keys is True:
        return dict(snapshot)
    if persist_keys is False:
        return {}

    if callable(persist_keys):
        selected: dict[str, Any] = {}
        for key, value in snapshot.items():
            try:
                accepted = persist_keys(key, value)
            except Exception:
                _logger.warning("persist_keys predicate failed for %r; key not persisted", key, exc_info=True)
                continue
            if accepted is True:
                selected[key] = value
        return selected

    return {key: snapshot[key] for key in persist_keys if key in snapshot}
