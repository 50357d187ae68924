"""Snapshot (de)serialization.

Values are converted explicitly, one key at a time, so that a single value
that cannot be represented as JSON only drops that key from the payload:

* objects exposing a ``to_json()`` method are asked for their JSON-able form;
* everything else goes through :func:`pydantic_core.to_jsonable_python`
  (pydantic models, dataclasses, datetimes, enums, sets, ...).

On the way back, keys listed in ``value_types`` are validated with a
:class:`pydantic.TypeAdapter`, which rebuilds models and typed containers
from their JSON form.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError, to_jsonable_python

from pyfusionstate.exceptions import PersistenceReadError


@dataclass
class EncodedSnapshot:
    """JSON-able form of a snapshot plus the keys that could not be encoded."""

    data: dict[str, Any] = field(default_factory=dict)
    failures: dict[str, Exception] = field(default_factory=dict)


@dataclass
class DecodedSnapshot:
    """Parsed snapshot plus the keys rejected by type validation.

    ``raw`` is the JSON form as stored, used as the write-suppression
    baseline.
    """

    data: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)
    failures: dict[str, Exception] = field(default_factory=dict)


def encode_value(value: Any) -> Any:
    """Return the JSON-able form of *value*.

    Raises ``TypeError`` if the value cannot be represented; exceptions from
    a ``to_json()`` method propagate unchanged.
    """
    to_json = getattr(value, "to_json", None)
    if callable(to_json):
        value = to_json()
    try:
        return to_jsonable_python(value)
    except PydanticSerializationError as exc:
        raise TypeError(str(exc)) from exc


def dumps(data: Mapping[str, Any]) -> str:
    """Compact JSON text of an already encoded snapshot."""
    return json.dumps(data, separators=(",", ":"))


class SnapshotCodec:
    """Encode snapshots for storage and decode stored payloads."""

    def __init__(self, value_types: Mapping[str, Any] | None = None) -> None:
        self._adapters: dict[str, TypeAdapter[Any]] = {
            key: TypeAdapter(tp) for key, tp in (value_types or {}).items()
        }

    def encode(self, snapshot: Mapping[str, Any]) -> EncodedSnapshot:
        result = EncodedSnapshot()
        for key, value in snapshot.items():
            try:
                result.data[key] = encode_value(value)
            except Exception as exc:
                # Includes whatever a value's own to_json() raises.
                result.failures[key] = exc
        return result

    def decode(self, text: str, *, storage_key: str = "") -> DecodedSnapshot:
        """Parse a stored payload.

        Raises :class:`PersistenceReadError` when *text* is not JSON or its
        top level is not an object (corrupted slot).
        """
        try:
            parsed = json.loads(text)
        except (json.JSONDecodeError, TypeError) as exc:
            raise PersistenceReadError(f"Stored state is not valid JSON: {exc}", storage_key=storage_key) from exc
        if not isinstance(parsed, dict):
            raise PersistenceReadError(
                f"Stored state must be a JSON object, got {type(parsed).__name__}",
                storage_key=storage_key,
            )
        return self.decode_mapping(parsed)

    def decode_mapping(self, parsed: Mapping[str, Any]) -> DecodedSnapshot:
        """Apply ``value_types`` validation to an already parsed object."""
        result = DecodedSnapshot(raw=dict(parsed))
        for key, raw in parsed.items():
            adapter = self._adapters.get(key)
            if adapter is None:
                result.data[key] = raw
                continue
            try:
                result.data[key] = adapter.validate_python(raw)
            except ValidationError as exc:
                result.failures[key] = exc
        return result
