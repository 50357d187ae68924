"""Typed key handles.

A :class:`StateKey` carries the value type of a slot for static type
checkers while behaving as a plain string key at runtime::

    user_key: StateKey[User | None] = StateKey("user")
    engine.initialize(user_key, None)
    user = engine.get(user_key)  # inferred as ``User | None``
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeAlias, TypeVar

from pyfusionstate._constants import PERSIST_KEY_PREFIX

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class StateKey(Generic[T]):
    """A string key annotated with the type of value it addresses."""

    name: str

    def __post_init__(self) -> None:
        validate_key(self.name)

    def __str__(self) -> str:
        return self.name


KeyLike: TypeAlias = "str | StateKey[Any]"


def validate_key(key: Any) -> str:
    """Return *key* if it is a non-empty string, else raise ``ValueError``."""
    if not isinstance(key, str) or not key:
        raise ValueError(f"State keys must be non-empty strings, got {key!r}")
    return key


def key_name(key: str | StateKey[Any]) -> str:
    """Extract the plain string name from a key or typed key."""
    if isinstance(key, StateKey):
        return key.name
    return validate_key(key)


def namespaced_key(namespace: str, name: str) -> StateKey[Any]:
    """Build a ``"namespace.name"`` typed key."""
    return StateKey(f"{validate_key(namespace)}.{validate_key(name)}")


def persistent_key(key: str | StateKey[Any]) -> str:
    """Return *key* with the ``persist.`` prefix (added once)."""
    name = key_name(key)
    return name if name.startswith(PERSIST_KEY_PREFIX) else f"{PERSIST_KEY_PREFIX}{name}"


def is_persistent_key(key: str, _value: Any = None) -> bool:
    """Key predicate selecting ``persist.``-prefixed keys.

    Signature-compatible with the ``persist_keys`` predicate so it can be
    passed directly as a persistence filter.
    """
    return key.startswith(PERSIST_KEY_PREFIX)
