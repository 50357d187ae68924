"""Change-suppression policy.

A ``set`` whose next value is *equal* to the current value is a no-op:
no mutation, no emit, no persistence. What "equal" means is a pluggable
comparator strategy: one of the :class:`EqualityPolicy` members or any
caller-supplied ``(a, b) -> bool`` callable.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from enum import StrEnum
from typing import Any, TypeAlias

Comparator: TypeAlias = Callable[[Any, Any], bool]

# Immutable scalars compare by value under the reference policy; everything
# else compares by identity.
_SCALAR_TYPES: tuple[type, ...] = (type(None), bool, int, float, complex, str, bytes)


class EqualityPolicy(StrEnum):
    REFERENCE = "reference"
    SHALLOW = "shallow"
    DEEP = "deep"


def reference_equal(a: Any, b: Any) -> bool:
    """Identity for containers and objects, value equality for scalars."""
    if a is b:
        return True
    if type(a) is not type(b) or not isinstance(a, _SCALAR_TYPES):
        return False
    return bool(a == b)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def shallow_equal(a: Any, b: Any) -> bool:
    """Compare one level deep: same keys/length, members reference-equal."""
    if reference_equal(a, b):
        return True
    if isinstance(a, Mapping) and isinstance(b, Mapping):
        if a.keys() != b.keys():
            return False
        return all(reference_equal(a[key], b[key]) for key in a)
    if _is_sequence(a) and _is_sequence(b):
        if len(a) != len(b):
            return False
        return all(reference_equal(x, y) for x, y in zip(a, b, strict=True))
    return False


def deep_equal(a: Any, b: Any) -> bool:
    """Structural equality.

    Mappings compare by keys and recursively by values, sequences (lists and
    tuples alike) element-wise. A mapping never equals a sequence. Other
    values fall back to ``==`` (``True == 1`` is rejected by a type check).
    """
    if a is b:
        return True
    if a is None or b is None:
        return False
    if isinstance(a, Mapping) or isinstance(b, Mapping):
        if not (isinstance(a, Mapping) and isinstance(b, Mapping)):
            return False
        if len(a) != len(b):
            return False
        for key, value in a.items():
            if key not in b or not deep_equal(value, b[key]):
                return False
        return True
    if _is_sequence(a) or _is_sequence(b):
        if not (_is_sequence(a) and _is_sequence(b)) or len(a) != len(b):
            return False
        return all(deep_equal(x, y) for x, y in zip(a, b, strict=True))
    if isinstance(a, bool) != isinstance(b, bool):
        return False
    try:
        return bool(a == b)
    except Exception:
        return False


_COMPARATORS: dict[EqualityPolicy, Comparator] = {
    EqualityPolicy.REFERENCE: reference_equal,
    EqualityPolicy.SHALLOW: shallow_equal,
    EqualityPolicy.DEEP: deep_equal,
}


def resolve_comparator(policy: EqualityPolicy | str | Comparator | None) -> Comparator:
    """Turn a policy name, enum member or callable into a comparator.

    ``None`` resolves to the reference policy.
    """
    if policy is None:
        return reference_equal
    if isinstance(policy, str):
        return _COMPARATORS[EqualityPolicy(policy)]
    if callable(policy):
        return policy
    raise TypeError(f"Unsupported equality policy: {policy!r}")
