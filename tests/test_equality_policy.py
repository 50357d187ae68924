from __future__ import annotations

import pytest

from pyfusionstate.state.keys import StateKey, is_persistent_key, key_name, namespaced_key, persistent_key
from pyfusionstate.state.policy import (
    EqualityPolicy,
    deep_equal,
    reference_equal,
    resolve_comparator,
    shallow_equal,
)


def test_reference_equal() -> None:
    shared = [1]
    assert reference_equal(shared, shared)
    assert not reference_equal([1], [1])
    assert reference_equal("abc", "".join(["a", "bc"]))
    assert reference_equal(None, None)
    assert not reference_equal(1, 1.0)
    assert not reference_equal(True, 1)


def test_shallow_equal() -> None:
    inner = {"deep": 1}
    assert shallow_equal({"a": 1, "b": inner}, {"a": 1, "b": inner})
    assert not shallow_equal({"a": 1, "b": {"deep": 1}}, {"a": 1, "b": {"deep": 1}})
    assert not shallow_equal({"a": 1}, {"a": 1, "b": 2})
    assert shallow_equal([1, "x"], [1, "x"])
    assert not shallow_equal([1], [1, 2])


def test_deep_equal() -> None:
    assert deep_equal({"a": [1, {"b": (2, 3)}]}, {"a": [1, {"b": [2, 3]}]})
    assert not deep_equal({"a": [1, 2]}, {"a": [1, 3]})
    assert not deep_equal({"a": 1}, [("a", 1)])
    assert not deep_equal({"a": None}, {"b": None})
    assert not deep_equal(True, 1)
    assert deep_equal(1, 1.0)
    assert not deep_equal("ab", ["a", "b"])


def test_resolve_comparator() -> None:
    assert resolve_comparator(None) is reference_equal
    assert resolve_comparator("deep") is deep_equal
    assert resolve_comparator(EqualityPolicy.SHALLOW) is shallow_equal

    def custom(a: object, b: object) -> bool:
        return True

    assert resolve_comparator(custom) is custom
    with pytest.raises(ValueError):
        resolve_comparator("fuzzy")
    with pytest.raises(TypeError):
        resolve_comparator(42)  # type: ignore[arg-type]


def test_state_key_helpers() -> None:
    key: StateKey[int] = StateKey("count")
    assert str(key) == "count"
    assert key_name(key) == "count"
    assert namespaced_key("user", "prefs").name == "user.prefs"
    assert persistent_key("theme") == "persist.theme"
    assert persistent_key("persist.theme") == "persist.theme"
    assert is_persistent_key("persist.theme", "dark")
    assert not is_persistent_key("theme")
    with pytest.raises(ValueError):
        StateKey("")
