from __future__ import annotations

import logging

import pytest

from pyfusionstate import ChangeLog, ChangeRecord, EngineConfig, EqualityPolicy, StateEngine


def test_state_tracks_observed_keys_only() -> None:
    engine = StateEngine(EngineConfig(initial_state={"a": 1, "b": 2}))
    log = ChangeLog(engine, ["a", "missing"])

    engine.set("a", 5)
    engine.set("b", 6)

    assert log.keys == ["a", "missing"]
    assert log.state == {"a": 5}


def test_defaults_to_keys_existing_at_creation() -> None:
    engine = StateEngine(EngineConfig(initial_state={"a": 1}))
    log = ChangeLog(engine, track_changes=True)

    engine.set("later", 1)

    assert log.keys == ["a"]
    assert log.changes is None


def test_track_changes_records_previous_and_current() -> None:
    engine = StateEngine(EngineConfig(initial_state={"a": 1}))
    log = ChangeLog(engine, ["a"], track_changes=True)

    engine.set("a", 2)
    engine.set("a", 3)

    assert log.changes == {"a": ChangeRecord(previous=2, current=3)}
    assert list(log.history) == [("a", ChangeRecord(1, 2)), ("a", ChangeRecord(2, 3))]


def test_track_changes_with_deep_equality_skips_equal_structures() -> None:
    engine = StateEngine(EngineConfig(initial_state={"a": {"x": 1}}))
    log = ChangeLog(engine, ["a"], track_changes=True, equality=EqualityPolicy.DEEP)

    engine.set("a", {"x": 1})

    assert log.changes is None
    assert not log.history


def test_log_changes_emits_info_records(caplog: pytest.LogCaptureFixture) -> None:
    engine = StateEngine(EngineConfig(initial_state={"token": "abc", "a": 1}))
    ChangeLog(engine, ["token", "a"], track_changes=True, log_changes=True)

    with caplog.at_level(logging.INFO, logger="pyfusionstate.state.log"):
        engine.set("a", 2)

    assert len(caplog.records) == 1
    message = caplog.records[0].getMessage()
    assert "<redacted>" in message
    assert "abc" not in message


def test_custom_formatter() -> None:
    engine = StateEngine(EngineConfig(initial_state={"a": 1}))
    seen: list[object] = []

    def formatter(state: dict[str, object], changes: dict[str, ChangeRecord] | None) -> str:
        seen.append((state, changes))
        return "formatted"

    ChangeLog(engine, ["a"], log_changes=True, formatter=formatter)
    engine.set("a", 2)

    assert seen == [({"a": 2}, None)]


def test_close_unsubscribes() -> None:
    engine = StateEngine(EngineConfig(initial_state={"a": 1}))
    with ChangeLog(engine, ["a"], track_changes=True) as log:
        engine.set("a", 2)

    engine.set("a", 3)

    assert len(log.history) == 1
    assert engine.bus.subscriber_count("a") == 0


def test_history_keeps_only_most_recent_changes() -> None:
    engine = StateEngine(EngineConfig(initial_state={"a": 0}))
    log = ChangeLog(engine, ["a"], track_changes=True, history_size=2)

    for value in range(1, 6):
        engine.set("a", value)

    assert list(log.history) == [("a", ChangeRecord(3, 4)), ("a", ChangeRecord(4, 5))]
