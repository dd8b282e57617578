# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger, metrics


def capture(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_enabled", True)
    return lines


# ---------------------------------------------------------------------
# log_event
# ---------------------------------------------------------------------

def test_log_event_emits_one_json_line(monkeypatch: pytest.MonkeyPatch) -> None:
    lines = capture(monkeypatch)
    payload: dict[str, Any] = {"event_type": "TEST", "ts_ms": 5, "value": 123}

    logger.log_event(payload)

    assert len(lines) == 1
    assert "\n" not in lines[0]
    assert json.loads(lines[0]) == payload


def test_log_event_adds_timestamp_first(monkeypatch: pytest.MonkeyPatch) -> None:
    lines = capture(monkeypatch)

    logger.log_event({"event_type": "TEST"})

    decoded = json.loads(lines[0])
    assert list(decoded) == ["ts_ms", "event_type"]
    assert isinstance(decoded["ts_ms"], int)


def test_unserializable_event_falls_back(monkeypatch: pytest.MonkeyPatch) -> None:
    lines = capture(monkeypatch)

    logger.log_event({"event_type": "TEST", "ts_ms": 1, "payload": object()})

    decoded = json.loads(lines[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"
    assert decoded["ts_ms"] == 1
    assert "payload" in decoded["original_event_repr"]


def test_configure_disables_sink(monkeypatch: pytest.MonkeyPatch) -> None:
    lines = capture(monkeypatch)

    logger.configure(enabled=False)
    logger.log_event({"event_type": "DROPPED"})
    logger.configure(enabled=True)
    logger.log_event({"event_type": "KEPT"})

    assert [json.loads(line)["event_type"] for line in lines] == ["KEPT"]


# ---------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------

def test_timed_emits_metric_even_on_exception(monkeypatch: pytest.MonkeyPatch) -> None:
    lines = capture(monkeypatch)

    with pytest.raises(RuntimeError):
        with metrics.timed("upstream_connect", session_id="s1", details={"attempt": 1}):
            raise RuntimeError("boom")

    (event,) = [json.loads(line) for line in lines]
    assert event["event_type"] == "METRIC_TIMER"
    assert event["metric"] == "upstream_connect"
    assert event["session_id"] == "s1"
    assert event["details"] == {"attempt": 1}
    assert event["value_ms"] >= 0
    assert metrics.active_timer_count() == 0


def test_stop_timer_is_single_shot(monkeypatch: pytest.MonkeyPatch) -> None:
    lines = capture(monkeypatch)

    timer_id = metrics.start_timer("setup")
    assert metrics.stop_timer(timer_id) is not None
    assert metrics.stop_timer(timer_id) is None

    assert len(lines) == 1


def test_discard_timer_emits_nothing(monkeypatch: pytest.MonkeyPatch) -> None:
    lines = capture(monkeypatch)

    timer_id = metrics.start_timer("setup")
    metrics.discard_timer(timer_id)

    assert metrics.stop_timer(timer_id) is None
    assert lines == []
