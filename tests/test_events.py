from __future__ import annotations

import logging

import pytest

from runner import EventBus, FinishEvent, LogEvent


def test_subscribe_filters_by_type() -> None:
    bus = EventBus()
    everything: list[object] = []
    logs: list[object] = []
    bus.subscribe(everything.append)
    bus.subscribe(logs.append, LogEvent)

    bus.publish(LogEvent(stream="system", line="Ready."))
    bus.publish(FinishEvent(success=True, code=0, message="Transcription complete."))

    assert len(everything) == 2
    assert logs == [LogEvent(stream="system", line="Ready.")]


def test_unsubscribe_stops_delivery() -> None:
    bus = EventBus()
    seen: list[object] = []
    unsubscribe = bus.subscribe(seen.append)
    unsubscribe()
    unsubscribe()
    bus.publish(LogEvent(stream="stdout", line="x"))
    assert seen == []


def test_failing_handler_does_not_block_others(caplog: pytest.LogCaptureFixture) -> None:
    bus = EventBus()
    seen: list[object] = []

    def broken(event: object) -> None:
        raise RuntimeError("boom")

    bus.subscribe(broken)
    bus.subscribe(seen.append)

    with caplog.at_level(logging.ERROR, logger="runner.events"):
        bus.publish(LogEvent(stream="stderr", line="y"))

    assert len(seen) == 1
    assert "failed for LogEvent" in caplog.text
