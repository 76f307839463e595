"""Events published by the run controller and a small publish/subscribe bus."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import Callable, Literal, Union

from batch.progress import ProgressRecord

LogStream = Literal["stdout", "stderr", "system", "stage", "preflight"]

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RunnerStatus:
    running: bool = False
    paused: bool = False
    stop_requested: bool = False


@dataclass(frozen=True, slots=True)
class LogEvent:
    stream: LogStream
    line: str


@dataclass(frozen=True, slots=True)
class StageEvent:
    index: int
    total: int
    input_folder: str


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    record: ProgressRecord


@dataclass(frozen=True, slots=True)
class StatusEvent:
    status: RunnerStatus


@dataclass(frozen=True, slots=True)
class FinishEvent:
    success: bool
    code: int
    message: str


Event = Union[LogEvent, StageEvent, ProgressEvent, StatusEvent, FinishEvent]
Handler = Callable[[Event], None]


class EventBus:
    """Thread-safe fan-out of events to subscribed handlers.

    Handlers run on the publishing thread (a stream reader or the run
    supervisor) and must return quickly. A failing handler is logged and does
    not affect other subscribers or the run.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: list[tuple[Handler, tuple[type, ...]]] = []

    def subscribe(self, handler: Handler, *event_types: type) -> Callable[[], None]:
        """Register `handler` for the given event types (all events when none given).

        Returns:
            A callable that removes the subscription.
        """

        entry = (handler, tuple(event_types))
        with self._lock:
            self._handlers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._handlers:
                    self._handlers.remove(entry)

        return unsubscribe

    def publish(self, event: Event) -> None:
        with self._lock:
            handlers = list(self._handlers)
        for handler, event_types in handlers:
            if event_types and not isinstance(event, event_types):
                continue
            try:
                handler(event)
            except Exception:  # noqa: BLE001 - subscriber boundary
                _logger.exception("Event handler %r failed for %s", handler, type(event).__name__)
