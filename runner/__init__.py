"""Run controller: single-run supervision of batch executor processes."""

from __future__ import annotations

from .controller import RunController, get_controller, kill_process_tree, resolve_executor
from .errors import (
    DependencyMissing,
    LaunchError,
    NotRunningError,
    RunnerBusyError,
    RunnerError,
    ValidationError,
)
from .events import (
    EventBus,
    FinishEvent,
    LogEvent,
    ProgressEvent,
    RunnerStatus,
    StageEvent,
    StatusEvent,
)
from .request import RunRequest

__all__ = [
    "DependencyMissing",
    "EventBus",
    "FinishEvent",
    "LaunchError",
    "LogEvent",
    "NotRunningError",
    "ProgressEvent",
    "RunController",
    "RunRequest",
    "RunnerBusyError",
    "RunnerError",
    "RunnerStatus",
    "StageEvent",
    "StatusEvent",
    "ValidationError",
    "get_controller",
    "kill_process_tree",
    "resolve_executor",
]
