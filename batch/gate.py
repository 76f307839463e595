"""File-marker checkpoint gate shared by the controller and the executor.

The controller only creates and removes markers. The executor polls them at
safe points between steps, never while an engine call is in flight.
"""

from __future__ import annotations

import logging
from pathlib import Path
import time
from typing import Callable, Optional

PAUSE_MARKER_NAME = ".transcribe.pause"
STOP_MARKER_NAME = ".transcribe.stop"

_logger = logging.getLogger(__name__)


class PauseMarker:
    """A marker file whose presence alone carries the signal."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def __repr__(self) -> str:
        return f"PauseMarker({str(self.path)!r})"

    def request(self, content: str = "paused") -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(content, encoding="utf-8")

    def clear(self) -> bool:
        """Remove the marker. Returns True if it existed."""

        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True

    def is_set(self) -> bool:
        return self.path.exists()


def markers_for(output_folder: Path) -> tuple[PauseMarker, PauseMarker]:
    """Return the (pause, stop) markers used for runs writing to `output_folder`."""

    return (
        PauseMarker(output_folder / PAUSE_MARKER_NAME),
        PauseMarker(output_folder / STOP_MARKER_NAME),
    )


class CheckpointGate:
    """Cooperative pause point polled by the executor between steps."""

    def __init__(
        self,
        pause: PauseMarker,
        stop: Optional[PauseMarker] = None,
        poll_interval: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.pause = pause
        self.stop = stop
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._logger = logger or _logger

    def stop_requested(self) -> bool:
        return self.stop is not None and self.stop.is_set()

    def wait(self) -> bool:
        """Block while the pause marker exists.

        Logs one notice when a pause is first seen and one when it clears.

        Returns:
            False if a stop was requested (before or during the pause), else True.
        """

        if self.stop_requested():
            return False
        if not self.pause.is_set():
            return True

        self._logger.info("Paused at checkpoint (remove %s to resume).", self.pause.path)
        while self.pause.is_set():
            if self.stop_requested():
                self._logger.info("Stop requested while paused.")
                return False
            self._sleep(self.poll_interval)
        self._logger.info("Resumed.")
        return not self.stop_requested()
