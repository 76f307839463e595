"""Run controller: owns the single active run and supervises executor processes.

One executor process is launched per input folder, strictly in order. The
controller drains each process's stdout and stderr on reader threads and
republishes lines as events; a supervisor thread waits for exit and emits
exactly one FinishEvent per run.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
import subprocess
import sys
import threading
import time
from typing import IO, Any, Callable, Optional

import psutil

from batch.gate import PauseMarker, markers_for
from batch.progress import parse_progress

from .errors import LaunchError, NotRunningError, RunnerBusyError
from .events import (
    Event,
    EventBus,
    FinishEvent,
    LogEvent,
    LogStream,
    ProgressEvent,
    RunnerStatus,
    StageEvent,
    StatusEvent,
)
from .request import RunRequest

STOPPED_CODE = 130

_logger = logging.getLogger(__name__)


def resolve_executor(override: Optional[str] = None) -> list[str]:
    """Return the command prefix that launches the batch executor.

    Args:
        override: Optional path to an executor. `.py` files run under the
            current interpreter; anything else is executed directly.

    Raises:
        LaunchError: If the override does not exist.
    """

    if override:
        path = Path(override).expanduser()
        if not path.exists():
            raise LaunchError(f"Executor path does not exist: {path}")
        if path.suffix.lower() == ".py":
            return [sys.executable, str(path)]
        return [str(path)]
    return [sys.executable, "-m", "batch"]


def _detach_kwargs() -> dict:
    """Popen kwargs that keep terminal Ctrl+C away from the executor and its engines."""

    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def kill_process_tree(pid: int) -> None:
    """Kill a process and all of its descendants."""

    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return
    processes = parent.children(recursive=True) + [parent]
    for process in processes:
        try:
            process.kill()
        except psutil.NoSuchProcess:
            continue
    psutil.wait_procs(processes, timeout=5)


class RunController:
    """Process-wide supervisor for at most one transcription run."""

    def __init__(
        self,
        bus: Optional[EventBus] = None,
        poll_interval: Optional[float] = None,
        stop_grace_seconds: Optional[float] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ) -> None:
        """Create a controller.

        Args:
            bus: Event bus to publish on (a new one by default).
            poll_interval: Pause-marker poll interval forwarded to the executor.
            stop_grace_seconds: When set, kill the executor's process tree this
                many seconds after `stop()` if it has not exited. None disables it.
            popen: Process factory.
        """

        self.events = bus or EventBus()
        self._poll_interval = poll_interval
        self._stop_grace_seconds = stop_grace_seconds
        self._popen = popen

        self._lock = threading.Lock()
        self._running = False
        self._stop_requested = False
        self._stop_requested_at: Optional[float] = None
        self._pause_marker: Optional[PauseMarker] = None
        self._stop_marker: Optional[PauseMarker] = None
        self._process: Optional[subprocess.Popen] = None
        self._supervisor: Optional[threading.Thread] = None

    def subscribe(self, handler: Callable[[Event], None], *event_types: type) -> Callable[[], None]:
        return self.events.subscribe(handler, *event_types)

    def status(self) -> RunnerStatus:
        with self._lock:
            return self._status_locked()

    def _status_locked(self) -> RunnerStatus:
        paused = bool(self._running and self._pause_marker and self._pause_marker.is_set())
        return RunnerStatus(
            running=self._running,
            paused=paused,
            stop_requested=self._stop_requested,
        )

    def start(self, request: RunRequest) -> RunnerStatus:
        """Validate `request` and launch its first executor process.

        Returns immediately; the run continues on a supervisor thread.

        Raises:
            ValidationError: If the request is malformed.
            DependencyMissing: If the engine or model file is absent.
            RunnerBusyError: If a run is already active.
            LaunchError: If the executor cannot be started (no state change).
        """

        request = request.validated()
        command = resolve_executor(request.executor_override)
        output_folder = Path(request.output_folder)

        with self._lock:
            if self._running:
                raise RunnerBusyError("A transcription run is already in progress.")

            try:
                output_folder.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise LaunchError(f"Cannot create output folder {output_folder}: {exc}") from exc

            pause_marker, stop_marker = markers_for(output_folder)
            pause_marker.clear()
            stop_marker.clear()

            first = self._spawn(command, request, request.input_folders[0], pause_marker, stop_marker)

            self._running = True
            self._stop_requested = False
            self._stop_requested_at = None
            self._pause_marker = pause_marker
            self._stop_marker = stop_marker
            self._process = first
            self._supervisor = threading.Thread(
                target=self._supervise,
                args=(command, request, first),
                name="transcribe-run",
                daemon=True,
            )
            status = self._status_locked()

        self._log("system", f"Using batch executor: {' '.join(command)}")
        self._publish_status()
        self._supervisor.start()
        return status

    def toggle_pause(self, paused: bool) -> RunnerStatus:
        """Create (paused=True) or remove (paused=False) the checkpoint marker.

        Raises:
            NotRunningError: If no run is active.
        """

        with self._lock:
            if not self._running or self._pause_marker is None:
                raise NotRunningError("No active run to pause/resume.")
            marker = self._pause_marker
            if paused:
                marker.request()
                changed = True
            else:
                changed = marker.clear()

        if paused:
            self._log("system", f"Pause requested (flag: {marker.path}).")
        elif changed:
            self._log("system", "Resume requested.")

        return self._publish_status()

    def stop(self) -> RunnerStatus:
        """Ask the run to end. No new file or folder starts after this.

        Idempotent and non-blocking; the run reaches Idle when the executor exits.
        """

        with self._lock:
            if not self._running or self._stop_requested:
                return self._status_locked()
            self._stop_requested = True
            self._stop_requested_at = time.monotonic()
            if self._stop_marker is not None:
                self._stop_marker.request("stop")

        self._log("system", "Stop requested. Finishing current checkpoint...")
        return self._publish_status()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the current run's supervisor finishes. Returns False on timeout."""

        supervisor = self._supervisor
        if supervisor is None:
            return True
        supervisor.join(timeout)
        return not supervisor.is_alive()

    def _spawn(
        self,
        command: list[str],
        request: RunRequest,
        folder: str,
        pause_marker: PauseMarker,
        stop_marker: PauseMarker,
    ) -> subprocess.Popen:
        args = command + request.executor_args(
            folder, pause_marker.path, stop_marker.path, poll_interval=self._poll_interval
        )
        _logger.debug("Launching executor: %s", args)
        env = dict(os.environ, PYTHONUNBUFFERED="1", PYTHONIOENCODING="utf-8")
        try:
            return self._popen(
                args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                env=env,
                **_detach_kwargs(),
            )
        except OSError as exc:
            raise LaunchError(f"Failed to start executor process: {exc}") from exc

    def _supervise(self, command: list[str], request: RunRequest, first: subprocess.Popen) -> None:
        total = len(request.input_folders)
        success, code, message = True, 0, "Transcription complete."
        try:
            for index, folder in enumerate(request.input_folders, start=1):
                if index == 1:
                    process = first
                else:
                    assert self._pause_marker is not None and self._stop_marker is not None
                    try:
                        process = self._spawn(
                            command, request, folder, self._pause_marker, self._stop_marker
                        )
                    except LaunchError as exc:
                        success, code, message = False, 1, str(exc)
                        self._log("system", message)
                        break
                    with self._lock:
                        self._process = process

                self.events.publish(StageEvent(index=index, total=total, input_folder=folder))
                self._log("stage", f"Running {index}/{total}: {folder}")
                self._log("system", f"Starting folder {index}/{total}: {folder}")

                readers = [
                    self._start_reader(process.stdout, "stdout"),
                    self._start_reader(process.stderr, "stderr"),
                ]
                exit_code = self._wait_for_exit(process)
                for reader in readers:
                    reader.join()

                if exit_code != 0:
                    success, code = False, exit_code
                    if self.status().stop_requested:
                        message = "Stopped by user."
                    else:
                        message = f"Folder run failed (exit code {exit_code})."
                    self._log("system", message)
                    break

                self._log("system", f"Completed folder {index}/{total}")
                if index < total and self.status().stop_requested:
                    success, code = False, STOPPED_CODE
                    message = "Stopped by user before next folder."
                    self._log("system", message)
                    break
        except Exception as exc:  # noqa: BLE001 - run boundary, surfaced as FinishEvent
            _logger.exception("Run supervisor crashed")
            success, code, message = False, 1, f"Runner crashed: {exc}"
            self._log("system", message)
        finally:
            self._finish(success, code, message)

    def _wait_for_exit(self, process: subprocess.Popen) -> int:
        while True:
            try:
                return process.wait(timeout=0.2)
            except subprocess.TimeoutExpired:
                pass

            with self._lock:
                requested_at = self._stop_requested_at
            grace = self._stop_grace_seconds
            if grace is not None and requested_at is not None:
                if time.monotonic() - requested_at >= grace:
                    self._log("system", f"Executor still running {grace:g}s after stop; killing it.")
                    kill_process_tree(process.pid)
                    return process.wait()

    def _start_reader(self, pipe: Optional[IO[str]], stream: LogStream) -> threading.Thread:
        thread = threading.Thread(
            target=self._read_lines,
            args=(pipe, stream),
            name=f"transcribe-{stream}",
            daemon=True,
        )
        thread.start()
        return thread

    def _read_lines(self, pipe: Optional[IO[str]], stream: LogStream) -> None:
        if pipe is None:
            return
        try:
            for raw in iter(pipe.readline, ""):
                line = raw.rstrip("\r\n")
                record = parse_progress(line) if stream == "stdout" else None
                if record is not None:
                    self.events.publish(ProgressEvent(record=record))
                else:
                    self._log(stream, line)
        except (OSError, ValueError) as exc:
            self._log("system", f"log read error: {exc}")
        finally:
            pipe.close()

    def _finish(self, success: bool, code: int, message: str) -> None:
        with self._lock:
            for marker in (self._pause_marker, self._stop_marker):
                if marker is not None:
                    marker.clear()
            self._running = False
            self._stop_requested = False
            self._stop_requested_at = None
            self._pause_marker = None
            self._stop_marker = None
            self._process = None

        self.events.publish(FinishEvent(success=success, code=code, message=message))
        self._publish_status()

    def _log(self, stream: LogStream, line: str) -> None:
        self.events.publish(LogEvent(stream=stream, line=line))

    def _publish_status(self) -> RunnerStatus:
        status = self.status()
        self.events.publish(StatusEvent(status=status))
        return status


_default: Optional[RunController] = None
_default_lock = threading.Lock()


def get_controller(**kwargs: Any) -> RunController:
    """Return the process-wide controller, creating it on first use.

    Keyword arguments are passed to `RunController` only when it is created.
    """

    global _default
    with _default_lock:
        if _default is None:
            _default = RunController(**kwargs)
        return _default
