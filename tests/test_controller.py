from __future__ import annotations

import os
from pathlib import Path
import stat
import sys
import textwrap

import pytest

from runner import (
    DependencyMissing,
    FinishEvent,
    LaunchError,
    LogEvent,
    NotRunningError,
    ProgressEvent,
    RunController,
    RunnerBusyError,
    RunRequest,
    StageEvent,
    StatusEvent,
    resolve_executor,
)
from runner.controller import STOPPED_CODE

ARGS_HELPER = """
import os, sys, time
from pathlib import Path

def arg(name):
    argv = sys.argv
    return argv[argv.index(name) + 1] if name in argv else None
"""


def _script(tmp_path: Path, name: str, body: str) -> Path:
    path = tmp_path / name
    path.write_text(ARGS_HELPER + textwrap.dedent(body), encoding="utf-8")
    return path


@pytest.fixture
def workspace(tmp_path: Path) -> dict[str, Path]:
    exe = tmp_path / "whisper-cli"
    model = tmp_path / "ggml-small.en.bin"
    exe.write_text("", encoding="utf-8")
    model.write_bytes(b"ggml")
    first = tmp_path / "vmix"
    second = tmp_path / "archive"
    first.mkdir()
    second.mkdir()
    return {"exe": exe, "model": model, "first": first, "second": second, "out": tmp_path / "out"}


def _request(workspace: dict[str, Path], executor: Path, folders: int = 1) -> RunRequest:
    inputs = (str(workspace["first"]), str(workspace["second"]))[:folders]
    return RunRequest(
        input_folders=inputs,
        output_folder=str(workspace["out"]),
        whisper_exe=str(workspace["exe"]),
        model_file=str(workspace["model"]),
        executor_override=str(executor),
    )


class Recorder:
    def __init__(self, controller: RunController) -> None:
        self.events: list[object] = []
        controller.subscribe(self.events.append)

    def of(self, kind: type) -> list:
        return [event for event in self.events if isinstance(event, kind)]

    def log_lines(self, stream: str) -> list[str]:
        return [event.line for event in self.of(LogEvent) if event.stream == stream]


def test_resolve_executor_default_and_override(tmp_path: Path) -> None:
    assert resolve_executor() == [sys.executable, "-m", "batch"]
    script = tmp_path / "executor.py"
    script.write_text("", encoding="utf-8")
    assert resolve_executor(str(script)) == [sys.executable, str(script)]
    with pytest.raises(LaunchError):
        resolve_executor(str(tmp_path / "missing.py"))


def test_folders_run_in_order_and_finish_once(tmp_path: Path, workspace: dict[str, Path]) -> None:
    executor = _script(
        tmp_path,
        "ok.py",
        """
        print("[progress] done=1 total=1 status=ok source=" + arg("--input-folder"), flush=True)
        print("engine warming up", file=sys.stderr, flush=True)
        """,
    )
    controller = RunController(poll_interval=0.05)
    recorder = Recorder(controller)

    status = controller.start(_request(workspace, executor, folders=2))
    assert status.running
    assert controller.wait(timeout=30)

    stages = recorder.of(StageEvent)
    assert [(s.index, s.total) for s in stages] == [(1, 2), (2, 2)]
    assert [s.input_folder for s in stages] == [str(workspace["first"]), str(workspace["second"])]

    progress = recorder.of(ProgressEvent)
    assert [p.record.source for p in progress] == [str(workspace["first"]), str(workspace["second"])]
    assert recorder.log_lines("stderr") == ["engine warming up", "engine warming up"]
    assert not any(line.startswith("[progress]") for line in recorder.log_lines("stdout"))

    finishes = recorder.of(FinishEvent)
    assert len(finishes) == 1
    assert finishes[0].success and finishes[0].code == 0
    assert "Completed folder 2/2" in recorder.log_lines("system")
    assert isinstance(recorder.events[-1], StatusEvent)
    assert not controller.status().running


def test_failing_folder_ends_run(tmp_path: Path, workspace: dict[str, Path]) -> None:
    executor = _script(tmp_path, "fail.py", "sys.exit(1)\n")
    controller = RunController()
    recorder = Recorder(controller)

    controller.start(_request(workspace, executor, folders=2))
    assert controller.wait(timeout=30)

    assert len(recorder.of(StageEvent)) == 1
    (finish,) = recorder.of(FinishEvent)
    assert not finish.success
    assert finish.code == 1
    assert "exit code 1" in finish.message


def test_second_start_is_rejected_and_stop_is_idempotent(tmp_path: Path, workspace: dict[str, Path]) -> None:
    executor = _script(
        tmp_path,
        "block.py",
        """
        stop = Path(arg("--stop-flag-file"))
        deadline = time.monotonic() + 20
        while not stop.exists() and time.monotonic() < deadline:
            time.sleep(0.05)
        """,
    )
    controller = RunController()
    recorder = Recorder(controller)
    controller.start(_request(workspace, executor, folders=2))

    with pytest.raises(RunnerBusyError):
        controller.start(_request(workspace, executor))

    first = controller.stop()
    second = controller.stop()
    assert first.stop_requested and second.stop_requested
    assert (workspace["out"] / ".transcribe.stop").exists()
    assert controller.wait(timeout=30)

    (finish,) = recorder.of(FinishEvent)
    assert not finish.success
    assert finish.code == STOPPED_CODE
    assert finish.message == "Stopped by user before next folder."
    assert len(recorder.of(StageEvent)) == 1
    assert recorder.log_lines("system").count("Stop requested. Finishing current checkpoint...") == 1
    assert not (workspace["out"] / ".transcribe.stop").exists()


def test_toggle_pause_creates_and_removes_marker(tmp_path: Path, workspace: dict[str, Path]) -> None:
    executor = _script(
        tmp_path,
        "block.py",
        """
        stop = Path(arg("--stop-flag-file"))
        deadline = time.monotonic() + 20
        while not stop.exists() and time.monotonic() < deadline:
            time.sleep(0.05)
        """,
    )
    controller = RunController()
    recorder = Recorder(controller)
    controller.start(_request(workspace, executor))
    marker = workspace["out"] / ".transcribe.pause"

    paused = controller.toggle_pause(True)
    assert paused.paused and marker.exists()
    resumed = controller.toggle_pause(False)
    assert not resumed.paused and not marker.exists()

    controller.stop()
    assert controller.wait(timeout=30)
    lines = recorder.log_lines("system")
    assert any(line.startswith("Pause requested (flag:") for line in lines)
    assert "Resume requested." in lines
    (finish,) = recorder.of(FinishEvent)
    assert finish.success and finish.code == 0


def test_pause_while_idle_is_rejected() -> None:
    with pytest.raises(NotRunningError):
        RunController().toggle_pause(True)


def test_stop_while_idle_is_a_no_op() -> None:
    controller = RunController()
    recorder = Recorder(controller)
    status = controller.stop()
    assert not status.running and not status.stop_requested
    assert recorder.events == []


def test_missing_executor_leaves_controller_idle(tmp_path: Path, workspace: dict[str, Path]) -> None:
    controller = RunController()
    recorder = Recorder(controller)

    with pytest.raises(LaunchError):
        controller.start(_request(workspace, tmp_path / "missing.py"))

    assert not controller.status().running
    assert recorder.of(FinishEvent) == []


def test_spawn_failure_leaves_controller_idle(tmp_path: Path, workspace: dict[str, Path]) -> None:
    def failing_popen(*args, **kwargs):
        raise OSError("exec format error")

    executor = _script(tmp_path, "ok.py", "")
    controller = RunController(popen=failing_popen)

    with pytest.raises(LaunchError, match="exec format error"):
        controller.start(_request(workspace, executor))
    assert not controller.status().running


def test_missing_model_is_reported_before_launch(tmp_path: Path, workspace: dict[str, Path]) -> None:
    workspace["model"].unlink()
    controller = RunController()
    with pytest.raises(DependencyMissing):
        controller.start(_request(workspace, _script(tmp_path, "ok.py", "")))
    assert not (workspace["out"]).exists()


BLOCK_UNTIL_STOP = """
stop = Path(arg("--stop-flag-file"))
deadline = time.monotonic() + 20
while not stop.exists() and time.monotonic() < deadline:
    time.sleep(0.05)
"""


def test_stop_after_last_folder_completes_successfully(tmp_path: Path, workspace: dict[str, Path]) -> None:
    controller = RunController()
    recorder = Recorder(controller)
    controller.start(_request(workspace, _script(tmp_path, "block.py", BLOCK_UNTIL_STOP)))

    controller.stop()
    assert controller.wait(timeout=30)

    (finish,) = recorder.of(FinishEvent)
    assert finish.success
    assert finish.code == 0
    assert finish.message == "Transcription complete."


def test_pause_after_run_ends_is_rejected(tmp_path: Path, workspace: dict[str, Path]) -> None:
    controller = RunController()
    controller.start(_request(workspace, _script(tmp_path, "ok.py", "")))
    assert controller.wait(timeout=30)

    with pytest.raises(NotRunningError):
        controller.toggle_pause(True)
    assert not (workspace["out"] / ".transcribe.pause").exists()


def test_grace_period_kills_unresponsive_executor(tmp_path: Path, workspace: dict[str, Path]) -> None:
    executor = _script(
        tmp_path,
        "stubborn.py",
        """
        deadline = time.monotonic() + 60
        while time.monotonic() < deadline:
            time.sleep(0.05)
        """,
    )
    controller = RunController(stop_grace_seconds=0.3)
    recorder = Recorder(controller)
    controller.start(_request(workspace, executor))

    controller.stop()
    assert controller.wait(timeout=30)

    (finish,) = recorder.of(FinishEvent)
    assert not finish.success
    assert finish.code != 0
    assert finish.message == "Stopped by user."
    assert any("killing it" in line for line in recorder.log_lines("system"))


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX sessions")
def test_executor_runs_in_its_own_session(tmp_path: Path, workspace: dict[str, Path]) -> None:
    executor = _script(tmp_path, "sid.py", 'print("sid", os.getsid(0), flush=True)\n')
    controller = RunController()
    recorder = Recorder(controller)

    controller.start(_request(workspace, executor))
    assert controller.wait(timeout=30)

    sids = [line.split()[1] for line in recorder.log_lines("stdout") if line.startswith("sid ")]
    assert sids and sids[0] != str(os.getsid(0))


@pytest.mark.skipif(sys.platform == "win32", reason="shell script stands in for ffmpeg")
def test_batch_executor_failure_fails_the_run(
    tmp_path: Path, workspace: dict[str, Path], monkeypatch: pytest.MonkeyPatch
) -> None:
    root = Path(__file__).resolve().parents[1]
    monkeypatch.setenv("PYTHONPATH", os.pathsep.join(filter(None, [str(root), os.environ.get("PYTHONPATH")])))

    ffmpeg = tmp_path / "ffmpeg"
    ffmpeg.write_text("#!/bin/sh\necho 'Invalid data found when processing input' >&2\nexit 1\n", encoding="utf-8")
    ffmpeg.chmod(ffmpeg.stat().st_mode | stat.S_IXUSR)
    (workspace["first"] / "2024-03-10_Service.mp3").write_bytes(b"\x00")

    request = RunRequest(
        input_folders=(str(workspace["first"]),),
        output_folder=str(workspace["out"]),
        whisper_exe=str(workspace["exe"]),
        model_file=str(workspace["model"]),
        ffmpeg=str(ffmpeg),
    )
    controller = RunController(poll_interval=0.05)
    recorder = Recorder(controller)

    controller.start(request)
    assert controller.wait(timeout=60)

    (progress,) = recorder.of(ProgressEvent)
    assert (progress.record.done, progress.record.total, progress.record.status) == (1, 1, "error")
    (finish,) = recorder.of(FinishEvent)
    assert not finish.success
    assert finish.code == 1
    assert finish.message == "Folder run failed (exit code 1)."
    assert (workspace["out"] / "INDEX.md").exists()
