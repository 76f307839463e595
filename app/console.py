"""Interactive operator console for transcribe-runner."""

from __future__ import annotations

from pathlib import Path
import platform
import shutil
import threading
from typing import Optional

import psutil
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import Screen
from textual.widgets import Button, Checkbox, Footer, Header, Input, Log, Static

from .config import AppConfig, EngineConfig, RunConfig, get_config_path, load_config, save_config
from runner import (
    FinishEvent,
    LogEvent,
    RunController,
    RunnerError,
    RunnerStatus,
    RunRequest,
    StageEvent,
    StatusEvent,
    get_controller,
)

MAX_LOG_LINES = 1200


def run_console() -> None:
    """Run the operator console."""

    ConsoleApp().run()


def _format_bytes(value: float) -> str:
    """Format bytes in a human-readable form."""

    units = ["B", "KB", "MB", "GB", "TB"]
    size = float(value)
    for unit in units:
        if size < 1024.0:
            return f"{size:.1f} {unit}"
        size /= 1024.0
    return f"{size:.1f} PB"


def _system_stats(config: AppConfig) -> str:
    """Return a formatted snapshot of system stats and engine availability."""

    cpu = psutil.cpu_percent(interval=None)
    memory = psutil.virtual_memory()
    output_root = Path(config.run.output_folder) if config.run.output_folder else Path.cwd()
    disk_path = output_root if output_root.exists() else Path.cwd()
    disk = psutil.disk_usage(str(disk_path))
    ffmpeg_path = shutil.which(config.engine.ffmpeg) or (
        config.engine.ffmpeg if Path(config.engine.ffmpeg).is_file() else None
    )
    whisper_found = Path(config.engine.whisper_exe).is_file() or shutil.which(config.engine.whisper_exe)
    model_found = bool(config.engine.model_file) and Path(config.engine.model_file).is_file()

    lines = [
        f"CPU usage: {cpu:.1f}% ({psutil.cpu_count() or '?'} logical cores)",
        f"RAM: {_format_bytes(memory.used)} / {_format_bytes(memory.total)} ({memory.percent:.1f}%)",
        f"Disk ({disk_path}): {_format_bytes(disk.free)} free / {_format_bytes(disk.total)} total",
        f"Python: {platform.python_version()}",
        f"FFmpeg: {'found' if ffmpeg_path else 'not found'}",
        f"whisper.cpp: {'found' if whisper_found else 'not found'}",
        f"Model: {'found' if model_found else 'not found'}",
    ]
    return "\n".join(lines)


def _status_text(status: RunnerStatus) -> str:
    if not status.running:
        return "IDLE"
    state = "PAUSED" if status.paused else "RUNNING"
    if status.stop_requested:
        state += " [STOP REQUESTED]"
    return state


class ConsoleApp(App[None]):
    """Top-level Textual app for the operator console."""

    CSS = """
    #form, #panel {
        width: 100%;
        max-width: 110;
    }

    .title {
        text-style: bold;
        margin: 0 0 1 0;
    }

    #state {
        text-style: bold;
    }

    #log {
        height: 1fr;
        min-height: 10;
        border: solid $accent;
    }

    #message {
        margin-top: 1;
    }

    .error {
        color: red;
    }
    """

    BINDINGS = [("q", "quit", "Quit")]

    def __init__(self, controller: Optional[RunController] = None) -> None:
        super().__init__()
        self._controller = controller

    @property
    def controller(self) -> RunController:
        if self._controller is None:
            config = _load_or_default()
            self._controller = get_controller(
                poll_interval=config.runner.poll_interval,
                stop_grace_seconds=config.runner.stop_grace_seconds,
            )
        return self._controller

    def on_mount(self) -> None:
        """Start at the run screen."""

        self.push_screen(RunScreen())


def _load_or_default() -> AppConfig:
    try:
        return load_config()
    except ValueError:
        return AppConfig()


class RunScreen(Screen):
    """Run configuration, controls and live log."""

    def __init__(self) -> None:
        super().__init__()
        self._config: AppConfig = AppConfig()
        self._unsubscribe = None
        self._ui_thread: Optional[int] = None

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        with VerticalScroll(id="form"):
            yield Static("Transcription run", classes="title")
            yield Static("IDLE", id="state")
            yield Static("Idle", id="stage")
            yield Static("Primary input folder:")
            yield Input(id="primary_input")
            yield Static("Secondary input folder (optional):")
            yield Input(id="secondary_input")
            yield Static("Output transcript folder:")
            yield Input(id="output_folder")
            yield Static("Whisper executable:")
            yield Input(id="whisper_exe")
            yield Static("Whisper model file:")
            yield Input(id="model_file")
            with Horizontal():
                yield Input(placeholder="Before date YYYY-MM-DD", id="before_date")
                yield Input(placeholder="Threads", id="threads")
                yield Input(placeholder="Test limit (blank = full run)", id="limit")
            with Horizontal():
                yield Checkbox("Fast scan", id="fast_scan")
                yield Checkbox("Force overwrite", id="force")
                yield Checkbox("Top folder only", id="no_recursive")
                yield Checkbox("Keep WAV files", id="keep_audio")
            yield Static("Executor override (optional):")
            yield Input(placeholder="Auto-detected if empty", id="executor")
            with Horizontal():
                yield Button("Run", id="run", variant="primary")
                yield Button("Pause", id="pause")
                yield Button("Stop", id="stop", variant="error")
                yield Button("Settings", id="settings")
                yield Button("System", id="system")
                yield Button("Clear log", id="clear")
            yield Static("Pause is checkpoint-based: an active ffmpeg/whisper step finishes first.")
            yield Static("", id="message")
            yield Log(id="log", max_lines=MAX_LOG_LINES)
        yield Footer()

    def on_mount(self) -> None:
        self._ui_thread = threading.get_ident()
        self._unsubscribe = self.app.controller.subscribe(self._on_event)
        self._write_log("system", "Ready.")
        self._apply_status(self.app.controller.status())

    def on_unmount(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()

    def on_show(self) -> None:
        try:
            self._config = load_config()
        except ValueError as exc:
            self._set_message(f"Config error: {exc}", error=True)
            self._config = AppConfig()

        defaults = {
            "output_folder": self._config.run.output_folder,
            "whisper_exe": self._config.engine.whisper_exe,
            "model_file": self._config.engine.model_file,
            "before_date": self._config.run.before_date or "",
            "threads": str(self._config.engine.threads),
        }
        for field_id, value in defaults.items():
            widget = self.query_one(f"#{field_id}", Input)
            if not widget.value:
                widget.value = value
        for field_id in ("fast_scan", "no_recursive", "keep_audio"):
            self.query_one(f"#{field_id}", Checkbox).value = getattr(self._config.run, field_id)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        button_id = event.button.id
        if button_id == "run":
            self._start_run()
        elif button_id == "pause":
            self._toggle_pause()
        elif button_id == "stop":
            self._stop_run()
        elif button_id == "settings":
            self.app.push_screen(SettingsScreen())
        elif button_id == "system":
            self.app.push_screen(StatusScreen())
        elif button_id == "clear":
            self.query_one("#log", Log).clear()

    def _value(self, field_id: str) -> str:
        return self.query_one(f"#{field_id}", Input).value.strip()

    def _checked(self, field_id: str) -> bool:
        return self.query_one(f"#{field_id}", Checkbox).value

    def _build_request(self) -> Optional[RunRequest]:
        folders = tuple(f for f in (self._value("primary_input"), self._value("secondary_input")) if f)
        if not folders:
            self._set_message("Primary input folder is required.", error=True)
            return None

        try:
            threads = int(self._value("threads") or self._config.engine.threads)
        except ValueError:
            self._set_message("Threads must be a positive number.", error=True)
            return None

        try:
            limit: Optional[int] = int(self._value("limit")) if self._value("limit") else None
        except ValueError:
            limit = None
        if limit is not None and limit <= 0:
            limit = None

        return RunRequest(
            input_folders=folders,
            output_folder=self._value("output_folder"),
            whisper_exe=self._value("whisper_exe"),
            model_file=self._value("model_file"),
            before_date=self._value("before_date") or None,
            threads=threads,
            limit=limit,
            fast_scan=self._checked("fast_scan"),
            force=self._checked("force"),
            no_recursive=self._checked("no_recursive"),
            keep_audio=self._checked("keep_audio"),
            executor_override=self._value("executor") or None,
            ffmpeg=self._config.engine.ffmpeg,
        )

    def _start_run(self) -> None:
        request = self._build_request()
        if request is None:
            return
        self._write_log("system", "Starting transcription run...")
        try:
            status = self.app.controller.start(request)
        except RunnerError as exc:
            self._write_log("system", f"Start failed: {exc}")
            self._set_message(str(exc), error=True)
            self.query_one("#stage", Static).update("Idle")
            return
        self._set_message("")
        self.query_one("#stage", Static).update("Starting...")
        self._apply_status(status)

    def _toggle_pause(self) -> None:
        controller = self.app.controller
        pause = not controller.status().paused
        try:
            status = controller.toggle_pause(pause)
        except (RunnerError, OSError) as exc:
            self._write_log("system", f"Pause/resume failed: {exc}")
            return
        self.query_one("#stage", Static).update("Pause requested" if pause else "Resuming")
        self._apply_status(status)

    def _stop_run(self) -> None:
        status = self.app.controller.stop()
        if status.running:
            self.query_one("#stage", Static).update("Stopping...")
        self._apply_status(status)

    def _on_event(self, event: object) -> None:
        """Receive controller events from reader/supervisor threads or the UI thread."""

        if threading.get_ident() == self._ui_thread:
            self._handle_event(event)
        else:
            self.app.call_from_thread(self._handle_event, event)

    def _handle_event(self, event: object) -> None:
        if isinstance(event, LogEvent):
            self._write_log(event.stream, event.line)
        elif isinstance(event, StageEvent):
            label = f"Running {event.index}/{event.total}: {event.input_folder}"
            self.query_one("#stage", Static).update(label)
        elif isinstance(event, StatusEvent):
            self._apply_status(event.status)
        elif isinstance(event, FinishEvent):
            self.query_one("#stage", Static).update("Complete" if event.success else "Stopped / Failed")
            prefix = "Complete" if event.success else "Ended"
            self._write_log("system", f"{prefix} (code {event.code}): {event.message}")

    def _apply_status(self, status: RunnerStatus) -> None:
        self.query_one("#state", Static).update(_status_text(status))
        self.query_one("#run", Button).disabled = status.running
        self.query_one("#pause", Button).disabled = not status.running
        self.query_one("#stop", Button).disabled = not status.running
        self.query_one("#pause", Button).label = "Resume" if status.paused else "Pause"

    def _write_log(self, stream: str, line: str) -> None:
        self.query_one("#log", Log).write_line(f"[{stream}] {line}")

    def _set_message(self, text: str, error: bool = False) -> None:
        message = self.query_one("#message", Static)
        message.update(text)
        message.remove_class("error")
        if error:
            message.add_class("error")


class SettingsScreen(Screen):
    """Screen for viewing and updating config values."""

    def __init__(self) -> None:
        super().__init__()
        self._config: AppConfig = AppConfig()

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("Settings", classes="title")
        with Vertical(id="form"):
            yield Static("", id="config_path")
            yield Static("Whisper executable:")
            yield Input(id="whisper_exe")
            yield Static("Model file:")
            yield Input(id="model_file")
            yield Static("FFmpeg:")
            yield Input(id="ffmpeg")
            yield Static("Threads:")
            yield Input(id="threads")
            yield Static("Output folder:")
            yield Input(id="output_folder")
            with Horizontal():
                yield Button("Save", id="save")
                yield Button("Reset to defaults", id="reset")
                yield Button("Back", id="back")
            yield Static("", id="message")
        yield Footer()

    def on_show(self) -> None:
        self._reload_config()

    def on_button_pressed(self, event: Button.Pressed) -> None:
        button_id = event.button.id
        if button_id == "back":
            self.app.pop_screen()
        elif button_id == "save":
            self._save()
        elif button_id == "reset":
            self._reset()

    def _reload_config(self) -> None:
        try:
            self._config = load_config()
        except ValueError as exc:
            self._set_message(f"Config error: {exc}", error=True)
            self._config = AppConfig()

        self.query_one("#config_path", Static).update(f"Config: {get_config_path()}")
        self._fill(self._config)

    def _fill(self, config: AppConfig) -> None:
        self.query_one("#whisper_exe", Input).value = config.engine.whisper_exe
        self.query_one("#model_file", Input).value = config.engine.model_file
        self.query_one("#ffmpeg", Input).value = config.engine.ffmpeg
        self.query_one("#threads", Input).value = str(config.engine.threads)
        self.query_one("#output_folder", Input).value = config.run.output_folder

    def _save(self) -> None:
        def value(field_id: str) -> str:
            return self.query_one(f"#{field_id}", Input).value.strip()

        try:
            threads = int(value("threads") or self._config.engine.threads)
        except ValueError:
            self._set_message("Threads must be a positive number.", error=True)
            return
        if threads < 1:
            self._set_message("Threads must be a positive number.", error=True)
            return

        current = self._config
        new_config = AppConfig(
            engine=EngineConfig(
                backend=current.engine.backend,
                whisper_exe=value("whisper_exe") or current.engine.whisper_exe,
                model_file=value("model_file"),
                ffmpeg=value("ffmpeg") or current.engine.ffmpeg,
                threads=threads,
            ),
            run=RunConfig(
                output_folder=value("output_folder"),
                before_date=current.run.before_date,
                fast_scan=current.run.fast_scan,
                no_recursive=current.run.no_recursive,
                keep_audio=current.run.keep_audio,
            ),
            runner=current.runner,
        )

        path = save_config(new_config)
        self._config = new_config
        self._set_message(f"Saved: {path}")

    def _reset(self) -> None:
        defaults = AppConfig()
        path = save_config(defaults)
        self._config = defaults
        self._fill(defaults)
        self._set_message(f"Reset to defaults: {path}")

    def _set_message(self, text: str, error: bool = False) -> None:
        message = self.query_one("#message", Static)
        message.update(text)
        message.remove_class("error")
        if error:
            message.add_class("error")


class StatusScreen(Screen):
    """Screen for live system status."""

    def compose(self) -> ComposeResult:
        yield Header()
        yield Static("System status (live)", classes="title")
        with Vertical(id="panel"):
            yield Static("", id="stats")
            with Horizontal():
                yield Button("Refresh", id="refresh")
                yield Button("Back", id="back")
        yield Footer()

    def on_mount(self) -> None:
        psutil.cpu_percent(interval=None)
        self._refresh()
        self.set_interval(1.0, self._refresh)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "back":
            self.app.pop_screen()
        elif event.button.id == "refresh":
            self._refresh()

    def _refresh(self) -> None:
        self.query_one("#stats", Static).update(_system_stats(_load_or_default()))
