"""CLI commands for transcribe-runner."""

from __future__ import annotations

from dataclasses import replace
import json
import logging
from pathlib import Path
import threading
from typing import List, Optional

import typer

from .config import AppConfig, get_config_path, load_config
from .logging import configure_logging
from runner import (
    DependencyMissing,
    FinishEvent,
    LogEvent,
    ProgressEvent,
    RunnerError,
    RunRequest,
    StageEvent,
    ValidationError,
    get_controller,
)


def build_request(
    config: AppConfig,
    input_folders: List[Path],
    out: Optional[Path] = None,
    whisper_exe: Optional[str] = None,
    model_file: Optional[str] = None,
    before_date: Optional[str] = None,
    threads: Optional[int] = None,
    limit: Optional[int] = None,
    fast_scan: bool = False,
    force: bool = False,
    no_recursive: bool = False,
    keep_audio: bool = False,
    executor: Optional[str] = None,
) -> RunRequest:
    """Merge command-line values over config defaults."""

    return RunRequest(
        input_folders=tuple(str(folder) for folder in input_folders),
        output_folder=str(out) if out else config.run.output_folder,
        whisper_exe=whisper_exe or config.engine.whisper_exe,
        model_file=model_file or config.engine.model_file,
        before_date=before_date or config.run.before_date,
        threads=threads or config.engine.threads,
        limit=limit,
        fast_scan=fast_scan or config.run.fast_scan,
        force=force,
        no_recursive=no_recursive or config.run.no_recursive,
        keep_audio=keep_audio or config.run.keep_audio,
        executor_override=executor,
        ffmpeg=config.engine.ffmpeg,
    )


def load_request_file(path: Path, config: AppConfig) -> RunRequest:
    """Read a camelCase JSON start request, filling the FFmpeg path from config.

    Raises:
        ValueError: If the file is not a JSON object.
    """

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid request file {path}: {exc}") from exc
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid request file {path}: expected a JSON object.")

    request = RunRequest.from_mapping(raw)
    if not request.ffmpeg:
        request = replace(request, ffmpeg=config.engine.ffmpeg)
    return request


def create_cli_app() -> typer.Typer:
    """Create the Typer CLI app (kept as a factory to avoid global state)."""

    app = typer.Typer(
        add_completion=False,
        help="Batch transcription of recorded services with FFmpeg and whisper.cpp.",
        no_args_is_help=True,
    )

    @app.command("run")
    def run(
        input_folders: Optional[List[Path]] = typer.Argument(
            None,
            exists=True,
            file_okay=False,
            dir_okay=True,
            help="One or more folders to transcribe, processed in order.",
        ),
        out: Optional[Path] = typer.Option(
            None,
            "--out",
            "-o",
            file_okay=False,
            dir_okay=True,
            help="Transcript output folder (defaults to [run].output_folder).",
        ),
        whisper_exe: Optional[str] = typer.Option(None, "--whisper-exe", help="whisper.cpp executable."),
        model_file: Optional[str] = typer.Option(None, "--model-file", help="whisper.cpp model file."),
        before_date: Optional[str] = typer.Option(
            None, "--before-date", help="Skip files dated after YYYY-MM-DD."
        ),
        threads: Optional[int] = typer.Option(None, "--threads", help="Recognition threads."),
        limit: Optional[int] = typer.Option(None, "--limit", help="Process at most N files per folder."),
        fast_scan: bool = typer.Option(False, "--fast-scan", help="Skip clean/summary documents."),
        force: bool = typer.Option(False, "--force", help="Redo files that already have a transcript."),
        no_recursive: bool = typer.Option(False, "--no-recursive", help="Only scan the top folders."),
        keep_audio: bool = typer.Option(False, "--keep-audio", help="Keep normalized WAV files."),
        executor: Optional[str] = typer.Option(None, "--executor", help="Executor script override."),
        request_file: Optional[Path] = typer.Option(
            None,
            "--request",
            exists=True,
            dir_okay=False,
            help="JSON start request (inputFolders, outputFolder, whisperExe, ...) used instead of options.",
        ),
        verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    ) -> None:
        """Run a transcription batch in the foreground. Ctrl+C requests a stop."""

        configure_logging(verbose=verbose)
        logger = logging.getLogger("transcribe_runner")

        try:
            config = load_config()
        except ValueError as exc:
            typer.secho(f"Config error: {exc}", fg=typer.colors.RED, err=True)
            typer.secho(f"Config path: {get_config_path()}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=2) from exc

        if request_file is not None:
            try:
                request = load_request_file(request_file, config)
            except ValueError as exc:
                typer.secho(str(exc), fg=typer.colors.RED, err=True)
                raise typer.Exit(code=2) from exc
        elif input_folders:
            request = build_request(
                config,
                input_folders,
                out=out,
                whisper_exe=whisper_exe,
                model_file=model_file,
                before_date=before_date,
                threads=threads,
                limit=limit,
                fast_scan=fast_scan,
                force=force,
                no_recursive=no_recursive,
                keep_audio=keep_audio,
                executor=executor,
            )
        else:
            typer.secho("Give one or more input folders or --request.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=2)

        controller = get_controller(
            poll_interval=config.runner.poll_interval,
            stop_grace_seconds=config.runner.stop_grace_seconds,
        )
        finished = threading.Event()
        outcome: list[FinishEvent] = []

        def on_event(event: object) -> None:
            if isinstance(event, LogEvent):
                typer.echo(f"[{event.stream}] {event.line}", err=event.stream == "stderr")
            elif isinstance(event, StageEvent):
                typer.secho(
                    f"== Folder {event.index}/{event.total}: {event.input_folder}", fg=typer.colors.CYAN
                )
            elif isinstance(event, ProgressEvent):
                record = event.record
                typer.echo(f"[{record.done}/{record.total}] {record.status or ''} {record.source or ''}")
            elif isinstance(event, FinishEvent):
                outcome.append(event)
                finished.set()

        controller.subscribe(on_event, LogEvent, StageEvent, ProgressEvent, FinishEvent)

        try:
            controller.start(request)
        except (ValidationError, DependencyMissing) as exc:
            typer.secho(f"Cannot start: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=2) from exc
        except RunnerError as exc:
            typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1) from exc

        while not finished.is_set():
            try:
                finished.wait(0.5)
            except KeyboardInterrupt:
                logger.debug("Interrupted; requesting stop")
                typer.secho("Stop requested; waiting for the current step to finish.", err=True)
                controller.stop()

        result = outcome[0]
        colour = typer.colors.GREEN if result.success else typer.colors.RED
        typer.secho(f"{result.message} (code {result.code})", fg=colour)
        if not result.success:
            raise typer.Exit(code=result.code if 0 < result.code < 256 else 1)

    @app.command("console")
    def console(
        verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    ) -> None:
        """Open the interactive operator console."""

        configure_logging(verbose=verbose)
        from .console import run_console

        run_console()

    return app
