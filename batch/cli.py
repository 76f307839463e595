"""Command line for the batch executor (one input folder per invocation)."""

from __future__ import annotations

import logging
from pathlib import Path
import sys
from typing import Optional

import typer

from app.config import EngineConfig
from app.logging import configure_logging
from engine import create_engine
from media.audio import MediaError, find_ffmpeg

from .models import BatchSettings
from .naming import parse_iso_date
from .pipeline import BatchPipeline, exit_code_for


def create_cli_app() -> typer.Typer:
    """Create the executor's Typer app."""

    app = typer.Typer(
        add_completion=False,
        help="Transcribe every audio/video file under one folder into dated transcript folders.",
        no_args_is_help=True,
    )

    @app.command("run")
    def run(
        input_folder: Path = typer.Option(..., "--input-folder", help="Folder to scan for media."),
        output_folder: Path = typer.Option(..., "--output-folder", help="Root of the transcript tree."),
        whisper_exe: Path = typer.Option(..., "--whisper-exe", help="whisper.cpp executable."),
        model_file: Path = typer.Option(..., "--model-file", help="whisper.cpp ggml model file."),
        pause_flag_file: Path = typer.Option(
            ..., "--pause-flag-file", help="Processing pauses at checkpoints while this file exists."
        ),
        stop_flag_file: Optional[Path] = typer.Option(
            None, "--stop-flag-file", help="No new file starts once this file exists."
        ),
        threads: Optional[int] = typer.Option(None, "--threads", min=1, help="Recognition threads."),
        before_date: Optional[str] = typer.Option(
            None, "--before-date", help="Skip files dated after YYYY-MM-DD."
        ),
        limit: Optional[int] = typer.Option(None, "--limit", min=1, help="Process at most N files."),
        fast_scan: bool = typer.Option(False, "--fast-scan", help="Skip clean/summary documents."),
        force: bool = typer.Option(False, "--force", help="Redo files that already have a transcript."),
        no_recursive: bool = typer.Option(False, "--no-recursive", help="Only scan the top folder."),
        keep_audio: bool = typer.Option(False, "--keep-audio", help="Keep the normalized WAV files."),
        ffmpeg: Optional[str] = typer.Option(None, "--ffmpeg", help="FFmpeg executable (default: PATH)."),
        poll_interval: float = typer.Option(1.0, "--poll-interval", min=0.01, help="Pause poll seconds."),
        verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    ) -> None:
        """Process one input folder and exit 1 if any file failed."""

        configure_logging(verbose=verbose, stream=sys.stdout, level=logging.INFO)

        try:
            cutoff = parse_iso_date(before_date) if before_date else None
        except ValueError as exc:
            typer.secho(str(exc), fg=typer.colors.RED, err=True)
            raise typer.Exit(code=2) from exc

        if not input_folder.is_dir():
            typer.secho(f"Input folder does not exist: {input_folder}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=2)
        for label, path in (("Whisper executable", whisper_exe), ("Model file", model_file)):
            if not path.exists():
                typer.secho(f"{label} not found: {path}", fg=typer.colors.RED, err=True)
                raise typer.Exit(code=2)

        try:
            ffmpeg_path = find_ffmpeg(ffmpeg)
        except MediaError as exc:
            typer.secho(str(exc), fg=typer.colors.RED, err=True)
            raise typer.Exit(code=2) from exc

        settings = BatchSettings(
            input_folder=input_folder,
            output_folder=output_folder,
            whisper_exe=whisper_exe,
            model_file=model_file,
            pause_flag_file=pause_flag_file,
            stop_flag_file=stop_flag_file,
            threads=threads,
            before_date=cutoff,
            limit=limit,
            fast_scan=fast_scan,
            force=force,
            no_recursive=no_recursive,
            keep_audio=keep_audio,
            ffmpeg=ffmpeg_path,
            poll_interval=poll_interval,
        )
        output_folder.mkdir(parents=True, exist_ok=True)

        engine = create_engine(
            EngineConfig(whisper_exe=str(whisper_exe), model_file=str(model_file), threads=threads or 0)
        )
        results = BatchPipeline(settings, engine).run()
        raise typer.Exit(code=exit_code_for(results))

    return app
