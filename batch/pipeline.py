"""Per-file batch state machine driving the conversion and recognition engines."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
import logging
import os
from pathlib import Path
from typing import Callable, Optional

import typer

from engine.base import RecognitionEngine, RecognitionError
from media.audio import MediaError, convert_to_wav, is_supported_media
from output.text import (
    render_clean_document,
    render_summary,
    write_index,
    write_json_file,
    write_text_file,
)

from .gate import CheckpointGate, PauseMarker
from .models import INDEX_FILE, STATUSES, BatchSettings, FileResult, MediaFile
from .naming import infer_date_bucket, make_slug
from .progress import ProgressRecord, format_progress

Converter = Callable[[Path, Path, Optional[str]], None]

_logger = logging.getLogger(__name__)


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.resolve().relative_to(root.resolve())
    except ValueError:
        return False
    return True


def scan_media(
    folder: Path,
    recursive: bool = True,
    limit: Optional[int] = None,
    exclude: Optional[Path] = None,
) -> list[Path]:
    """Return supported media files under `folder`, sorted by full path.

    Args:
        folder: Directory to scan.
        recursive: Descend into subdirectories when True.
        limit: Keep only the first `limit` files after sorting.
        exclude: A directory whose contents are never candidates (the output
            folder, when it lives inside the input tree).
    """

    entries = folder.rglob("*") if recursive else folder.iterdir()
    files = [
        path
        for path in entries
        if path.is_file()
        and is_supported_media(path)
        and not (exclude is not None and _is_within(path, exclude))
    ]
    files.sort(key=lambda path: str(path))
    if limit:
        files = files[:limit]
    return files


class BatchPipeline:
    """Processes one input folder into dated transcript directories."""

    def __init__(
        self,
        settings: BatchSettings,
        engine: RecognitionEngine,
        converter: Converter = convert_to_wav,
        gate: Optional[CheckpointGate] = None,
        emit: Callable[[str], None] = typer.echo,
    ) -> None:
        self.settings = settings
        self.engine = engine
        self.converter = converter
        self.gate = gate or CheckpointGate(
            PauseMarker(settings.pause_flag_file),
            PauseMarker(settings.stop_flag_file) if settings.stop_flag_file else None,
            poll_interval=settings.poll_interval,
        )
        self.emit = emit

    def locate(self, source: Path) -> MediaFile:
        bucket = infer_date_bucket(source)
        slug = make_slug(source.stem)
        return MediaFile(
            source=source,
            bucket=bucket,
            slug=slug,
            output_dir=self.settings.output_folder / bucket / slug,
        )

    def run(self) -> list[FileResult]:
        """Process every candidate in order and write the run index."""

        settings = self.settings
        candidates = scan_media(
            settings.input_folder,
            recursive=not settings.no_recursive,
            limit=settings.limit,
            exclude=settings.output_folder,
        )
        total = len(candidates)
        _logger.info("Found %d media file(s) in %s", total, settings.input_folder)

        results: list[FileResult] = []
        for done, source in enumerate(candidates, start=1):
            if not self.gate.wait():
                _logger.info("Stop requested; %d file(s) not started.", total - done + 1)
                break
            _logger.info("[%d/%d] %s", done, total, source.name)
            result = self.process_file(source)
            results.append(result)
            self.emit(
                format_progress(
                    ProgressRecord(done=done, total=total, status=result.status, source=str(source))
                )
            )
            if result.reason == "stopped":
                _logger.info("Stop requested; %d file(s) not started.", total - done)
                break

        write_index(settings.output_folder / INDEX_FILE, [result.as_row() for result in results])

        counts = Counter(result.status for result in results)
        summary = " ".join(f"{status}={counts.get(status, 0)}" for status in STATUSES)
        _logger.info("Finished %s: %s", settings.input_folder, summary)
        return results

    def process_file(self, source: Path) -> FileResult:
        """Run one file through the state machine; failures are recorded, not raised."""

        try:
            media = self.locate(source)
        except OSError as exc:
            _logger.error("Cannot read %s: %s", source, exc)
            return FileResult("error", source, reason=f"stat: {exc}")

        cutoff = self.settings.before_date
        if cutoff is not None and media.bucket > cutoff.isoformat():
            _logger.info("Skipping %s: dated %s, after %s", source.name, media.bucket, cutoff)
            return FileResult("skipped-date", source, media.output_dir, reason=f"after {cutoff}")

        try:
            media.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _logger.error("Cannot create %s: %s", media.output_dir, exc)
            return FileResult("error", source, media.output_dir, reason="io")

        if media.raw_transcript.exists() and not self.settings.force:
            _logger.info("Skipping %s: transcript exists", source.name)
            return FileResult("skipped", source, media.output_dir, reason="exists")

        try:
            return self._transcribe(media)
        except OSError as exc:
            _logger.error("Could not write outputs for %s: %s", source.name, exc)
            return FileResult("error", source, media.output_dir, reason="io")
        finally:
            if not self.settings.keep_audio:
                media.audio.unlink(missing_ok=True)

    def _transcribe(self, media: MediaFile) -> FileResult:
        source = media.source
        if not self.gate.wait():
            return FileResult("skipped", source, media.output_dir, reason="stopped")

        try:
            self.converter(source, media.audio, self.settings.ffmpeg)
        except MediaError as exc:
            _logger.error("Conversion failed for %s: %s", source.name, exc)
            return FileResult("error", source, media.output_dir, reason="convert")

        if not self.gate.wait():
            return FileResult("skipped", source, media.output_dir, reason="stopped")

        try:
            produced = self.engine.recognize(media.audio, media.engine_base)
        except RecognitionError as exc:
            _logger.error("Recognition failed for %s: %s", source.name, exc)
            return FileResult("error", source, media.output_dir, reason="recognize")

        if produced.json_path.exists():
            os.replace(produced.json_path, media.timestamps)
        else:
            _logger.warning("No timestamp output for %s", source.name)
        os.replace(produced.text_path, media.raw_transcript)

        if not self.settings.fast_scan:
            text = media.raw_transcript.read_text(encoding="utf-8", errors="replace")
            title = f"{media.bucket} {source.stem}"
            write_text_file(media.clean_transcript, render_clean_document(text, title=title))
            write_text_file(media.summary, render_summary(text, title=title))
        else:
            media.clean_transcript.unlink(missing_ok=True)
            media.summary.unlink(missing_ok=True)

        write_json_file(media.metadata, self._metadata(media))
        _logger.info("Wrote %s", media.output_dir)
        return FileResult("ok", source, media.output_dir)

    def _metadata(self, media: MediaFile) -> dict:
        settings = self.settings
        artifacts = {
            "raw_transcript": str(media.raw_transcript),
            "timestamps": str(media.timestamps) if media.timestamps.exists() else None,
            "clean_transcript": None if settings.fast_scan else str(media.clean_transcript),
            "summary": None if settings.fast_scan else str(media.summary),
            "audio": str(media.audio) if settings.keep_audio else None,
        }
        return {
            "source": str(media.source),
            "bucket": media.bucket,
            "slug": media.slug,
            "output_dir": str(media.output_dir),
            "artifacts": artifacts,
            "engine": {
                "whisper_exe": str(settings.whisper_exe),
                "model_file": str(settings.model_file),
                "threads": settings.threads,
                "ffmpeg": settings.ffmpeg,
            },
            "flags": {
                "fast_scan": settings.fast_scan,
                "force": settings.force,
                "no_recursive": settings.no_recursive,
                "keep_audio": settings.keep_audio,
                "before_date": settings.before_date.isoformat() if settings.before_date else None,
            },
            "processed_at": datetime.now().isoformat(timespec="seconds"),
        }


def exit_code_for(results: list[FileResult]) -> int:
    """0 when no file errored, else 1."""

    return 1 if any(result.status == "error" for result in results) else 0
