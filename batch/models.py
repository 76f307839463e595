"""Data types shared by the batch executor and its callers."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Literal, Optional

FileStatus = Literal["ok", "skipped", "skipped-date", "error"]

STATUSES: tuple[FileStatus, ...] = ("ok", "skipped", "skipped-date", "error")

RAW_TRANSCRIPT = "transcript.raw.txt"
CLEAN_TRANSCRIPT = "transcript.clean.txt"
SUMMARY = "summary.txt"
TIMESTAMPS = "transcript.timestamps.json"
METADATA = "metadata.json"
NORMALIZED_AUDIO = "audio.16k.wav"
INDEX_FILE = "INDEX.md"


@dataclass(frozen=True, slots=True)
class BatchSettings:
    """Resolved arguments for one executor invocation (one input folder)."""

    input_folder: Path
    output_folder: Path
    whisper_exe: Path
    model_file: Path
    pause_flag_file: Path
    stop_flag_file: Optional[Path] = None
    threads: Optional[int] = None
    before_date: Optional[date] = None
    limit: Optional[int] = None
    fast_scan: bool = False
    force: bool = False
    no_recursive: bool = False
    keep_audio: bool = False
    ffmpeg: Optional[str] = None
    poll_interval: float = 1.0


@dataclass(frozen=True, slots=True)
class MediaFile:
    """One source file with its inferred placement."""

    source: Path
    bucket: str
    slug: str
    output_dir: Path

    @property
    def raw_transcript(self) -> Path:
        return self.output_dir / RAW_TRANSCRIPT

    @property
    def clean_transcript(self) -> Path:
        return self.output_dir / CLEAN_TRANSCRIPT

    @property
    def summary(self) -> Path:
        return self.output_dir / SUMMARY

    @property
    def timestamps(self) -> Path:
        return self.output_dir / TIMESTAMPS

    @property
    def metadata(self) -> Path:
        return self.output_dir / METADATA

    @property
    def audio(self) -> Path:
        return self.output_dir / NORMALIZED_AUDIO

    @property
    def engine_base(self) -> Path:
        """Output base handed to the recognition engine (`.txt`/`.json` appended)."""

        return self.output_dir / ".recognize"


@dataclass(frozen=True, slots=True)
class FileResult:
    """Outcome of processing one file."""

    status: FileStatus
    source: Path
    output_dir: Optional[Path] = None
    reason: Optional[str] = None

    def as_row(self) -> tuple[str, str, str, str]:
        return (
            self.status,
            str(self.source),
            str(self.output_dir) if self.output_dir else "",
            self.reason or "",
        )
