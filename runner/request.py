"""The start request accepted by the run controller."""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
import shutil
from typing import Any, Mapping, Optional

from batch.naming import parse_iso_date

from .errors import DependencyMissing, ValidationError


@dataclass(frozen=True, slots=True)
class RunRequest:
    """Everything needed to launch a run, before validation."""

    input_folders: tuple[str, ...]
    output_folder: str
    whisper_exe: str
    model_file: str
    before_date: Optional[str] = None
    threads: int = 4
    limit: Optional[int] = None
    fast_scan: bool = False
    force: bool = False
    no_recursive: bool = False
    keep_audio: bool = False
    executor_override: Optional[str] = None
    ffmpeg: Optional[str] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "RunRequest":
        """Build a request from the camelCase start-request schema.

        Accepts `whisperExe` or `recognitionEngine` for the engine path and
        `scriptPath` or `executorOverride` for the executor location.
        """

        folders = raw.get("inputFolders") or []
        if isinstance(folders, str):
            folders = [folders]

        return cls(
            input_folders=tuple(str(folder) for folder in folders),
            output_folder=str(raw.get("outputFolder") or ""),
            whisper_exe=str(raw.get("whisperExe") or raw.get("recognitionEngine") or ""),
            model_file=str(raw.get("modelFile") or ""),
            before_date=raw.get("beforeDate"),
            threads=raw.get("threads", 4),
            limit=raw.get("limit"),
            fast_scan=bool(raw.get("fastScan", False)),
            force=bool(raw.get("force", False)),
            no_recursive=bool(raw.get("noRecursive", False)),
            keep_audio=bool(raw.get("keepAudio", False)),
            executor_override=raw.get("scriptPath") or raw.get("executorOverride"),
            ffmpeg=raw.get("ffmpeg"),
        )

    def validated(self) -> "RunRequest":
        """Return a trimmed, checked copy of this request.

        Raises:
            ValidationError: If a field is missing or malformed.
            DependencyMissing: If the recognition engine or model file is absent.
        """

        folders = tuple(folder.strip() for folder in self.input_folders if folder and folder.strip())
        if not folders:
            raise ValidationError("At least one input folder is required.")

        output_folder = (self.output_folder or "").strip()
        if not output_folder:
            raise ValidationError("Output folder is required.")

        whisper_exe = (self.whisper_exe or "").strip()
        if not whisper_exe:
            raise ValidationError("Whisper executable path is required.")

        model_file = (self.model_file or "").strip()
        if not model_file:
            raise ValidationError("Model file path is required.")

        before_date = (self.before_date or "").strip() or None
        if before_date is not None:
            try:
                parse_iso_date(before_date)
            except ValueError as exc:
                raise ValidationError(f"Invalid before date: {exc}") from exc

        if isinstance(self.threads, bool) or not isinstance(self.threads, int) or self.threads < 1:
            raise ValidationError("Threads must be a positive number.")

        if self.limit is not None and (
            isinstance(self.limit, bool) or not isinstance(self.limit, int) or self.limit < 1
        ):
            raise ValidationError("Limit must be a positive number when set.")

        for folder in folders:
            if not Path(folder).is_dir():
                raise ValidationError(f"Input folder does not exist: {folder}")

        resolved_exe = whisper_exe if Path(whisper_exe).is_file() else shutil.which(whisper_exe)
        if not resolved_exe:
            raise DependencyMissing(f"Whisper executable not found: {whisper_exe}")

        if not Path(model_file).is_file():
            raise DependencyMissing(f"Model file not found: {model_file}")

        return replace(
            self,
            input_folders=folders,
            output_folder=output_folder,
            whisper_exe=resolved_exe,
            model_file=model_file,
            before_date=before_date,
            executor_override=(self.executor_override or "").strip() or None,
            ffmpeg=(self.ffmpeg or "").strip() or None,
        )

    def executor_args(
        self,
        input_folder: str,
        pause_flag_file: Path,
        stop_flag_file: Path,
        poll_interval: Optional[float] = None,
    ) -> list[str]:
        """Return the executor command-line arguments for one input folder."""

        args = [
            "--input-folder",
            input_folder,
            "--output-folder",
            self.output_folder,
            "--whisper-exe",
            self.whisper_exe,
            "--model-file",
            self.model_file,
            "--pause-flag-file",
            str(pause_flag_file),
            "--stop-flag-file",
            str(stop_flag_file),
            "--threads",
            str(self.threads),
        ]
        if self.before_date:
            args += ["--before-date", self.before_date]
        if self.limit:
            args += ["--limit", str(self.limit)]
        if self.ffmpeg:
            args += ["--ffmpeg", self.ffmpeg]
        if poll_interval is not None:
            args += ["--poll-interval", str(poll_interval)]
        if self.fast_scan:
            args.append("--fast-scan")
        if self.force:
            args.append("--force")
        if self.no_recursive:
            args.append("--no-recursive")
        if self.keep_audio:
            args.append("--keep-audio")
        return args
