"""Audio normalization (audio/video -> 16kHz mono WAV) via FFmpeg."""

from __future__ import annotations

from pathlib import Path
import shutil
import subprocess
from typing import Optional


SUPPORTED_EXTENSIONS = {
    ".aac",
    ".avi",
    ".flac",
    ".m4a",
    ".m4v",
    ".mkv",
    ".mov",
    ".mp3",
    ".mp4",
    ".mpeg",
    ".mpg",
    ".ogg",
    ".opus",
    ".wav",
    ".webm",
    ".wma",
    ".wmv",
}

SAMPLE_RATE = 16000


class MediaError(RuntimeError):
    """Base error for media handling failures."""


class UnsupportedMediaError(MediaError):
    """Raised when the input file type is not supported."""


class FfmpegNotFoundError(MediaError):
    """Raised when FFmpeg is not available."""


class FfmpegFailedError(MediaError):
    """Raised when an FFmpeg command fails."""


def is_supported_media(path: Path) -> bool:
    """Return True if the file extension is supported."""

    return path.suffix.lower() in SUPPORTED_EXTENSIONS


def find_ffmpeg(preferred: Optional[str] = None) -> str:
    """Return the FFmpeg executable path (or raise if missing).

    Args:
        preferred: Explicit executable path or command name. Defaults to `ffmpeg` on PATH.
    """

    candidate = (preferred or "").strip() or "ffmpeg"
    if Path(candidate).is_file():
        return candidate

    ffmpeg = shutil.which(candidate)
    if not ffmpeg:
        raise FfmpegNotFoundError(
            f"FFmpeg not found ({candidate!r}). Install FFmpeg or set [engine].ffmpeg in the config."
        )
    return ffmpeg


def build_convert_command(ffmpeg: str, input_path: Path, output_wav: Path) -> list[str]:
    """Return the FFmpeg command producing a mono 16kHz PCM WAV."""

    return [
        ffmpeg,
        "-hide_banner",
        "-nostdin",
        "-loglevel",
        "error",
        "-y",
        "-i",
        str(input_path),
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(SAMPLE_RATE),
        "-c:a",
        "pcm_s16le",
        str(output_wav),
    ]


def convert_to_wav(input_path: Path, output_wav: Path, ffmpeg: Optional[str] = None) -> None:
    """Convert an audio/video file into a 16kHz mono WAV suitable for recognition.

    A failed conversion removes any partially written WAV.

    Args:
        input_path: Path to a supported audio/video file.
        output_wav: Output .wav path.
        ffmpeg: Optional FFmpeg executable (defaults to `ffmpeg` on PATH).

    Raises:
        UnsupportedMediaError: If input extension is not supported.
        FfmpegNotFoundError: If ffmpeg is not found.
        FfmpegFailedError: If ffmpeg returns a non-zero exit code.
    """

    if not is_supported_media(input_path):
        raise UnsupportedMediaError(
            f"Unsupported input type: {input_path.suffix!r}. Supported: {sorted(SUPPORTED_EXTENSIONS)}"
        )

    cmd = build_convert_command(find_ffmpeg(ffmpeg), input_path, output_wav)
    output_wav.parent.mkdir(parents=True, exist_ok=True)

    try:
        subprocess.run(
            cmd,
            check=True,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.PIPE,
            text=True,
        )
    except subprocess.CalledProcessError as exc:
        output_wav.unlink(missing_ok=True)
        details = (exc.stderr or "").strip()
        hint = f"FFmpeg failed to process the file (exit code {exc.returncode})."
        extra = f"\n\nDetails:\n{details}" if details else ""
        raise FfmpegFailedError(f"{hint}\n\nCommand: {' '.join(cmd)}{extra}") from exc
