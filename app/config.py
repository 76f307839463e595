"""Configuration handling for transcribe-runner.

transcribe-runner loads an optional TOML file from OS-specific locations:

- Linux: ~/.config/transcribe-runner/config.toml
- Windows: %APPDATA%\\transcribe-runner\\config.toml
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import json
import os
from pathlib import Path
import platform
from typing import Any, Optional

try:  # Python 3.11+
    import tomllib  # type: ignore
except ModuleNotFoundError:  # Python 3.10
    import tomli as tomllib  # type: ignore


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Configuration for the external conversion and recognition engines."""

    backend: str = "whisper.cpp"
    whisper_exe: str = "whisper-cli"
    model_file: str = ""
    ffmpeg: str = "ffmpeg"
    threads: int = 4


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Default values for a transcription run."""

    output_folder: str = ""
    before_date: Optional[str] = None
    fast_scan: bool = False
    no_recursive: bool = False
    keep_audio: bool = False


@dataclass(frozen=True, slots=True)
class RunnerConfig:
    """Tuning for the run controller and the executor's checkpoint gate."""

    poll_interval: float = 1.0
    stop_grace_seconds: Optional[float] = None


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Top-level application configuration."""

    engine: EngineConfig = field(default_factory=EngineConfig)
    run: RunConfig = field(default_factory=RunConfig)
    runner: RunnerConfig = field(default_factory=RunnerConfig)


_ENGINE = EngineConfig()
_RUN = RunConfig()
_RUNNER = RunnerConfig()


def get_config_path() -> Path:
    """Return the default configuration file path for the current OS."""

    system = platform.system().lower()
    if system == "windows":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "transcribe-runner" / "config.toml"

        return Path.home() / "AppData" / "Roaming" / "transcribe-runner" / "config.toml"

    return Path.home() / ".config" / "transcribe-runner" / "config.toml"


def load_config(path: Path | None = None) -> AppConfig:
    """Load config from a TOML file, falling back to defaults if missing.

    Args:
        path: Optional explicit config path. When None, uses the OS default.

    Raises:
        ValueError: If the config contains unsupported values.
    """

    config_path = path or get_config_path()
    if not config_path.exists():
        return AppConfig()

    with config_path.open("rb") as f:
        try:
            raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            raise ValueError(f"Invalid config: {exc}") from exc

    engine_raw = _get_table(raw, "engine")
    run_raw = _get_table(raw, "run")
    runner_raw = _get_table(raw, "runner")

    engine = EngineConfig(
        backend=_get_str(engine_raw, "backend", default=_ENGINE.backend),
        whisper_exe=_get_str(engine_raw, "whisper_exe", default=_ENGINE.whisper_exe),
        model_file=_get_str(engine_raw, "model_file", default=_ENGINE.model_file),
        ffmpeg=_get_str(engine_raw, "ffmpeg", default=_ENGINE.ffmpeg),
        threads=_get_int(engine_raw, "threads", default=_ENGINE.threads, minimum=1),
    )

    before_date = _get_optional_str(run_raw, "before_date")
    if before_date is not None:
        try:
            date.fromisoformat(before_date)
        except ValueError as exc:
            raise ValueError("Invalid config: before_date must be YYYY-MM-DD.") from exc

    run = RunConfig(
        output_folder=_get_str(run_raw, "output_folder", default=_RUN.output_folder),
        before_date=before_date,
        fast_scan=_get_bool(run_raw, "fast_scan", default=_RUN.fast_scan),
        no_recursive=_get_bool(run_raw, "no_recursive", default=_RUN.no_recursive),
        keep_audio=_get_bool(run_raw, "keep_audio", default=_RUN.keep_audio),
    )

    grace = _get_float(runner_raw, "stop_grace_seconds", default=None)
    if grace is not None and grace <= 0:
        raise ValueError("Invalid config: stop_grace_seconds must be positive.")
    poll_interval = _get_float(runner_raw, "poll_interval", default=_RUNNER.poll_interval)
    if poll_interval is None or poll_interval <= 0:
        raise ValueError("Invalid config: poll_interval must be positive.")

    runner = RunnerConfig(poll_interval=poll_interval, stop_grace_seconds=grace)
    return AppConfig(engine=engine, run=run, runner=runner)


def save_config(config: AppConfig, path: Path | None = None) -> Path:
    """Save configuration to a TOML file.

    Args:
        config: Configuration values to persist.
        path: Optional explicit config path. When None, uses the OS default.

    Returns:
        The path that was written.
    """

    config_path = path or get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    content = _to_toml(config)
    config_path.write_text(content, encoding="utf-8")
    return config_path


def _get_table(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """Internal helper to get a TOML table as a dict."""

    value = raw.get(key)
    if value is None:
        return {}
    if isinstance(value, dict):
        return value
    raise ValueError(f"Invalid config: [{key}] must be a table.")


def _get_str(raw: dict[str, Any], key: str, default: str) -> str:
    """Internal helper to get a TOML string with a default."""

    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, str) and value.strip():
        return value.strip()
    raise ValueError(f"Invalid config: {key} must be a non-empty string.")


def _get_optional_str(raw: dict[str, Any], key: str) -> Optional[str]:
    value = raw.get(key)
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    raise ValueError(f"Invalid config: {key} must be a string.")


def _get_int(raw: dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, int) and not isinstance(value, bool) and value >= minimum:
        return value
    raise ValueError(f"Invalid config: {key} must be an integer >= {minimum}.")


def _get_float(raw: dict[str, Any], key: str, default: Optional[float]) -> Optional[float]:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Invalid config: {key} must be a number.")


def _get_bool(raw: dict[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    raise ValueError(f"Invalid config: {key} must be true or false.")


def _quote(value: str) -> str:
    """Quote a string as a TOML basic string."""

    return json.dumps(value, ensure_ascii=False)


def _to_toml(config: AppConfig) -> str:
    """Serialize config data to TOML."""

    lines = [
        "[engine]",
        f"backend = {_quote(config.engine.backend)}",
        f"whisper_exe = {_quote(config.engine.whisper_exe)}",
    ]
    if config.engine.model_file:
        lines.append(f"model_file = {_quote(config.engine.model_file)}")
    lines += [
        f"ffmpeg = {_quote(config.engine.ffmpeg)}",
        f"threads = {config.engine.threads}",
        "",
        "[run]",
    ]
    if config.run.output_folder:
        lines.append(f"output_folder = {_quote(config.run.output_folder)}")
    if config.run.before_date:
        lines.append(f"before_date = {_quote(config.run.before_date)}")
    lines += [
        f"fast_scan = {str(config.run.fast_scan).lower()}",
        f"no_recursive = {str(config.run.no_recursive).lower()}",
        f"keep_audio = {str(config.run.keep_audio).lower()}",
        "",
        "[runner]",
        f"poll_interval = {config.runner.poll_interval}",
    ]
    if config.runner.stop_grace_seconds is not None:
        lines.append(f"stop_grace_seconds = {config.runner.stop_grace_seconds}")
    return "\n".join(lines) + "\n"
