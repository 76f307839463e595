"""Recognition engine factory and exports."""

from __future__ import annotations

from pathlib import Path

from app.config import EngineConfig

from .base import RecognitionEngine, RecognitionError, RecognitionOutput
from .whisper_cpp import WhisperCppEngine

__all__ = [
    "RecognitionEngine",
    "RecognitionError",
    "RecognitionOutput",
    "WhisperCppEngine",
    "create_engine",
]


def create_engine(config: EngineConfig) -> RecognitionEngine:
    """Create a recognition engine from configuration.

    This factory allows adding future engines without changing pipeline logic.
    """

    backend = (config.backend or "").strip().lower()
    if backend in {"whisper.cpp", "whisper-cpp", "whisper_cpp", "whisper"}:
        return WhisperCppEngine(
            executable=Path(config.whisper_exe),
            model_file=Path(config.model_file),
            threads=config.threads,
        )
    raise ValueError(f"Unsupported engine backend: {config.backend!r}")
