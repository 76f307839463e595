"""Base interfaces for speech-recognition engines."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path


class RecognitionError(RuntimeError):
    """Raised when the recognition engine fails for one input."""


@dataclass(frozen=True, slots=True)
class RecognitionOutput:
    """Files produced by one recognition call."""

    text_path: Path
    json_path: Path


class RecognitionEngine(ABC):
    """Interface for speech-to-text engines."""

    @abstractmethod
    def recognize(self, audio_path: Path, output_base: Path) -> RecognitionOutput:
        """Transcribe a normalized waveform into text and timestamp sidecars.

        Args:
            audio_path: Path to a 16kHz mono WAV.
            output_base: Output path without extension; the engine writes
                `<output_base>.txt` and `<output_base>.json`.

        Returns:
            Paths of the plain-text and structured timestamp outputs.

        Raises:
            RecognitionError: If the engine exits non-zero or produces no output.
        """
