"""whisper.cpp command-line recognition engine."""

from __future__ import annotations

from pathlib import Path
import subprocess
from typing import Optional

from .base import RecognitionEngine, RecognitionError, RecognitionOutput


class WhisperCppEngine(RecognitionEngine):
    """Recognition engine backed by the whisper.cpp CLI (`whisper-cli`)."""

    def __init__(self, executable: Path, model_file: Path, threads: Optional[int] = None) -> None:
        """Create a WhisperCppEngine.

        Args:
            executable: Path to the whisper.cpp binary.
            model_file: Path to a ggml model file.
            threads: Optional thread count passed as `-t`.
        """

        self._executable = executable
        self._model_file = model_file
        self._threads = threads

    def build_command(self, audio_path: Path, output_base: Path) -> list[str]:
        cmd = [
            str(self._executable),
            "-m",
            str(self._model_file),
            "-f",
            str(audio_path),
            "-of",
            str(output_base),
        ]
        if self._threads:
            cmd += ["-t", str(self._threads)]
        cmd += ["-otxt", "-oj"]
        return cmd

    def recognize(self, audio_path: Path, output_base: Path) -> RecognitionOutput:
        """Run whisper.cpp and return the produced `.txt` and `.json` paths."""

        output = RecognitionOutput(
            text_path=output_base.with_name(output_base.name + ".txt"),
            json_path=output_base.with_name(output_base.name + ".json"),
        )
        cmd = self.build_command(audio_path, output_base)

        try:
            subprocess.run(
                cmd,
                check=True,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
            )
        except subprocess.CalledProcessError as exc:
            _discard(output)
            details = (exc.stderr or "").strip()
            extra = f"\n\nDetails:\n{details[-2000:]}" if details else ""
            raise RecognitionError(
                f"whisper.cpp failed (exit code {exc.returncode}).\n\nCommand: {' '.join(cmd)}{extra}"
            ) from exc
        except OSError as exc:
            _discard(output)
            raise RecognitionError(f"Could not run whisper.cpp at {self._executable}: {exc}") from exc

        if not output.text_path.exists():
            _discard(output)
            raise RecognitionError(f"whisper.cpp produced no transcript at {output.text_path}")
        return output


def _discard(output: RecognitionOutput) -> None:
    """Remove partial engine outputs so a retry starts clean."""

    output.text_path.unlink(missing_ok=True)
    output.json_path.unlink(missing_ok=True)
