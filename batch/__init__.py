"""Batch executor: scans one folder and drives the conversion and recognition engines."""

from __future__ import annotations

from .gate import CheckpointGate, PauseMarker, markers_for
from .models import BatchSettings, FileResult, MediaFile
from .pipeline import BatchPipeline, exit_code_for, scan_media
from .progress import ProgressRecord, format_progress, parse_progress

__all__ = [
    "BatchPipeline",
    "BatchSettings",
    "CheckpointGate",
    "FileResult",
    "MediaFile",
    "PauseMarker",
    "ProgressRecord",
    "exit_code_for",
    "format_progress",
    "markers_for",
    "parse_progress",
    "scan_media",
]
