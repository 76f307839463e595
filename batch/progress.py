"""The executor's structured progress line.

One line per processed file on stdout:

    [progress] done=3 total=12 status=ok source=/media/2024-03-10_Service.mp4

The controller parses these; every other stdout line is free-form log output.
"""

from __future__ import annotations

from dataclasses import dataclass
import re
from typing import Optional

PROGRESS_PREFIX = "[progress]"

_PROGRESS_LINE = re.compile(
    r"^\[progress\]\s+done=(?P<done>\d+)\s+total=(?P<total>\d+)"
    r"(?:\s+status=(?P<status>\S+))?"
    r"(?:\s+source=(?P<source>.*))?\s*$"
)


@dataclass(frozen=True, slots=True)
class ProgressRecord:
    done: int
    total: int
    status: Optional[str] = None
    source: Optional[str] = None


def format_progress(record: ProgressRecord) -> str:
    parts = [PROGRESS_PREFIX, f"done={record.done}", f"total={record.total}"]
    if record.status:
        parts.append(f"status={record.status}")
    if record.source:
        parts.append(f"source={record.source}")
    return " ".join(parts)


def parse_progress(line: str) -> Optional[ProgressRecord]:
    """Parse a progress line, returning None for any other line."""

    match = _PROGRESS_LINE.match(line.strip())
    if match is None:
        return None
    return ProgressRecord(
        done=int(match.group("done")),
        total=int(match.group("total")),
        status=match.group("status"),
        source=match.group("source") or None,
    )
