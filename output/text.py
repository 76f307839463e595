"""Transcript document output: raw text, reflowed text, summary, metadata and run index."""

from __future__ import annotations

from datetime import datetime
import json
from pathlib import Path
import re
from typing import Any, Iterable, Optional, Sequence


PARAGRAPH_CAP = 700
SUMMARY_CHARS = 520

SUMMARY_NOTES = (
    "Notes:",
    "- This summary is the opening of the automatic transcript, not an edited abstract.",
    "- Speech recognition can misspell names, places and quotations; check the recording.",
    "- The full text is in transcript.clean.txt (reflowed) and transcript.raw.txt (as recognized).",
)

_WHITESPACE = re.compile(r"\s+")
_SENTENCE_BREAK = re.compile(r"(?:(?<=[.!?])|(?<=[.!?][\"'\u201d\u2019)\]]))\s+")


def write_text_file(output_path: Path, text: str) -> None:
    """Write transcript text to disk.

    Args:
        output_path: Destination `.txt` path.
        text: Transcript content.
    """

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(text, encoding="utf-8")


def write_json_file(output_path: Path, data: dict[str, Any]) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")


def normalize_whitespace(text: str) -> str:
    """Collapse every whitespace run (including newlines) to one space."""

    return _WHITESPACE.sub(" ", text or "").strip()


def split_sentences(text: str) -> list[str]:
    """Split whitespace-normalized text at sentence-ending punctuation."""

    normalized = normalize_whitespace(text)
    if not normalized:
        return []
    return [part for part in _SENTENCE_BREAK.split(normalized) if part]


def reflow_paragraphs(text: str, cap: int = PARAGRAPH_CAP) -> list[str]:
    """Greedily pack whole sentences into paragraphs of at most `cap` characters.

    A sentence is never split; a single sentence longer than `cap` becomes its
    own paragraph.
    """

    paragraphs: list[str] = []
    current = ""
    for sentence in split_sentences(text):
        if not current:
            current = sentence
        elif len(current) + 1 + len(sentence) <= cap:
            current = f"{current} {sentence}"
        else:
            paragraphs.append(current)
            current = sentence
    if current:
        paragraphs.append(current)
    return paragraphs


def render_clean_document(text: str, title: Optional[str] = None, cap: int = PARAGRAPH_CAP) -> str:
    """Return the reflowed transcript document."""

    parts: list[str] = []
    if title:
        parts.append(title)
        parts.append("")
    parts.append("\n\n".join(reflow_paragraphs(text, cap=cap)))
    return "\n".join(parts).strip() + "\n"


def excerpt(text: str, limit: int = SUMMARY_CHARS) -> str:
    """Return the first `limit` characters of normalized text, ellipsized when cut."""

    normalized = normalize_whitespace(text)
    if len(normalized) <= limit:
        return normalized

    cut = normalized[:limit]
    space = cut.rfind(" ")
    if space > limit // 2:
        cut = cut[:space]
    return cut.rstrip(" ,;:-") + "..."


def render_summary(text: str, title: Optional[str] = None, limit: int = SUMMARY_CHARS) -> str:
    """Return the bounded summary document with the fixed notes appended."""

    lines: list[str] = []
    if title:
        lines += [title, ""]
    lines.append(excerpt(text, limit=limit) or "(no speech recognized)")
    lines.append("")
    lines += list(SUMMARY_NOTES)
    return "\n".join(lines) + "\n"


def _cell(value: str) -> str:
    return (value or "").replace("|", "\\|").replace("\n", " ")


def write_index(
    output_path: Path,
    rows: Iterable[Sequence[str]],
    title: str = "Transcription index",
) -> None:
    """Write the human-readable run index as a Markdown table.

    Args:
        output_path: Destination path (typically `<output>/INDEX.md`).
        rows: `(status, source, output_dir, reason)` tuples in processing order.
        title: Heading line.
    """

    stamp = datetime.now().isoformat(timespec="seconds")
    lines = [
        f"# {title}",
        "",
        f"Generated: {stamp}",
        "",
        "| Status | Source | Output | Reason |",
        "| --- | --- | --- | --- |",
    ]
    for status, source, output_dir, reason in rows:
        lines.append(f"| {_cell(status)} | {_cell(source)} | {_cell(output_dir)} | {_cell(reason)} |")
    write_text_file(output_path, "\n".join(lines) + "\n")
