"""Date-bucket inference and slug derivation for output placement.

Placement is a pure function of the file name and modification time, so
repeated runs over unchanged input resolve to identical directories.
"""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
import re
from typing import Optional

SLUG_MAX_LENGTH = 96
SLUG_FALLBACK = "media"

_SEPARATED_DATE = re.compile(r"(?<!\d)(\d{4})[-_](\d{2})[-_](\d{2})(?!\d)")
_COMPACT_DATE = re.compile(r"(?<!\d)(\d{4})(\d{2})(\d{2})(?!\d)")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def _first_valid_date(pattern: re.Pattern[str], text: str) -> Optional[date]:
    for match in pattern.finditer(text):
        year, month, day = (int(part) for part in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            continue
    return None


def date_from_name(name: str) -> Optional[date]:
    """Return the date embedded in a file name, if any.

    `YYYY-MM-DD` / `YYYY_MM_DD` wins over a contiguous `YYYYMMDD`. Digit runs
    that are not real calendar dates are ignored.
    """

    return _first_valid_date(_SEPARATED_DATE, name) or _first_valid_date(_COMPACT_DATE, name)


def infer_date_bucket(path: Path) -> str:
    """Return the `YYYY-MM-DD` bucket for a media file (name first, then mtime)."""

    found = date_from_name(path.name)
    if found is None:
        found = datetime.fromtimestamp(path.stat().st_mtime).date()
    return found.isoformat()


def make_slug(name: str, max_length: int = SLUG_MAX_LENGTH) -> str:
    """Return a filesystem-safe identifier for a base file name.

    Lower-cases, collapses every non-alphanumeric run into one hyphen and trims
    hyphens from both ends. Falls back to `media` when nothing is left.
    """

    slug = _NON_ALNUM.sub("-", name.lower()).strip("-")
    slug = slug[:max_length].rstrip("-")
    return slug or SLUG_FALLBACK


_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_iso_date(value: str) -> date:
    """Parse a strict `YYYY-MM-DD` string.

    Raises:
        ValueError: If the value is not a real date in that exact form.
    """

    text = (value or "").strip()
    if not _ISO_DATE.match(text):
        raise ValueError(f"Expected a date as YYYY-MM-DD, got {value!r}.")
    return date.fromisoformat(text)
