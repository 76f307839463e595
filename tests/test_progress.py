from __future__ import annotations

from batch.progress import ProgressRecord, format_progress, parse_progress


def test_format_progress_line() -> None:
    line = format_progress(ProgressRecord(done=3, total=12, status="ok", source="/media/a b.mp4"))
    assert line == "[progress] done=3 total=12 status=ok source=/media/a b.mp4"


def test_parse_progress_keeps_spaces_in_source() -> None:
    record = parse_progress("[progress] done=3 total=12 status=skipped-date source=D:\\vMix\\Sunday AM.mp4")
    assert record == ProgressRecord(3, 12, "skipped-date", "D:\\vMix\\Sunday AM.mp4")


def test_parse_progress_optional_fields() -> None:
    assert parse_progress("[progress] done=0 total=0") == ProgressRecord(0, 0)


def test_parse_progress_rejects_other_lines() -> None:
    assert parse_progress("INFO: [1/3] a.mp4") is None
    assert parse_progress("progress done=1 total=2") is None
    assert parse_progress("[progress] done=x total=2") is None
