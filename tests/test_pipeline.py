from __future__ import annotations

from dataclasses import replace
from datetime import date
import json
from pathlib import Path
from typing import Optional

import pytest

from batch.gate import CheckpointGate, PauseMarker
from batch.models import BatchSettings
from batch.pipeline import BatchPipeline, exit_code_for, scan_media
from batch.progress import parse_progress
from engine.base import RecognitionEngine, RecognitionError, RecognitionOutput
from media.audio import FfmpegFailedError


class FakeConverter:
    def __init__(self, fail_on: tuple[str, ...] = ()) -> None:
        self.calls: list[Path] = []
        self.fail_on = fail_on
        self.after_call = None

    def __call__(self, source: Path, wav: Path, ffmpeg: Optional[str]) -> None:
        self.calls.append(source)
        if source.name in self.fail_on:
            raise FfmpegFailedError(f"cannot decode {source.name}")
        wav.write_bytes(b"RIFF")
        if self.after_call:
            self.after_call(source)


class FakeEngine(RecognitionEngine):
    def __init__(self, fail_on: tuple[str, ...] = ()) -> None:
        self.calls: list[Path] = []
        self.fail_on = fail_on
        self.after_call = None

    def recognize(self, audio_path: Path, output_base: Path) -> RecognitionOutput:
        self.calls.append(audio_path)
        source_dir = audio_path.parent.name
        if source_dir in self.fail_on:
            raise RecognitionError(f"model crashed on {source_dir}")
        text_path = output_base.with_name(output_base.name + ".txt")
        json_path = output_base.with_name(output_base.name + ".json")
        text_path.write_text(
            "Good morning, church. Please open your Bibles. We begin with prayer.\n", encoding="utf-8"
        )
        json_path.write_text(json.dumps({"transcription": []}), encoding="utf-8")
        if self.after_call:
            self.after_call(audio_path)
        return RecognitionOutput(text_path=text_path, json_path=json_path)


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x00")
    return path


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    media = tmp_path / "media"
    _touch(media / "2024-03-10_Service.mp4")
    _touch(media / "evening" / "20240317 Evening Prayer.mp3")
    _touch(media / "notes.txt")
    return media


@pytest.fixture
def settings(tmp_path: Path, tree: Path) -> BatchSettings:
    return BatchSettings(
        input_folder=tree,
        output_folder=tmp_path / "out",
        whisper_exe=tmp_path / "whisper-cli",
        model_file=tmp_path / "ggml-small.en.bin",
        pause_flag_file=tmp_path / "out" / ".transcribe.pause",
        stop_flag_file=tmp_path / "out" / ".transcribe.stop",
        threads=2,
        poll_interval=0.01,
    )


def _pipeline(settings: BatchSettings, converter=None, engine=None, lines=None, gate=None) -> BatchPipeline:
    return BatchPipeline(
        settings,
        engine=engine or FakeEngine(),
        converter=converter or FakeConverter(),
        gate=gate,
        emit=(lines.append if lines is not None else (lambda line: None)),
    )


def test_scan_media_sorted_and_filtered(tree: Path) -> None:
    files = scan_media(tree)
    assert [f.name for f in files] == ["2024-03-10_Service.mp4", "20240317 Evening Prayer.mp3"]
    assert [f.name for f in scan_media(tree, recursive=False)] == ["2024-03-10_Service.mp4"]
    assert len(scan_media(tree, limit=1)) == 1


def test_scan_media_excludes_output_inside_input(tree: Path) -> None:
    _touch(tree / "transcripts" / "2024-03-10" / "x" / "audio.16k.wav")
    files = scan_media(tree, exclude=tree / "transcripts")
    assert all("transcripts" not in f.parts for f in files)


def test_run_writes_artifacts_index_and_progress(settings: BatchSettings) -> None:
    lines: list[str] = []
    results = _pipeline(settings, lines=lines).run()

    assert [r.status for r in results] == ["ok", "ok"]
    service = settings.output_folder / "2024-03-10" / "2024-03-10-service"
    assert (service / "transcript.raw.txt").read_text(encoding="utf-8").startswith("Good morning")
    assert (service / "transcript.timestamps.json").exists()
    assert (service / "transcript.clean.txt").exists()
    assert "Notes:" in (service / "summary.txt").read_text(encoding="utf-8")
    assert not (service / "audio.16k.wav").exists()
    assert not (service / ".recognize.txt").exists()

    metadata = json.loads((service / "metadata.json").read_text(encoding="utf-8"))
    assert metadata["bucket"] == "2024-03-10"
    assert metadata["engine"]["threads"] == 2
    assert metadata["flags"]["fast_scan"] is False

    evening = settings.output_folder / "2024-03-17" / "20240317-evening-prayer"
    assert (evening / "transcript.raw.txt").exists()

    records = [parse_progress(line) for line in lines]
    assert [(r.done, r.total, r.status) for r in records] == [(1, 2, "ok"), (2, 2, "ok")]
    index = (settings.output_folder / "INDEX.md").read_text(encoding="utf-8")
    assert "2024-03-10_Service.mp4" in index
    assert "20240317 Evening Prayer.mp3" in index
    assert exit_code_for(results) == 0


def test_rerun_skips_existing_transcripts(settings: BatchSettings) -> None:
    _pipeline(settings).run()
    raw = settings.output_folder / "2024-03-10" / "2024-03-10-service" / "transcript.raw.txt"
    before = raw.read_text(encoding="utf-8")

    converter, engine = FakeConverter(), FakeEngine()
    results = _pipeline(settings, converter=converter, engine=engine).run()

    assert [r.status for r in results] == ["skipped", "skipped"]
    assert converter.calls == [] and engine.calls == []
    assert raw.read_text(encoding="utf-8") == before
    assert exit_code_for(results) == 0


def test_force_reprocesses_existing(settings: BatchSettings) -> None:
    _pipeline(settings).run()
    converter = FakeConverter()
    results = _pipeline(replace(settings, force=True), converter=converter).run()
    assert [r.status for r in results] == ["ok", "ok"]
    assert len(converter.calls) == 2


def test_cutoff_skips_later_files_before_conversion(settings: BatchSettings) -> None:
    converter = FakeConverter()
    lines: list[str] = []
    results = _pipeline(
        replace(settings, before_date=date(2024, 3, 12)), converter=converter, lines=lines
    ).run()

    assert [r.status for r in results] == ["ok", "skipped-date"]
    assert [c.name for c in converter.calls] == ["2024-03-10_Service.mp4"]
    assert not (settings.output_folder / "2024-03-17").exists()
    assert parse_progress(lines[1]).status == "skipped-date"


def test_conversion_failure_is_isolated(settings: BatchSettings) -> None:
    converter = FakeConverter(fail_on=("2024-03-10_Service.mp4",))
    lines: list[str] = []
    results = _pipeline(settings, converter=converter, lines=lines).run()

    assert [(r.status, r.reason) for r in results] == [("error", "convert"), ("ok", None)]
    failed = settings.output_folder / "2024-03-10" / "2024-03-10-service"
    assert not (failed / "transcript.raw.txt").exists()
    assert len(lines) == 2
    assert exit_code_for(results) == 1
    assert "| error |" in (settings.output_folder / "INDEX.md").read_text(encoding="utf-8")


def test_recognition_failure_leaves_no_raw_transcript(settings: BatchSettings) -> None:
    engine = FakeEngine(fail_on=("2024-03-10-service",))
    results = _pipeline(settings, engine=engine).run()

    assert [(r.status, r.reason) for r in results] == [("error", "recognize"), ("ok", None)]
    failed = settings.output_folder / "2024-03-10" / "2024-03-10-service"
    assert not (failed / "transcript.raw.txt").exists()
    assert not (failed / "audio.16k.wav").exists()

    retry = _pipeline(settings).run()
    assert [r.status for r in retry] == ["ok", "skipped"]


def test_fast_scan_skips_secondary_documents(settings: BatchSettings) -> None:
    _pipeline(replace(settings, fast_scan=True)).run()
    service = settings.output_folder / "2024-03-10" / "2024-03-10-service"
    assert (service / "transcript.raw.txt").exists()
    assert not (service / "transcript.clean.txt").exists()
    assert not (service / "summary.txt").exists()
    assert (service / "metadata.json").exists()


def test_keep_audio_retains_waveform(settings: BatchSettings) -> None:
    _pipeline(replace(settings, keep_audio=True)).run()
    assert (settings.output_folder / "2024-03-10" / "2024-03-10-service" / "audio.16k.wav").exists()


def test_pause_holds_next_step_until_marker_cleared(settings: BatchSettings) -> None:
    pause = PauseMarker(settings.pause_flag_file)
    converter, engine = FakeConverter(), FakeEngine()
    observed: list[tuple[int, int]] = []

    def fake_sleep(seconds: float) -> None:
        observed.append((len(converter.calls), len(engine.calls)))
        if len(observed) == 3:
            pause.clear()

    def pause_after_first(source: Path) -> None:
        if len(converter.calls) == 1:
            pause.request()

    converter.after_call = pause_after_first
    gate = CheckpointGate(pause, poll_interval=0.01, sleep=fake_sleep)
    results = _pipeline(settings, converter=converter, engine=engine, gate=gate).run()

    assert observed == [(1, 0), (1, 0), (1, 0)]
    assert [r.status for r in results] == ["ok", "ok"]


def test_stop_marker_prevents_new_files(settings: BatchSettings) -> None:
    stop = PauseMarker(settings.stop_flag_file)
    engine = FakeEngine()
    engine.after_call = lambda audio: stop.request()
    lines: list[str] = []

    results = _pipeline(settings, engine=engine, lines=lines).run()

    assert [r.status for r in results] == ["ok"]
    assert len(engine.calls) == 1
    assert len(lines) == 1
    assert (settings.output_folder / "INDEX.md").exists()


def test_unwritable_output_dir_is_recorded_per_file(settings: BatchSettings) -> None:
    blocked = settings.output_folder / "2024-03-10" / "2024-03-10-service"
    _touch(blocked)

    results = _pipeline(settings).run()

    assert [(r.status, r.reason) for r in results] == [("error", "io"), ("ok", None)]
    assert exit_code_for(results) == 1


def test_forced_fast_scan_removes_stale_documents(settings: BatchSettings) -> None:
    _pipeline(settings).run()
    service = settings.output_folder / "2024-03-10" / "2024-03-10-service"
    assert (service / "summary.txt").exists()

    results = _pipeline(replace(settings, force=True, fast_scan=True)).run()

    assert [r.status for r in results] == ["ok", "ok"]
    assert (service / "transcript.raw.txt").exists()
    assert not (service / "transcript.clean.txt").exists()
    assert not (service / "summary.txt").exists()
