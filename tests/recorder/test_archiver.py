from __future__ import annotations

import gzip
import logging
from pathlib import Path

from oanda_recorder.archiver import GzipArchiver, gzip_in_place


def test_gzip_in_place_replaces_file(tmp_path: Path):
    src = tmp_path / "oanda_stream_2024_01_01.json"
    src.write_text('{"a":1}\n{"b":2}\n', encoding="utf-8")

    target = gzip_in_place(src)

    assert target == tmp_path / "oanda_stream_2024_01_01.json.gz"
    assert not src.exists()
    assert not (tmp_path / "oanda_stream_2024_01_01.json.gz.tmp").exists()
    with gzip.open(target, "rt", encoding="utf-8") as fh:
        assert fh.read() == '{"a":1}\n{"b":2}\n'


def test_gzip_in_place_appends_to_existing_archive(tmp_path: Path):
    src = tmp_path / "day.json"
    target = tmp_path / "day.json.gz"
    with gzip.open(target, "wt", encoding="utf-8") as fh:
        fh.write("first\n")
    src.write_text("second\n", encoding="utf-8")

    gzip_in_place(src)

    with gzip.open(target, "rt", encoding="utf-8") as fh:
        assert fh.read() == "first\nsecond\n"
    assert not src.exists()


def test_archiver_compresses_in_background(tmp_path: Path, caplog):
    caplog.set_level(logging.INFO, logger="oanda_recorder.archiver")
    paths = []
    for day in ("01", "02", "03"):
        p = tmp_path / f"oanda_stream_2024_01_{day}.json"
        p.write_text(f"{day}\n", encoding="utf-8")
        paths.append(p)

    archiver = GzipArchiver(max_workers=2)
    for p in paths:
        assert archiver.archive(p) is None
    archiver.shutdown(wait=True)

    for p in paths:
        assert not p.exists()
        assert p.with_name(p.name + ".gz").exists()
    assert caplog.text.count("Archived") == 3


def test_archiver_failure_is_logged_not_raised(tmp_path: Path, caplog):
    archiver = GzipArchiver()
    archiver.archive(tmp_path / "missing.json")
    archiver.shutdown(wait=True)

    assert "Failed to archive" in caplog.text
    assert not (tmp_path / "missing.json.gz").exists()
    assert not (tmp_path / "missing.json.gz.tmp").exists()


def test_archive_after_shutdown_does_not_raise(tmp_path: Path, caplog):
    src = tmp_path / "late.json"
    src.write_text("x\n", encoding="utf-8")
    archiver = GzipArchiver()
    archiver.shutdown(wait=True)

    archiver.archive(src)

    assert src.exists()
    assert "leaving" in caplog.text
