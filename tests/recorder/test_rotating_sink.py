from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from oanda_recorder.errors import FileIOError
from oanda_recorder.messages import PriceUpdate
from oanda_recorder.rotating_sink import RotatingFileSink, ensure_open, write_record

TEMPLATE = "oanda_stream_%Y_%m_%d.json"
DAY1 = datetime(2024, 1, 1, 23, 59, 59, tzinfo=timezone.utc)
DAY2 = datetime(2024, 1, 2, 0, 0, 1, tzinfo=timezone.utc)


class _FakeArchiver:
    def __init__(self) -> None:
        self.paths: list[Path] = []

    def archive(self, path: Path) -> None:
        self.paths.append(path)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _price(ts: datetime, bid: float = 1.08) -> PriceUpdate:
    return PriceUpdate(
        time=ts,
        closeout_bid=bid,
        closeout_ask=bid + 0.0002,
        status="tradeable",
        tradeable=True,
        instrument="EUR_USD",
    )


def _lines(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_path_for_is_stable_within_a_day(tmp_path: Path):
    sink = RotatingFileSink(tmp_path, TEMPLATE, _FakeArchiver())
    morning = datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc)
    evening = datetime(2024, 1, 1, 23, 59, 59, tzinfo=timezone.utc)
    assert sink.path_for(morning) == sink.path_for(evening) == tmp_path / "oanda_stream_2024_01_01.json"
    assert sink.path_for(morning + timedelta(days=1)) == tmp_path / "oanda_stream_2024_01_02.json"


def test_path_for_formats_in_utc(tmp_path: Path):
    sink = RotatingFileSink(tmp_path, TEMPLATE, _FakeArchiver())
    berlin_early = datetime(2024, 1, 2, 0, 30, tzinfo=timezone(timedelta(hours=1)))
    assert sink.path_for(berlin_early).name == "oanda_stream_2024_01_01.json"


def test_ensure_open_appends_without_truncating(tmp_path: Path):
    path = tmp_path / "out.json"
    path.write_text("old\n", encoding="utf-8")
    fh = ensure_open(path)
    fh.write("new\n")
    fh.close()
    assert path.read_text(encoding="utf-8") == "old\nnew\n"


def test_ensure_open_creates_missing_directories(tmp_path: Path):
    path = tmp_path / "a" / "b" / "out.json"
    ensure_open(path).close()
    assert path.exists()


def test_ensure_open_failure_is_file_io_error(tmp_path: Path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")
    with pytest.raises(FileIOError):
        ensure_open(blocker / "out.json")


def test_write_record_is_flushed_before_return(tmp_path: Path):
    path = tmp_path / "out.json"
    fh = ensure_open(path)
    try:
        write_record(fh, _price(DAY1))
        assert _lines(path) == [_price(DAY1).to_dict()]
    finally:
        fh.close()


def test_write_record_os_error_is_file_io_error():
    class _BrokenFile:
        name = "broken.json"

        def write(self, _data: str) -> int:
            raise OSError(28, "No space left on device")

        def flush(self) -> None:
            return None

    with pytest.raises(FileIOError):
        write_record(_BrokenFile(), _price(DAY1))


def test_no_rotation_within_bucket(tmp_path: Path):
    archiver = _FakeArchiver()
    clock = _Clock(DAY1 - timedelta(hours=5))
    sink = RotatingFileSink(tmp_path, TEMPLATE, archiver, clock=clock)
    sink.start()
    clock.now = DAY1
    assert sink.rotate_if_needed() is False
    assert archiver.paths == []
    sink.close()


def test_rotation_archives_previous_path_once(tmp_path: Path):
    archiver = _FakeArchiver()
    clock = _Clock(DAY1)
    sink = RotatingFileSink(tmp_path, TEMPLATE, archiver, clock=clock)
    first = sink.start()
    sink.write(_price(DAY1, bid=1.1))
    old_fh = sink._fh

    clock.now = DAY2
    assert sink.rotate_if_needed() is True
    assert sink.rotate_if_needed() is False
    sink.write(_price(DAY2, bid=1.2))
    sink.close()

    second = tmp_path / "oanda_stream_2024_01_02.json"
    assert archiver.paths == [first]
    assert sink.current_path == second
    assert old_fh.closed
    assert [r["closeout_bid"] for r in _lines(first)] == [1.1]
    assert [r["closeout_bid"] for r in _lines(second)] == [1.2]


def test_rotation_into_existing_file_keeps_content(tmp_path: Path):
    second = tmp_path / "oanda_stream_2024_01_02.json"
    second.write_text('{"existing":true}\n', encoding="utf-8")

    clock = _Clock(DAY1)
    sink = RotatingFileSink(tmp_path, TEMPLATE, _FakeArchiver(), clock=clock)
    sink.start()
    clock.now = DAY2
    sink.rotate_if_needed()
    sink.write(_price(DAY2))
    sink.close()

    rows = _lines(second)
    assert rows[0] == {"existing": True}
    assert rows[1]["type"] == "PRICE"


def test_close_is_idempotent(tmp_path: Path):
    sink = RotatingFileSink(tmp_path, TEMPLATE, _FakeArchiver(), clock=_Clock(DAY1))
    sink.start()
    sink.close()
    sink.close()
