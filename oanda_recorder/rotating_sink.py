from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, TextIO

from oanda_recorder.archiver import Archiver
from oanda_recorder.errors import FileIOError
from oanda_recorder.messages import StreamMessage

log = logging.getLogger("oanda_recorder.rotating_sink")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_open(path: Path) -> TextIO:
    """Open `path` for append, creating it (and its directory) if missing."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return open(path, "a", encoding="utf-8")
    except OSError as exc:
        raise FileIOError(f"cannot open {path}: {exc}") from exc


def write_record(fh: TextIO, message: StreamMessage) -> None:
    try:
        fh.write(message.to_wire() + "\n")
        fh.flush()
    except OSError as exc:
        raise FileIOError(f"cannot append to {getattr(fh, 'name', fh)}: {exc}") from exc


class RotatingFileSink:
    """Append-only NDJSON sink whose file name follows the wall clock.

    The target path is `output_dir / strftime(template, now_utc)` and is
    recomputed on every rotation check, so the bucket granularity is whatever
    the template encodes (one file per day for `%Y_%m_%d`).

    The rotated-out path is handed to the archiver only after the new file is
    open and the old handle closed.
    """

    def __init__(
        self,
        output_dir: Path,
        filename_template: str,
        archiver: Archiver,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.filename_template = filename_template
        self.archiver = archiver
        self.clock = clock
        self.current_path: Optional[Path] = None
        self._fh: Optional[TextIO] = None

    def path_for(self, instant: datetime) -> Path:
        return self.output_dir / instant.astimezone(timezone.utc).strftime(self.filename_template)

    def start(self) -> Path:
        path = self.path_for(self.clock())
        self._fh = ensure_open(path)
        self.current_path = path
        log.info("Current file name: %s", path)
        return path

    def rotate_if_needed(self) -> bool:
        if self._fh is None:
            self.start()
            return False
        path = self.path_for(self.clock())
        if path == self.current_path:
            return False

        new_fh = ensure_open(path)
        old_path, old_fh = self.current_path, self._fh
        self._fh, self.current_path = new_fh, path
        try:
            old_fh.close()
        except OSError:
            log.exception("Failed to close %s", old_path)
        self.archiver.archive(old_path)
        log.info("Current file name: %s", path)
        return True

    def write(self, message: StreamMessage) -> None:
        if self._fh is None:
            self.start()
        assert self._fh is not None
        write_record(self._fh, message)

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
