from __future__ import annotations

import gzip
import logging
import os
import shutil
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Protocol

log = logging.getLogger("oanda_recorder.archiver")


class Archiver(Protocol):
    def archive(self, path: Path) -> None:
        ...


def gzip_in_place(path: Path, compresslevel: int = 9) -> Path:
    """Compress `path` to `path.gz` and remove the original.

    If `path.gz` already exists (the bucket was reopened after a restart) the
    new data is appended as another gzip member; gzip readers concatenate
    members transparently.
    """
    path = Path(path)
    target = path.with_name(path.name + ".gz")
    tmp = path.with_name(path.name + ".gz.tmp")
    try:
        with path.open("rb") as src, gzip.open(tmp, "wb", compresslevel=compresslevel) as dst:
            shutil.copyfileobj(src, dst)
        if target.exists():
            with tmp.open("rb") as src, target.open("ab") as dst:
                shutil.copyfileobj(src, dst)
                dst.flush()
                os.fsync(dst.fileno())
            tmp.unlink()
        else:
            os.replace(tmp, target)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    path.unlink()
    return target


class GzipArchiver:
    """Compress rotated-out files on a background thread pool.

    `archive()` never blocks and never raises; failures are logged.
    """

    def __init__(self, max_workers: int = 2, compresslevel: int = 9) -> None:
        self.compresslevel = compresslevel
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix="archiver",
        )

    def archive(self, path: Path) -> None:
        path = Path(path)
        try:
            fut = self._executor.submit(gzip_in_place, path, self.compresslevel)
        except RuntimeError:
            log.exception("Archiver unavailable; leaving %s uncompressed", path)
            return
        fut.add_done_callback(lambda f: self._on_done(path, f))

    def _on_done(self, path: Path, fut: Future) -> None:
        if fut.cancelled():
            log.warning("Archive of %s cancelled", path)
            return
        exc = fut.exception()
        if exc is not None:
            log.error("Failed to archive %s", path, exc_info=exc)
            return
        log.info("Archived %s -> %s", path, fut.result())

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
