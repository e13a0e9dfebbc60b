# oanda_recorder/recorder.py

"""OANDA pricing stream recorder.

One session = connect, stream lines, classify, append PRICE messages to the
current time bucket. A session only ends by raising; the supervisor logs the
failure, waits the configured cooldown and starts a fresh session.
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, NoReturn, Optional

from oanda_recorder.archiver import Archiver, GzipArchiver
from oanda_recorder.errors import ConfigError, RecorderError, TransportError
from oanda_recorder.http_stream import LineStream, auth_headers, build_stream_url, open_stream
from oanda_recorder.logging_config import setup_logging
from oanda_recorder.messages import PriceUpdate, parse
from oanda_recorder.recorder_settings import DEFAULT_CONFIG, RecorderConfig, config_template, load_config
from oanda_recorder.rotating_sink import RotatingFileSink, utc_now

log = logging.getLogger("oanda_recorder.recorder")


@dataclass
class SessionStats:
    session_id: int = 0
    lines: int = 0
    prices: int = 0
    heartbeats: int = 0
    rotations: int = 0
    started: float = 0.0


class StreamRecorder:
    def __init__(
        self,
        config: RecorderConfig,
        archiver: Archiver,
        open_stream_fn: Callable[..., LineStream] = open_stream,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.archiver = archiver
        self.open_stream_fn = open_stream_fn
        self.clock = clock
        self.sleep = sleep
        self.session_count = 0
        # Last active file of the previous session, archived if the next
        # session starts in a different bucket.
        self.last_path: Optional[Path] = None

    def stream_url(self) -> str:
        return build_stream_url(self.config.hostname, self.config.account, self.config.instruments)

    def run_session(self) -> NoReturn:
        """Record until the first failure, which is always raised."""
        self.session_count += 1
        stats = SessionStats(session_id=self.session_count, started=time.monotonic())
        cfg = self.config

        stream = self.open_stream_fn(
            self.stream_url(),
            auth_headers(cfg.token),
            connect_timeout_s=cfg.connect_timeout_s,
            read_timeout_s=cfg.read_timeout_s,
        )
        try:
            sink = RotatingFileSink(cfg.output_dir, cfg.output_filename, self.archiver, clock=self.clock)
            current = sink.start()
            try:
                if self.last_path is not None and self.last_path != current:
                    log.info("Previous session file %s is no longer current", self.last_path)
                    self.archiver.archive(self.last_path)
                self._consume(stream, sink, stats)
            finally:
                if sink.current_path is not None:
                    self.last_path = sink.current_path
                sink.close()
                self._log_session_end(stats)
        finally:
            stream.close()

    def _consume(self, stream: LineStream, sink: RotatingFileSink, stats: SessionStats) -> NoReturn:
        while True:
            line = stream.next()
            if line is None:
                raise TransportError("stream ended")
            stats.lines += 1

            if sink.rotate_if_needed():
                stats.rotations += 1

            message = parse(line)
            if isinstance(message, PriceUpdate):
                sink.write(message)
                stats.prices += 1
            else:
                stats.heartbeats += 1

    def _log_session_end(self, stats: SessionStats) -> None:
        log.info(
            "Session %d ended after %.1fs lines=%d prices=%d heartbeats=%d rotations=%d",
            stats.session_id,
            time.monotonic() - stats.started,
            stats.lines,
            stats.prices,
            stats.heartbeats,
            stats.rotations,
        )

    def run_forever(self) -> NoReturn:
        log.info("Starting recorder loop")
        while True:
            try:
                self.run_session()
            except RecorderError as exc:
                log.error("%s: %s", type(exc).__name__, exc)
            except Exception:
                log.exception("Unexpected recorder failure")

            log.info("Awaiting cooldown (%.1fs)", self.config.cooldown)
            self.sleep(self.config.cooldown)
            log.info("Reconnecting...")


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(
        prog="oanda-stream-recorder",
        description="Record the OANDA pricing stream to daily NDJSON files.",
    )
    ap.add_argument("-c", "--config", default=DEFAULT_CONFIG, help=f"YAML config file (default: {DEFAULT_CONFIG})")
    ap.add_argument("--log-level", default=None, help="Override the configured log level")
    return ap.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    config_path = Path(args.config).resolve()

    try:
        cfg = load_config(config_path)
    except ConfigError as exc:
        setup_logging(args.log_level or "INFO", base_dir=None)
        log.error("Error: %s", exc)
        log.error("Please create a config file according to this template:\n%s", config_template())
        return 2

    log_path = setup_logging(args.log_level or cfg.log_level, component="recorder", base_dir=cfg.log_dir)
    if log_path is not None:
        log.info("Recorder logging to %s", log_path)
    log.info("Loaded config %s: %s", config_path, cfg.redacted())

    # SIGTERM takes the same path as Ctrl-C so open files are closed cleanly.
    signal.signal(signal.SIGTERM, signal.default_int_handler)

    archiver = GzipArchiver()
    recorder = StreamRecorder(cfg, archiver)
    try:
        recorder.run_forever()
    except KeyboardInterrupt:
        log.info("Interrupted; waiting for pending archives")
    finally:
        archiver.shutdown(wait=True)
    return 0


if __name__ == "__main__":
    sys.exit(main())
