from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

import requests

from oanda_recorder.errors import ConnectError, TransportError

log = logging.getLogger("oanda_recorder.http_stream")


def build_stream_url(hostname: str, account: str, instruments: Iterable[str]) -> str:
    csv = "%2C".join(instruments)
    return f"https://{hostname}/v3/accounts/{account}/pricing/stream?instruments={csv}"


def auth_headers(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class LineFramer:
    """Split a byte stream into text lines, buffering partial reads."""

    def __init__(self) -> None:
        self._buf = bytearray()

    def feed(self, chunk: bytes) -> List[str]:
        self._buf.extend(chunk)
        lines: List[str] = []
        while True:
            idx = self._buf.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self._buf[:idx])
            del self._buf[: idx + 1]
            lines.append(self._decode(raw))
        return lines

    def flush(self) -> Optional[str]:
        if not self._buf:
            return None
        raw = bytes(self._buf)
        self._buf.clear()
        return self._decode(raw)

    @staticmethod
    def _decode(raw: bytes) -> str:
        if raw.endswith(b"\r"):
            raw = raw[:-1]
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise TransportError(f"stream line is not valid UTF-8: {exc}") from exc


class LineStream:
    """Lines of one streaming HTTP response.

    `next()` returns the next line, None at end of stream, or raises
    TransportError. After None or an error it keeps returning None; open a
    new stream to reconnect.
    """

    def __init__(self, response: requests.Response) -> None:
        self._response = response
        self._chunks = response.iter_content(chunk_size=None)
        self._framer = LineFramer()
        self._pending: List[str] = []
        self._done = False

    def next(self) -> Optional[str]:
        if self._pending:
            return self._pending.pop(0)
        if self._done:
            return None
        try:
            while not self._pending:
                try:
                    chunk = next(self._chunks)
                except StopIteration:
                    self._done = True
                    return self._framer.flush()
                if chunk:
                    self._pending.extend(self._framer.feed(chunk))
        except (requests.RequestException, OSError) as exc:
            self._fail()
            raise TransportError(f"stream read failed: {exc}") from exc
        except TransportError:
            self._fail()
            raise
        return self._pending.pop(0)

    def _fail(self) -> None:
        self._done = True
        self._pending.clear()
        self.close()

    def close(self) -> None:
        try:
            self._response.close()
        except Exception:
            log.exception("Failed to close stream response")

    def __iter__(self) -> "LineStream":
        return self

    def __next__(self) -> str:
        line = self.next()
        if line is None:
            raise StopIteration
        return line

    def __enter__(self) -> "LineStream":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def open_stream(
    url: str,
    headers: Dict[str, str],
    session: Optional[requests.Session] = None,
    connect_timeout_s: float = 10.0,
    read_timeout_s: Optional[float] = None,
) -> LineStream:
    """Open a long-lived streaming GET and return its lines.

    `read_timeout_s=None` means a stalled connection is never detected.
    """
    http = session or requests.Session()
    resp = None
    try:
        resp = http.get(
            url,
            headers=headers,
            stream=True,
            timeout=(connect_timeout_s, read_timeout_s),
        )
        resp.raise_for_status()
    except requests.RequestException as exc:
        if resp is not None:
            resp.close()
        raise ConnectError(f"cannot open stream: {exc}") from exc
    log.info("Stream connected status=%s", resp.status_code)
    return LineStream(resp)
