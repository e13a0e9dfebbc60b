"""Pricing stream messages.

Decoding is two-stage: a structural pass (JSON object + `type` discriminator)
followed by typed coercion of each field. Every failure is a ParseError; there
are no partial results.

Inbound PRICE lines carry `closeoutBid`/`closeoutAsk` as decimal strings.
Recorded lines carry `closeout_bid`/`closeout_ask` as JSON numbers. Both forms
are accepted so recorded files can be parsed back.
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Union

from oanda_recorder.errors import ParseError

HEARTBEAT = "HEARTBEAT"
PRICE = "PRICE"

_RFC3339_RE = re.compile(
    r"(?P<base>\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<frac>\d+))?"
    r"(?P<tz>[Zz]|[+-]\d{2}:\d{2})"
)
_DECIMAL_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


@dataclass(frozen=True)
class Heartbeat:
    time: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {"type": HEARTBEAT, "time": format_time(self.time)}

    def to_wire(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass(frozen=True)
class PriceUpdate:
    time: datetime
    closeout_bid: float
    closeout_ask: float
    status: str
    tradeable: bool
    instrument: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": PRICE,
            "time": format_time(self.time),
            "closeout_bid": self.closeout_bid,
            "closeout_ask": self.closeout_ask,
            "status": self.status,
            "tradeable": self.tradeable,
            "instrument": self.instrument,
        }

    def to_wire(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"))


StreamMessage = Union[Heartbeat, PriceUpdate]


def parse_time(value: str) -> datetime:
    """Parse a strict RFC 3339 timestamp into an aware UTC datetime.

    An explicit offset is required. Fractions finer than microseconds
    (OANDA sends nanoseconds) are truncated.
    """
    m = _RFC3339_RE.fullmatch(value)
    if m is None:
        raise ValueError(f"invalid RFC 3339 timestamp {value!r}")
    frac = m.group("frac")
    tz = m.group("tz")
    text = m.group("base").replace("t", "T")
    if frac:
        text += "." + frac[:6].ljust(6, "0")
    text += "+00:00" if tz in ("Z", "z") else tz
    return datetime.fromisoformat(text).astimezone(timezone.utc)


def format_time(value: datetime) -> str:
    dt = value.astimezone(timezone.utc)
    base = dt.strftime("%Y-%m-%dT%H:%M:%S")
    if dt.microsecond == 0:
        return base + "Z"
    if dt.microsecond % 1000 == 0:
        return f"{base}.{dt.microsecond // 1000:03d}Z"
    return f"{base}.{dt.microsecond:06d}Z"


def _require(payload: dict, key: str) -> Any:
    if key not in payload:
        raise ValueError(f"missing field {key!r}")
    return payload[key]


def _as_str(payload: dict, key: str) -> str:
    value = _require(payload, key)
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string (got {type(value).__name__})")
    return value


def _as_bool(payload: dict, key: str) -> bool:
    value = _require(payload, key)
    if not isinstance(value, bool):
        raise ValueError(f"field {key!r} must be a boolean (got {type(value).__name__})")
    return value


def _as_time(payload: dict, key: str) -> datetime:
    return parse_time(_as_str(payload, key))


def _finite(value: float, key: str) -> float:
    if not math.isfinite(value):
        raise ValueError(f"field {key!r} is not finite ({value!r})")
    return value


def _as_price(payload: dict, wire_key: str, recorded_key: str) -> float:
    if wire_key in payload:
        raw = _as_str(payload, wire_key)
        if _DECIMAL_RE.fullmatch(raw) is None:
            raise ValueError(f"field {wire_key!r} is not a decimal ({raw!r})")
        return _finite(float(raw), wire_key)
    value = _require(payload, recorded_key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"field {recorded_key!r} must be a number (got {type(value).__name__})")
    try:
        out = float(value)
    except OverflowError as exc:
        raise ValueError(f"field {recorded_key!r} is out of range") from exc
    return _finite(out, recorded_key)


def _decode_heartbeat(payload: dict) -> Heartbeat:
    return Heartbeat(time=_as_time(payload, "time"))


def _decode_price(payload: dict) -> PriceUpdate:
    return PriceUpdate(
        time=_as_time(payload, "time"),
        closeout_bid=_as_price(payload, "closeoutBid", "closeout_bid"),
        closeout_ask=_as_price(payload, "closeoutAsk", "closeout_ask"),
        status=_as_str(payload, "status"),
        tradeable=_as_bool(payload, "tradeable"),
        instrument=_as_str(payload, "instrument"),
    )


_DECODERS = {
    HEARTBEAT: _decode_heartbeat,
    PRICE: _decode_price,
}


def parse(line: str) -> StreamMessage:
    """Classify one stream line as a Heartbeat or a PriceUpdate."""
    try:
        payload = json.loads(line)
    except ValueError as exc:
        raise ParseError(f"malformed JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ParseError(f"expected a JSON object, got {type(payload).__name__}")

    msg_type = payload.get("type")
    if msg_type is None:
        raise ParseError("missing discriminator field 'type'")
    decoder = _DECODERS.get(msg_type) if isinstance(msg_type, str) else None
    if decoder is None:
        raise ParseError(f"unknown message type {msg_type!r}")

    try:
        return decoder(payload)
    except (ValueError, OverflowError) as exc:
        raise ParseError(f"invalid {msg_type} message: {exc}") from exc
