from __future__ import annotations

import math
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional, Tuple

import yaml

from oanda_recorder.errors import ConfigError


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value) or value < 0:
        return default
    return value


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


DEFAULT_CONFIG = "config.yaml"
DEFAULT_CONNECT_TIMEOUT_S = 10.0

CONFIG_TEMPLATE = {
    "hostname": "stream-fxtrade.oanda.com",
    "token": "<your token>",
    "account": "<your account>",
    "instruments": ["EUR_USD", "USD_JPY"],
    "cooldown": 1,
    "output_dir": "data",
    "output_filename": "oanda_stream_%Y_%m_%d.json",
}


@dataclass(frozen=True)
class RecorderConfig:
    hostname: str
    token: str
    account: str
    instruments: Tuple[str, ...]
    cooldown: float
    output_dir: Path
    output_filename: str
    connect_timeout_s: float = DEFAULT_CONNECT_TIMEOUT_S
    # None disables stall detection on an open but silent stream.
    read_timeout_s: Optional[float] = None
    log_dir: Optional[Path] = Path("logs")
    log_level: str = "INFO"

    def redacted(self) -> dict:
        token = self.token
        masked = f"{token[:4]}****" if len(token) > 8 else "****"
        return {
            "hostname": self.hostname,
            "token": masked,
            "account": self.account,
            "instruments": list(self.instruments),
            "cooldown": self.cooldown,
            "output_dir": str(self.output_dir),
            "output_filename": self.output_filename,
            "connect_timeout_s": self.connect_timeout_s,
            "read_timeout_s": self.read_timeout_s,
        }


def config_template() -> str:
    return yaml.safe_dump(CONFIG_TEMPLATE, sort_keys=False)


def _required_str(raw: dict, key: str) -> str:
    value = raw.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"config key {key!r} must be a non-empty string")
    return value.strip()


def _non_negative(raw: dict, key: str, default: Any = None) -> Optional[float]:
    value = raw.get(key, default)
    if value is None:
        return None
    if isinstance(value, bool):
        raise ConfigError(f"config key {key!r} must be a number (got {value!r})")
    try:
        out = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"config key {key!r} must be a number (got {value!r})") from exc
    if not math.isfinite(out):
        raise ConfigError(f"config key {key!r} must be finite (got {value!r})")
    if out < 0:
        raise ConfigError(f"config key {key!r} must be >= 0 (got {value!r})")
    return out


def parse_config(raw: Any) -> RecorderConfig:
    if not isinstance(raw, dict):
        raise ConfigError("config must be a mapping")

    instruments = raw.get("instruments")
    if (
        not isinstance(instruments, list)
        or not instruments
        or not all(isinstance(i, str) and i.strip() for i in instruments)
    ):
        raise ConfigError("config key 'instruments' must be a non-empty list of strings")

    cooldown = _non_negative(raw, "cooldown")
    if cooldown is None:
        raise ConfigError("config key 'cooldown' is required")

    log_dir = raw.get("log_dir", "logs")
    return RecorderConfig(
        hostname=_required_str(raw, "hostname"),
        token=_required_str(raw, "token"),
        account=_required_str(raw, "account"),
        instruments=tuple(i.strip() for i in instruments),
        cooldown=cooldown,
        output_dir=Path(_required_str(raw, "output_dir")),
        output_filename=_required_str(raw, "output_filename"),
        connect_timeout_s=_non_negative(raw, "connect_timeout_s", DEFAULT_CONNECT_TIMEOUT_S),
        read_timeout_s=_non_negative(raw, "read_timeout_s"),
        log_dir=Path(log_dir) if log_dir else None,
        log_level=str(raw.get("log_level", "INFO")).upper(),
    )


def apply_env_overrides(cfg: RecorderConfig) -> RecorderConfig:
    """Let secrets and deployment paths come from the environment."""
    output_dir = _env_str("RECORDER_OUTPUT_DIR", None)
    return replace(
        cfg,
        hostname=_env_str("OANDA_HOSTNAME", cfg.hostname),
        token=_env_str("OANDA_TOKEN", cfg.token),
        account=_env_str("OANDA_ACCOUNT", cfg.account),
        cooldown=_env_float("RECORDER_COOLDOWN_S", cfg.cooldown),
        output_dir=Path(output_dir) if output_dir else cfg.output_dir,
        log_level=(_env_str("RECORDER_LOG_LEVEL", cfg.log_level) or "INFO").upper(),
    )


def load_config(path: str | Path) -> RecorderConfig:
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
    return apply_env_overrides(parse_config(raw))
