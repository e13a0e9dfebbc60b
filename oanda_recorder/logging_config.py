import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


def setup_logging(
    level: str = "INFO",
    component: str = "recorder",
    base_dir: Optional[str | Path] = "logs",
) -> Optional[Path]:
    """
    Configure logging:
      - Console (stdout)
      - Daily log file in <base_dir>/<component>/YYYY-MM-DD.log (UTC date),
        skipped when base_dir is None

    Returns:
      Path to the log file, or None for console-only logging.
    """

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")
    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    root.addHandler(sh)

    if base_dir is None:
        return None

    log_dir = Path(base_dir) / component
    log_dir.mkdir(parents=True, exist_ok=True)
    date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    log_path = log_dir / f"{date_str}.log"

    fh = logging.FileHandler(log_path, encoding="utf-8")
    fh.setFormatter(fmt)
    root.addHandler(fh)
    return log_path
