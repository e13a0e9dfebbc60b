"""Pytest configuration.

The recorder can be run from a checkout without installing it. When pytest is
executed without the repository root on `sys.path`, imports like
`import oanda_recorder...` fail; this file makes the root importable.
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
