"""Pytest configuration for path setup.

The test suite imports the ``patterns`` and ``backtester`` packages, which
live under ``patterns/src`` and ``backtester/src``.  When pytest is executed
as an installed script without an editable install these directories are
not on ``sys.path``, so this file adds them together with the project root
(for ``tests.helpers``).
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]

for path in (ROOT, ROOT / "patterns" / "src", ROOT / "backtester" / "src"):
    path_str = str(path)
    if path_str not in sys.path:
        sys.path.insert(0, path_str)
