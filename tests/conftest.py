"""Pytest bootstrap for local module imports.

The modules live flat at the repository root; make sure they resolve when
``pytest`` runs with a sys.path that excludes it.
"""

from __future__ import annotations

import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
PROJECT_ROOT_STR = str(PROJECT_ROOT)

if PROJECT_ROOT_STR not in sys.path:
    sys.path.insert(0, PROJECT_ROOT_STR)
