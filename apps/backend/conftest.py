from __future__ import annotations

import sys
from pathlib import Path


def pytest_configure() -> None:
    """
    Ensure the local package is importable regardless of pytest rootdir selection.

    `import flowsynth...` expects `/apps/backend` on sys.path.
    """
    backend_root = Path(__file__).resolve().parent
    p = str(backend_root)
    if p not in sys.path:
        sys.path.insert(0, p)
