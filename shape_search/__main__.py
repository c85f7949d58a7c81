from __future__ import annotations

import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Put the repository root (parent of this package) on ``sys.path``.

    Lets ``python shape_search/__main__.py`` work as well as
    ``python -m shape_search``.
    """
    repo_root = str(Path(__file__).resolve().parent.parent)
    if repo_root not in sys.path:
        sys.path.insert(0, repo_root)


try:
    from .app import run  # type: ignore[attr-defined]
except ImportError:
    _ensure_repo_root_on_path()
    from shape_search.app import run  # type: ignore[attr-defined]


def main() -> int:
    """Entry point for running the experiment from the command line."""
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
