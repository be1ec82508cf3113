from __future__ import annotations

import sys
from pathlib import Path


def _ensure_repo_root_on_path() -> None:
    """Put the repository root on ``sys.path`` when run as a plain script.

    ``python nback_trainer/__main__.py`` does not make the package importable
    by itself; inserting the package's parent directory fixes that.
    """
    repo_root_str = str(Path(__file__).resolve().parent.parent)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


try:
    # python -m nback_trainer
    from .app import run  # type: ignore[attr-defined]
except ImportError:
    # Script execution (IDE "Run Python File", absolute path, etc.)
    _ensure_repo_root_on_path()
    from nback_trainer.app import run  # type: ignore[attr-defined]


def main() -> int:
    """Entry point for running the trainer from the command line."""
    return run()


if __name__ == "__main__":
    raise SystemExit(main())
