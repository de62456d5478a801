from __future__ import annotations

"""Path utilities.

CONTRACT
- Inputs: strings (step ids, filenames) or paths
- Outputs:
  - safe_filename() returns sanitized string (no path separators)
  - ensure_dir() creates directory tree
  - find_project_root() walks up to the directory holding docrun.yaml or docs/
- Invariants:
  - safe_filename removes dangerous chars `[^A-Za-z0-9_.-]`
"""

import re
from pathlib import Path

_SAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.-]+")

ROOT_MARKERS = ("docrun.yaml", "docs")


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def safe_filename(name: str, *, default: str = "item") -> str:
    cleaned = _SAFE_FILENAME_RE.sub("_", name).strip("._-")
    return cleaned or default


def find_project_root(start: Path) -> Path:
    start = start.resolve()
    for candidate in (start, *start.parents):
        if any((candidate / marker).exists() for marker in ROOT_MARKERS):
            return candidate
    return start
