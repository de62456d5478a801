from __future__ import annotations

"""Durable environment store.

CONTRACT
- Inputs: Path of the env file (artifacts/env), export lines from step bodies
- Outputs (required):
  - materialize() -> [(name, value)] effective mapping
  - as_environ(base) -> dict for subprocesses and checks
- Invariants:
  - Append-only between resets; later definitions shadow earlier ones
  - record() flushes to disk before returning
  - Only lines starting with `export NAME=` are recorded from step bodies
  - Values are whatever bash yields when sourcing the lines on top of the
    base environment (quoting, expansion and command substitution included)
- Failure:
  - import_file() raises EnvFileNotFound for a missing overlay
  - materialize() raises EnvSourceError when bash cannot source the lines
"""

import os
import re
from pathlib import Path
from typing import Iterable, Mapping

from loguru import logger

from .errors import EnvFileNotFound
from .util.shell import source_env

EXPORT_RE = re.compile(r"^export +([A-Za-z_][A-Za-z0-9_]*)=(.*)$")
ASSIGN_RE = re.compile(r"^(?:export\s+)?([A-Za-z_][A-Za-z0-9_]*)=(.*)$")


class EnvironmentStore:
    def __init__(self, path: Path, *, persist: bool = True):
        self.path = path
        self.persist = persist
        self._lines: list[str] = []

    def load(self) -> "EnvironmentStore":
        if self.path.exists():
            self._lines = self.path.read_text(encoding="utf-8").splitlines()
        else:
            self._lines = []
        return self

    def fork(self) -> "EnvironmentStore":
        """In-memory copy; records made on it never reach the file."""
        other = EnvironmentStore(self.path, persist=False)
        other._lines = list(self._lines)
        return other

    @property
    def lines(self) -> list[str]:
        return list(self._lines)

    def _append(self, lines: Iterable[str]) -> None:
        lines = list(lines)
        if not lines:
            return
        if self.persist:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                for line in lines:
                    f.write(line + "\n")
        self._lines.extend(lines)

    def import_file(self, path: Path) -> int:
        if not path.is_file():
            raise EnvFileNotFound(f"Env file not found: {path}")
        lines = path.read_text(encoding="utf-8").splitlines()
        self._append(lines)
        logger.debug(f"Imported {len(lines)} lines from {path}")
        return len(lines)

    def _current_line(self, name: str) -> str | None:
        for line in reversed(self._lines):
            m = ASSIGN_RE.match(line.strip())
            if m and m.group(1) == name:
                return line
        return None

    def record(self, line: str) -> bool:
        m = EXPORT_RE.match(line)
        if not m:
            return False
        if self._current_line(m.group(1)) == line:
            return False
        self._append([line])
        return True

    def record_exports(self, body: str) -> list[str]:
        """Record every export line of a step body. Returns the new lines."""
        return [line for line in body.splitlines() if self.record(line)]

    def names(self) -> list[str]:
        """Names assigned by the store, in first-definition order."""
        seen: dict[str, None] = {}
        for line in self._lines:
            m = ASSIGN_RE.match(line.strip())
            if m:
                seen.setdefault(m.group(1), None)
        return list(seen)

    def materialize(
        self, base: Mapping[str, str] | None = None, cwd: Path | None = None
    ) -> list[tuple[str, str]]:
        names = self.names()
        if not names:
            return []
        sourced = source_env(self._lines, os.environ if base is None else base, cwd=cwd)
        return [(name, sourced[name]) for name in names if name in sourced]

    def as_environ(
        self, base: Mapping[str, str] | None = None, cwd: Path | None = None
    ) -> dict[str, str]:
        env = dict(os.environ if base is None else base)
        env.update(self.materialize(env, cwd=cwd))
        return env

    def reset(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("", encoding="utf-8")
        self._lines = []
        logger.info(f"Environment store reset: {self.path}")
