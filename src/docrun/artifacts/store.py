from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..util.paths import ensure_dir, safe_filename
from .schemas import RunStatus


@dataclass(frozen=True)
class ArtifactStore:
    """Artifact storage manager.

    CONTRACT
    - Inputs: Artifacts directory path (<root>/artifacts by default)
    - Outputs:
      - env, events.jsonl, RUN_STATUS.json, logs/<step>.{stdout,stderr}.log
    - Invariants:
      - Enforces path safety (prevents traversal outside root)
      - Ensures parent directories exist on write
    - Failure:
      - Raises ValueError on unsafe path access
    """
    root: Path

    def ensure(self) -> None:
        ensure_dir(self.root / "logs")

    def path(self, *parts: str) -> Path:
        p = self.root.joinpath(*parts)
        base = self.root.resolve(strict=False)
        try:
            p.resolve(strict=False).relative_to(base)
        except ValueError as exc:
            raise ValueError(f"Refusing to access path outside artifacts dir: {p}") from exc
        return p

    @property
    def env_path(self) -> Path:
        return self.path("env")

    @property
    def events_path(self) -> Path:
        return self.path("events.jsonl")

    def step_logs(self, step_id: str) -> tuple[Path, Path]:
        name = safe_filename(step_id, default="step")
        return (
            self.path("logs", f"{name}.stdout.log"),
            self.path("logs", f"{name}.stderr.log"),
        )

    def write_json(self, rel: str, data: Any) -> Path:
        p = self.path(rel)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        return p

    def read_json(self, rel: str) -> Any:
        p = self.path(rel)
        return json.loads(p.read_text(encoding="utf-8"))

    def write_status(self, status: RunStatus) -> Path:
        return self.write_json("RUN_STATUS.json", status.model_dump())

    def read_status(self) -> RunStatus | None:
        p = self.path("RUN_STATUS.json")
        if not p.exists():
            return None
        return RunStatus(**self.read_json("RUN_STATUS.json"))
